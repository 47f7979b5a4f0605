"""Centralized logging configuration.

Every module logs through ``logging.getLogger(__name__)``; the handler and
level live on the package logger, set up once by ``get_logger``.
"""

import logging
from typing import Optional

PACKAGE_LOGGER = "behavioral_engine"


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get a configured logger instance.

    Falls back to the configured log level when none is given. Names
    outside the package are nested under it so they share its handler.
    """
    if level is None:
        from behavioral_engine.common.config import get_config
        level = get_config().log_level.value

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(getattr(logging, level))

    if not package_logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
