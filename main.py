#!/usr/bin/env python3
"""Main entry point for the behavioral engine gateway."""

import uvicorn

from behavioral_engine.common.config import get_config
from behavioral_engine.common.logging import get_logger

logger = get_logger(__name__)


def main():
    """Main entry point."""
    config = get_config()
    logger.info(f"Behavioral engine starting in {config.environment.value} mode")
    logger.info(f"Pipeline defaults: {config.pipeline_defaults_file}")

    uvicorn.run(
        "behavioral_engine.api.gateway:app",
        host=config.api_host,
        port=config.api_port,
        reload=config.is_development and config.debug,
        log_level=config.log_level.value.lower(),
    )


if __name__ == "__main__":
    main()
