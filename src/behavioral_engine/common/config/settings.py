"""Configuration management - Centralized configuration for the behavioral engine.

Provides environment-aware configuration with sensible defaults.
All configuration is loaded from environment variables with fallbacks.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from behavioral_engine.common.exceptions import ConfigurationError


DEFAULT_JWT_SECRET = "dev-only-secret-change-me"


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ExecutionLogStorage(str, Enum):
    """Execution log storage backend types."""
    DATABASE = "database"
    LOCAL = "local"


def _get_project_root() -> Path:
    """Get the project root directory."""
    # settings.py -> config -> common -> behavioral_engine -> src -> project_root
    current = Path(__file__).resolve()
    return current.parent.parent.parent.parent.parent


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    """Central configuration object for the behavioral engine.

    All settings can be overridden via environment variables prefixed with BEHAVIOR_.

    Example:
        BEHAVIOR_ENVIRONMENT=production
        BEHAVIOR_DATABASE_URL=postgresql+psycopg://app@db/behavior
        BEHAVIOR_JWT_SECRET=...
    """

    # Core settings
    environment: Environment = field(
        default_factory=lambda: Environment(
            os.getenv("BEHAVIOR_ENVIRONMENT", "development")
        )
    )
    debug: bool = field(
        default_factory=lambda: _env_flag("BEHAVIOR_DEBUG", "false")
    )
    log_level: LogLevel = field(
        default_factory=lambda: LogLevel(os.getenv("BEHAVIOR_LOG_LEVEL", "INFO"))
    )

    # Paths
    project_root: Path = field(default_factory=_get_project_root)

    # API settings
    api_host: str = field(
        default_factory=lambda: os.getenv("BEHAVIOR_API_HOST", "0.0.0.0")
    )
    api_port: int = field(
        default_factory=lambda: int(os.getenv("BEHAVIOR_API_PORT", "8000"))
    )

    # Database
    database_url: str = field(
        default_factory=lambda: os.getenv(
            "BEHAVIOR_DATABASE_URL", "sqlite:///./behavioral_engine.db"
        )
    )
    database_echo: bool = field(
        default_factory=lambda: _env_flag("BEHAVIOR_DATABASE_ECHO", "false")
    )

    # Auth (tokens are issued elsewhere, only verified here)
    jwt_secret: str = field(
        default_factory=lambda: os.getenv("BEHAVIOR_JWT_SECRET", DEFAULT_JWT_SECRET)
    )
    jwt_algorithm: str = field(
        default_factory=lambda: os.getenv("BEHAVIOR_JWT_ALGORITHM", "HS256")
    )

    # Execution log settings
    execution_log_storage: ExecutionLogStorage = field(
        default_factory=lambda: ExecutionLogStorage(
            os.getenv("BEHAVIOR_EXECUTION_LOG_STORAGE", "database")
        )
    )
    execution_log_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("BEHAVIOR_EXECUTION_LOG_DIR", "./logs/execution")
        )
    )
    background_execution_log: bool = field(
        default_factory=lambda: _env_flag("BEHAVIOR_BACKGROUND_EXECUTION_LOG", "false")
    )

    # Pipeline defaults (system policy + template catalog)
    policy_file: Optional[Path] = field(
        default_factory=lambda: (
            Path(os.environ["BEHAVIOR_POLICY_FILE"])
            if os.getenv("BEHAVIOR_POLICY_FILE") else None
        )
    )

    # Sessions
    session_idle_timeout_minutes: int = field(
        default_factory=lambda: int(os.getenv("BEHAVIOR_SESSION_IDLE_TIMEOUT_MINUTES", "30"))
    )

    # Orchestration
    orchestrator_workers: int = field(
        default_factory=lambda: int(os.getenv("BEHAVIOR_ORCHESTRATOR_WORKERS", "4"))
    )

    # Realtime fan-out
    realtime_mailbox_size: int = field(
        default_factory=lambda: int(os.getenv("BEHAVIOR_REALTIME_MAILBOX_SIZE", "32"))
    )
    realtime_poll_seconds: float = field(
        default_factory=lambda: float(os.getenv("BEHAVIOR_REALTIME_POLL_SECONDS", "1.0"))
    )

    # Metrics (CloudWatch)
    metrics_enabled: bool = field(
        default_factory=lambda: _env_flag("BEHAVIOR_METRICS_ENABLED", "false")
    )
    metrics_namespace: str = field(
        default_factory=lambda: os.getenv("BEHAVIOR_METRICS_NAMESPACE", "BehavioralEngine")
    )
    aws_region: str = field(
        default_factory=lambda: os.getenv("AWS_DEFAULT_REGION", "us-east-1")
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.execution_log_storage == ExecutionLogStorage.LOCAL:
            self.execution_log_dir.mkdir(parents=True, exist_ok=True)

        if self.orchestrator_workers < 1:
            raise ConfigurationError(
                "BEHAVIOR_ORCHESTRATOR_WORKERS must be at least 1",
                details={"orchestrator_workers": self.orchestrator_workers},
            )

        if self.realtime_mailbox_size < 1:
            raise ConfigurationError(
                "BEHAVIOR_REALTIME_MAILBOX_SIZE must be at least 1",
                details={"realtime_mailbox_size": self.realtime_mailbox_size},
            )

        if self.environment == Environment.PRODUCTION and self.jwt_secret == DEFAULT_JWT_SECRET:
            raise ConfigurationError(
                "BEHAVIOR_JWT_SECRET must be set in production"
            )

        # Warn about debug in production
        if self.environment == Environment.PRODUCTION and self.debug:
            import warnings
            warnings.warn(
                "Debug mode is enabled in production environment",
                RuntimeWarning,
                stacklevel=2
            )

    @property
    def config_dir(self) -> Path:
        """Get the config directory path."""
        return self.project_root / "config"

    @property
    def pipeline_defaults_file(self) -> Path:
        """YAML file holding the system policy and template catalog."""
        return self.policy_file or self.config_dir / "pipeline_defaults.yaml"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT


# Singleton instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config: The global configuration singleton.
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
