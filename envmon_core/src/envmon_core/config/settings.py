# envmon_core/config/settings.py

from enum import Enum

from pydantic_settings import BaseSettings


class Environment(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TESTING = "testing"


class Settings(BaseSettings):
    """Process level settings for the ingestion service."""

    # Environment
    ENVIRONMENT: Environment = Environment.DEVELOPMENT

    # Station document (sinks, defaults, sensors)
    CONFIG_FILE: str = "config.toml"

    # Scheduling fallbacks, used when the station document has no [defaults]
    FLUSH_INTERVAL_SEC: float = 60.0
    POLL_TIMEOUT_SEC: float = 30.0
    POLL_INTERVAL_SEC: float = 300.0

    # Behaviour
    DRY_RUN: bool = False
    VERBOSE: bool = False

    # Status API (0 disables it)
    STATUS_HOST: str = "127.0.0.1"
    STATUS_PORT: int = 0

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "ENVMON_"
        env_file = ".env"
