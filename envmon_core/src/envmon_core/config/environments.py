import os

from envmon_core.config.settings import Environment, Settings


def get_settings() -> Settings:
    """Get settings based on environment."""
    env = os.getenv("ENVMON_ENV", "development").lower()

    if env == "production":
        return Settings(ENVIRONMENT=Environment.PRODUCTION, LOG_LEVEL="WARNING")
    elif env == "testing":
        return Settings(
            ENVIRONMENT=Environment.TESTING,
            CONFIG_FILE="config.test.toml",
            FLUSH_INTERVAL_SEC=1.0,
            POLL_TIMEOUT_SEC=1.0,
            POLL_INTERVAL_SEC=2.0,
            DRY_RUN=True,
            LOG_LEVEL="DEBUG",
        )
    else:
        return Settings(ENVIRONMENT=Environment.DEVELOPMENT, LOG_LEVEL="DEBUG")
