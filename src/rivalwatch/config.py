"""Application configuration for the monitoring pipeline.

Loads settings from .env file with RIVALWATCH_ prefix. Platform API keys
configured here are the process-wide defaults used when a user has no
connection of their own for that platform.
"""

from typing import Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """RivalWatch application settings.

    All settings are loaded from environment variables with RIVALWATCH_ prefix,
    or from a .env file in the working directory.
    """

    database_url: str = "sqlite:///./data/rivalwatch.db"
    debug: bool = False

    # Processing cycle
    processor_interval_minutes: int = 15
    result_retention_days: int = 30
    job_timeout_seconds: float = 120.0
    default_max_retries: int = 3
    http_timeout_seconds: float = 30.0
    page_user_agent: str = "RivalWatch-Monitor/1.0"

    # Remote gamification endpoint
    gamification_endpoint_url: str = (
        "http://localhost:8000/api/competitive-intelligence/gamification"
    )
    internal_api_key: Optional[SecretStr] = None

    # Process-wide platform credentials
    linkedin_access_token: Optional[SecretStr] = None
    twitter_bearer_token: Optional[SecretStr] = None
    facebook_access_token: Optional[SecretStr] = None
    instagram_access_token: Optional[SecretStr] = None
    instagram_business_account_id: Optional[str] = None
    youtube_api_key: Optional[SecretStr] = None

    model_config = {
        "env_file": ".env",
        "env_prefix": "RIVALWATCH_",
    }

    @model_validator(mode="after")
    def validate_positive_windows(self) -> "Settings":
        """Reject zero or negative intervals, windows and timeouts."""
        for field in (
            "processor_interval_minutes",
            "result_retention_days",
            "job_timeout_seconds",
            "default_max_retries",
            "http_timeout_seconds",
        ):
            if getattr(self, field) <= 0:
                raise ValueError(f"{field} must be positive")
        return self


def get_settings() -> Settings:
    """Create and return a Settings instance.

    Raises a clear error message if the environment holds an invalid value.
    """
    try:
        return Settings()
    except Exception as e:
        raise RuntimeError(
            f"Failed to load RivalWatch settings: {e}\n"
            "Check RIVALWATCH_* environment variables and the .env file."
        ) from e
