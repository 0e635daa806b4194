from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Service configuration loaded from environment variables (or a .env file).

    An instance is handed explicitly to the components that need it; nothing
    reads the environment at import time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "sqlite:///./flashcards.db"

    stripe_secret_key: Optional[SecretStr] = None
    stripe_webhook_secret: Optional[SecretStr] = None
    stripe_price_id: Optional[str] = None
    webhook_tolerance_seconds: int = Field(default=300, ge=1)
    checkout_success_url: str = "http://localhost:3000/success"
    checkout_cancel_url: str = "http://localhost:3000/cancel"

    anthropic_api_key: Optional[SecretStr] = None
    anthropic_model: str = "claude-3-haiku-20240307"
    anthropic_max_tokens: int = Field(default=4000, ge=1)

    firebase_project_id: Optional[str] = None

    cors_origins: List[str] = ["http://localhost:3000"]
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def secret_value(secret: Optional[SecretStr]) -> Optional[str]:
    """Return the plain secret, treating an empty string as unset."""
    if secret is None:
        return None
    return secret.get_secret_value() or None
