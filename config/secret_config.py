from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class SecretConfig(BaseSettings):
    """
    Sensitive config.

    This module is safe to commit: it contains *no* secrets, only loading logic.
    Real secret values should come from:
      - environment variables (preferred in production)
      - optional local `.env.secrets` file (developer convenience)
    """

    model_config = SettingsConfigDict(
        env_file=".env.secrets",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shared key for the HTTP queue API. Unset => every queue request is refused.
    queue_api_key: SecretStr | None = Field(default=None, alias="QUEUE_API_KEY")

    # storage URL (may embed credentials)
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Optional bearer token sent to webhook/direct delivery targets.
    delivery_auth_token: SecretStr | None = Field(default=None, alias="DELIVERY_AUTH_TOKEN")
