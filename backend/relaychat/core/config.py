"""Application configuration settings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _find_env_file() -> str | None:
    """Find .env file in common locations.

    Checks (in order):
    1. ../.env (running from backend/ directory - local dev)
    2. .env (running from project root)
    3. None (rely on environment variables only)
    """
    candidates = [
        Path("../.env"),
        Path(".env"),
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Provider credentials are deliberately absent: they arrive per request
    from the caller and never live in process configuration.
    """

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    api_v1_prefix: str = "/v1"

    # Local conversation store (embedded SQLite by default)
    database_url: str = Field(default="sqlite+aiosqlite:///./relaychat.db")

    # Chat pipeline
    default_provider: str = "openai"
    chat_temperature: float = 0.7
    chat_max_tokens: int = 2048
    stream_timeout_seconds: float = 30.0
    partial_reply_policy: Literal["discard", "persist"] = "discard"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    @model_validator(mode="after")
    def validate_chat_settings(self) -> "Settings":
        """Validate pipeline settings based on environment.

        An unknown DEFAULT_PROVIDER is always fatal. Other invalid values are
        fatal in production and logged in development, so the server can
        still start for local experiments.
        """
        # Imported here: provider_router must stay importable without settings
        from relaychat.services.provider_router import DEFAULT_REGISTRY

        warnings: list[str] = []
        errors: list[str] = []

        if self.default_provider not in DEFAULT_REGISTRY:
            # Fatal in every environment
            raise ValueError(
                f"DEFAULT_PROVIDER '{self.default_provider}' is not one of: "
                f"{', '.join(sorted(DEFAULT_REGISTRY))}."
            )

        if self.stream_timeout_seconds <= 0:
            errors.append("STREAM_TIMEOUT_SECONDS must be positive.")

        if self.chat_max_tokens <= 0:
            errors.append("CHAT_MAX_TOKENS must be positive.")

        if not self.database_url.startswith("sqlite"):
            warnings.append(
                "DATABASE_URL does not point at SQLite. The conversation store "
                "is meant to be local to this machine."
            )

        if self.database_url.endswith(":memory:"):
            warnings.append(
                "In-memory DATABASE_URL: conversation history will not survive a restart."
            )

        for warning in warnings:
            logger.warning(f"CONFIG WARNING: {warning}")

        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            if self.app_env == "production":
                raise ValueError(error_msg)
            logger.warning(error_msg)

        return self

    @property
    def is_sqlite(self) -> bool:
        """Whether the store runs on the embedded SQLite engine."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
