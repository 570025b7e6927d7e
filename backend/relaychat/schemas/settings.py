"""Settings schemas."""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from relaychat.services.provider_router import DEFAULT_REGISTRY

MODEL_PREFERENCES_KEY = "model-preferences"


def _all_enabled() -> dict[str, bool]:
    return {provider: True for provider in DEFAULT_REGISTRY}


class ModelPreferences(BaseModel):
    """Which provider the UI preselects for each purpose.

    Read by the presentation layer only; the chat pipeline receives whatever
    provider id the caller ends up sending.
    """

    default_model: str = "gemini"
    suggestions_model: str = "gemini"
    follow_up_model: str = "gemini"
    enabled_models: dict[str, bool] = Field(default_factory=_all_enabled)

    @field_validator("default_model", "suggestions_model", "follow_up_model")
    @classmethod
    def known_provider(cls, value: str) -> str:
        if value not in DEFAULT_REGISTRY:
            raise ValueError(f"Unknown provider '{value}'")
        return value

    @field_validator("enabled_models")
    @classmethod
    def known_providers(cls, value: dict[str, bool]) -> dict[str, bool]:
        unknown = sorted(set(value) - set(DEFAULT_REGISTRY))
        if unknown:
            raise ValueError(f"Unknown providers: {', '.join(unknown)}")
        return {**_all_enabled(), **value}


class SettingValue(BaseModel):
    """Body for writing a single setting."""

    value: Any = None


class SettingResponse(BaseModel):
    key: str
    value: Any = None
