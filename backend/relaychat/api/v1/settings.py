"""Settings endpoints (keyed, last write wins)."""

from fastapi import APIRouter, HTTPException

from relaychat.api.deps import Store
from relaychat.schemas.settings import ModelPreferences, SettingResponse, SettingValue

router = APIRouter()


# Declared before /settings/{key} so the literal path wins
@router.get("/settings/model-preferences")
async def get_model_preferences(store: Store) -> ModelPreferences:
    return await store.load_model_preferences()


@router.put("/settings/model-preferences")
async def put_model_preferences(payload: ModelPreferences, store: Store) -> ModelPreferences:
    await store.save_model_preferences(payload)
    return payload


@router.get("/settings/{key}")
async def get_setting(key: str, store: Store) -> SettingResponse:
    _missing = object()
    value = await store.load_setting(key, default=_missing)
    if value is _missing:
        raise HTTPException(status_code=404, detail="Setting not found")
    return SettingResponse(key=key, value=value)


@router.put("/settings/{key}")
async def put_setting(key: str, payload: SettingValue, store: Store) -> SettingResponse:
    await store.save_setting(key, payload.value)
    return SettingResponse(key=key, value=payload.value)
