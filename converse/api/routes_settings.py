from typing import Optional

from fastapi import APIRouter

from ..config import AppConfig, get_config, update_config
from ..conversation.reconciler import get_reconciler
from ..llm.registry import get_gateway, reset_gateway
from ..notifications import get_sink
from ..preferences import (
    ThemeSetting,
    UserPreferences,
    load_preferences,
    load_theme,
    save_preferences,
    save_theme,
)

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("")
async def get_settings():
    config = get_config()
    return config.model_dump()


@router.put("")
async def update_settings(config: AppConfig):
    updated = update_config(config)
    reset_gateway()  # Force re-init of the Gemini client with the new key
    get_reconciler().use_gateway(get_gateway())
    get_sink().ttl_seconds = updated.notification_ttl_seconds
    return updated.model_dump()


@router.get("/preferences")
async def get_preferences():
    return load_preferences().model_dump()


@router.put("/preferences")
async def update_preferences(prefs: UserPreferences):
    return save_preferences(prefs).model_dump()


@router.get("/theme")
async def get_theme(system_prefers_dark: Optional[bool] = None):
    return {"theme": load_theme(system_prefers_dark)}


@router.put("/theme")
async def update_theme(setting: ThemeSetting):
    return {"theme": save_theme(setting.theme)}
