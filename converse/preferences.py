"""User preferences and theme, each persisted as its own JSON document."""

import json
import logging
from typing import Literal, Optional

from pydantic import BaseModel, ValidationError

from .config import _ensure_config_dir, config_dir

logger = logging.getLogger(__name__)

Theme = Literal["light", "dark"]


class UserPreferences(BaseModel):
    user_name: str = ""
    custom_instruction: str = ""


class ThemeSetting(BaseModel):
    theme: Theme


def _preferences_file():
    return config_dir() / "preferences.json"


def _theme_file():
    return config_dir() / "theme.json"


def load_preferences() -> UserPreferences:
    """Load preferences; a corrupt file is discarded and defaults returned."""
    _ensure_config_dir()
    path = _preferences_file()
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return UserPreferences(**data)
        except (json.JSONDecodeError, OSError, TypeError, ValidationError) as e:
            logger.warning("Discarding corrupt preferences.json: %s", e)
            path.unlink(missing_ok=True)
    return UserPreferences()


def save_preferences(prefs: UserPreferences) -> UserPreferences:
    _ensure_config_dir()
    _preferences_file().write_text(
        json.dumps(prefs.model_dump(), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    return prefs


def load_theme(system_prefers_dark: Optional[bool] = None) -> Theme:
    """Return the saved theme, else follow the system signal (light if unknown)."""
    _ensure_config_dir()
    path = _theme_file()
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return ThemeSetting(**data).theme
        except (json.JSONDecodeError, OSError, TypeError, ValidationError) as e:
            logger.warning("Discarding corrupt theme.json: %s", e)
            path.unlink(missing_ok=True)
    return "dark" if system_prefers_dark else "light"


def save_theme(theme: Theme) -> Theme:
    _ensure_config_dir()
    setting = ThemeSetting(theme=theme)
    _theme_file().write_text(json.dumps(setting.model_dump()), encoding="utf-8")
    return setting.theme


def build_system_instruction(prefs: UserPreferences, base: str = "") -> Optional[str]:
    """Combine a mode's base instruction with the user's personalisation."""
    parts = []
    if base:
        parts.append(base)
    if prefs.user_name:
        parts.append(f"The user's name is {prefs.user_name}.")
    if prefs.custom_instruction:
        parts.append(prefs.custom_instruction)
    return "\n\n".join(parts) or None
