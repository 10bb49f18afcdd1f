import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class GeminiConfig(BaseModel):
    api_key: str = ""
    chat_model: str = "gemini-2.5-flash"
    title_model: str = "gemini-2.5-flash"
    image_model: str = "imagen-4.0-generate-001"
    video_model: str = "veo-2.0-generate-001"
    video_poll_seconds: float = 10.0


class GoogleAuthConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expiry: str = ""
    email: str = ""
    name: str = ""
    logged_in: bool = False


class AppConfig(BaseModel):
    gemini: GeminiConfig = GeminiConfig()
    google_auth: GoogleAuthConfig = GoogleAuthConfig()
    notification_ttl_seconds: float = 5.0


_config_dir = Path(os.environ.get("CONVERSE_CONFIG_DIR", Path.home() / ".converse"))

# Sealed at rest (dot-path: "section.field")
SENSITIVE_FIELDS: list[str] = [
    "gemini.api_key",
    "google_auth.client_secret",
    "google_auth.access_token",
    "google_auth.refresh_token",
]

# Environment variables that seed empty fields on load
_ENV_DEFAULTS: dict[str, str] = {
    "gemini.api_key": "GEMINI_API_KEY",
    "google_auth.client_id": "GOOGLE_CLIENT_ID",
    "google_auth.client_secret": "GOOGLE_CLIENT_SECRET",
}


def config_dir() -> Path:
    return _config_dir


def _config_file() -> Path:
    return _config_dir / "config.json"


def _ensure_config_dir() -> None:
    _config_dir.mkdir(parents=True, exist_ok=True)


def _seal_sensitive(data: dict) -> dict:
    from .crypto import seal

    for dotpath in SENSITIVE_FIELDS:
        section, field = dotpath.split(".", 1)
        if section in data and field in data[section]:
            data[section][field] = seal(data[section][field])
    return data


def _unseal_sensitive(data: dict) -> dict:
    from .crypto import unseal

    for dotpath in SENSITIVE_FIELDS:
        section, field = dotpath.split(".", 1)
        if section in data and field in data[section]:
            data[section][field] = unseal(data[section][field])
    return data


def _apply_env_defaults(config: AppConfig) -> AppConfig:
    for dotpath, env_name in _ENV_DEFAULTS.items():
        section, field = dotpath.split(".", 1)
        target = getattr(config, section)
        value = os.environ.get(env_name, "")
        if value and not getattr(target, field):
            setattr(target, field, value)
    return config


def load_config() -> AppConfig:
    _ensure_config_dir()
    path = _config_file()
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return _apply_env_defaults(AppConfig(**_unseal_sensitive(data)))
        except (json.JSONDecodeError, OSError, ValueError) as e:
            logger.warning("Discarding unreadable config.json: %s", e)
            path.unlink(missing_ok=True)
    return _apply_env_defaults(AppConfig())


def save_config(config: AppConfig) -> None:
    from .crypto import set_strict_permissions

    _ensure_config_dir()
    data = json.loads(config.model_dump_json())
    data = _seal_sensitive(data)
    path = _config_file()
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    set_strict_permissions(path)


_current_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    global _current_config
    if _current_config is None:
        _current_config = load_config()
    return _current_config


def update_config(config: AppConfig) -> AppConfig:
    global _current_config
    save_config(config)
    _current_config = config
    return _current_config


def reset_config_cache() -> None:
    global _current_config
    _current_config = None
