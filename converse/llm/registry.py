from typing import Optional

from ..config import get_config
from .base import GenerationGateway
from .gemini_provider import GeminiGateway

_gateway: Optional[GenerationGateway] = None


def _init_gateway() -> Optional[GenerationGateway]:
    gemini = get_config().gemini
    if not gemini.api_key:
        return None
    return GeminiGateway(
        api_key=gemini.api_key,
        chat_model=gemini.chat_model,
        title_model=gemini.title_model,
        image_model=gemini.image_model,
        video_model=gemini.video_model,
        video_poll_seconds=gemini.video_poll_seconds,
    )


def get_gateway() -> Optional[GenerationGateway]:
    """Return the configured gateway, or ``None`` while no API key is set."""
    global _gateway
    if _gateway is None:
        _gateway = _init_gateway()
    return _gateway


def set_gateway(gateway: Optional[GenerationGateway]) -> None:
    global _gateway
    _gateway = gateway


def reset_gateway() -> None:
    set_gateway(None)
