"""Per-mode descriptors for the generation flow.

The reconciliation algorithm is the same for every mode; what varies is which
gateway operation runs, how much history it sees, and how the conversation
and placeholder look before the first fragment arrives.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..llm.base import GenerationError, GenerationGateway, ProgressCallback
from ..preferences import UserPreferences
from .models import ImageAttachment, Message, MessageKind


class GenerationMode(str, Enum):
    CHAT = "chat"
    CHAT_WITH_IMAGE = "chat_with_image"
    CODE = "code"
    SCRIPT = "script"
    MINDMAP = "mindmap"
    IMAGE = "image"
    VIDEO = "video"


@dataclass
class GenerationRequest:
    text: str
    history: list[Message] = field(default_factory=list)
    image: Optional[ImageAttachment] = None
    prefs: UserPreferences = field(default_factory=UserPreferences)
    on_progress: Optional[ProgressCallback] = None


def text_history(messages: list[Message]) -> list[Message]:
    """History for text modes: no errors, no media turns, no empty placeholders."""
    return [m for m in messages if not m.is_error and not m.has_media and m.content]


def no_history(messages: list[Message]) -> list[Message]:
    return []


def fixed_title(title: str) -> Callable[[str], str]:
    return lambda text: title


def prefixed_title(prefix: str) -> Callable[[str], str]:
    return lambda text: f"{prefix}: {text[:20]}..."


@dataclass(frozen=True)
class ModeDescriptor:
    mode: GenerationMode
    streaming: bool
    invoke: Callable[[GenerationGateway, GenerationRequest], Any]
    history_filter: Callable[[list[Message]], list[Message]]
    provisional_title: Callable[[str], str]
    placeholder_kind: MessageKind = MessageKind.TEXT
    placeholder_text: str = ""
    completion_text: str = ""
    fallback_error: str = "Sorry, an error occurred. Please try again."


MODES: dict[GenerationMode, ModeDescriptor] = {
    GenerationMode.CHAT: ModeDescriptor(
        mode=GenerationMode.CHAT,
        streaming=True,
        invoke=lambda gw, req: gw.chat(req.history, req.text, req.prefs),
        history_filter=text_history,
        provisional_title=fixed_title("New Chat"),
    ),
    GenerationMode.CHAT_WITH_IMAGE: ModeDescriptor(
        mode=GenerationMode.CHAT_WITH_IMAGE,
        streaming=True,
        invoke=lambda gw, req: gw.chat_with_image(req.history, req.text, req.image, req.prefs),
        history_filter=text_history,
        provisional_title=fixed_title("New Chat"),
    ),
    GenerationMode.CODE: ModeDescriptor(
        mode=GenerationMode.CODE,
        streaming=True,
        invoke=lambda gw, req: gw.code_review(req.history, req.text, req.prefs),
        history_filter=text_history,
        provisional_title=prefixed_title("Code Review"),
    ),
    GenerationMode.SCRIPT: ModeDescriptor(
        mode=GenerationMode.SCRIPT,
        streaming=True,
        invoke=lambda gw, req: gw.script(req.history, req.text, req.prefs),
        history_filter=text_history,
        provisional_title=prefixed_title("Script"),
    ),
    GenerationMode.MINDMAP: ModeDescriptor(
        mode=GenerationMode.MINDMAP,
        streaming=True,
        invoke=lambda gw, req: gw.mind_map(req.text, req.prefs),
        history_filter=no_history,
        provisional_title=prefixed_title("Mind Map"),
        placeholder_kind=MessageKind.MINDMAP,
        fallback_error="Sorry, could not generate the mind map. Please try again.",
    ),
    GenerationMode.IMAGE: ModeDescriptor(
        mode=GenerationMode.IMAGE,
        streaming=False,
        invoke=lambda gw, req: gw.image(req.text),
        history_filter=no_history,
        provisional_title=prefixed_title("Image"),
        placeholder_kind=MessageKind.IMAGE,
        placeholder_text="Generating image...",
        completion_text="",
        fallback_error="Sorry, could not generate image. Please try again.",
    ),
    GenerationMode.VIDEO: ModeDescriptor(
        mode=GenerationMode.VIDEO,
        streaming=False,
        invoke=lambda gw, req: gw.video(req.text, req.on_progress),
        history_filter=no_history,
        provisional_title=prefixed_title("Video"),
        placeholder_kind=MessageKind.VIDEO,
        placeholder_text="Generating video... this can take a few minutes.",
        completion_text="Video generated.",
        fallback_error="Sorry, could not generate video. Please try again.",
    ),
}


_CHAT_MODES = {GenerationMode.CHAT, GenerationMode.CHAT_WITH_IMAGE}


def resolve_mode(mode: GenerationMode, image: Optional[ImageAttachment]) -> ModeDescriptor:
    """Pick the chat variant from whether an image is attached.

    Other modes take no image and raise ``GenerationError`` when given one.
    """
    if mode in _CHAT_MODES:
        mode = GenerationMode.CHAT if image is None else GenerationMode.CHAT_WITH_IMAGE
    elif image is not None:
        raise GenerationError(
            f"Images can only be attached in chat mode, not {mode.value}."
        )
    return MODES[mode]
