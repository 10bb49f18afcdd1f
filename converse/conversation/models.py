import base64
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


def new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    MINDMAP = "mindmap"


_MEDIA_KINDS = {MessageKind.IMAGE, MessageKind.VIDEO}


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    role: Literal["user", "model"]
    content: str = ""
    timestamp: int = Field(default_factory=now_ms)
    kind: MessageKind = MessageKind.TEXT
    media_url: Optional[str] = None  # remote URL or data: URI, image/video only
    is_error: bool = False

    @model_validator(mode="after")
    def _media_only_on_media_kinds(self) -> "Message":
        if self.media_url and self.kind not in _MEDIA_KINDS:
            raise ValueError(f"a {self.kind.value} message cannot carry media_url")
        return self

    @property
    def image_url(self) -> Optional[str]:
        return self.media_url if self.kind == MessageKind.IMAGE else None

    @property
    def video_url(self) -> Optional[str]:
        return self.media_url if self.kind == MessageKind.VIDEO else None

    @property
    def is_mind_map(self) -> bool:
        return self.kind == MessageKind.MINDMAP

    @property
    def has_media(self) -> bool:
        return self.kind in _MEDIA_KINDS


class Conversation(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    messages: list[Message] = []
    is_pinned: bool = False
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class ConversationSummary(BaseModel):
    """Lightweight metadata for the sidebar list."""

    id: str
    title: str
    is_pinned: bool = False
    message_count: int = 0
    preview: str = ""  # First ~80 chars of the first user message
    updated_at: str = ""

    @classmethod
    def of(cls, conv: Conversation) -> "ConversationSummary":
        preview = ""
        for m in conv.messages:
            if m.role == "user":
                preview = m.content[:80]
                break
        return cls(
            id=conv.id,
            title=conv.title,
            is_pinned=conv.is_pinned,
            message_count=len(conv.messages),
            preview=preview,
            updated_at=conv.updated_at,
        )


class ImageAttachment(BaseModel):
    """An image sent alongside a chat message, base64 encoded."""

    mime_type: str = "image/png"
    data: str

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    @classmethod
    def from_data_uri(cls, uri: str) -> "ImageAttachment":
        header, sep, payload = uri.partition(",")
        if not sep or not header.startswith("data:") or ";base64" not in header:
            raise ValueError("expected a base64 data: URI")
        mime_type = header[len("data:"):].split(";", 1)[0] or "image/png"
        return cls(mime_type=mime_type, data=payload)
