import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..config import config_dir
from .models import Conversation, Message, now_iso

logger = logging.getLogger(__name__)


class ConversationStore:
    """Ordered collection of conversations persisted as one JSON document.

    The collection is held as an immutable snapshot (a tuple of models that are
    replaced, never mutated in place). Each mutation builds a new snapshot,
    swaps it in and rewrites the whole file, so a reader always sees either
    the state before or after an update.

    Operations on unknown ids are no-ops: they return ``False``/``None`` and
    log at INFO so the condition stays visible without failing the caller.
    """

    def __init__(self, path: Path):
        self.path = path
        self._conversations: tuple[Conversation, ...] = self._load()
        self._active_id: Optional[str] = None
        self._tombstones: set[str] = set()
        self.revision = 0

    # ---- persistence ----

    def _load(self) -> tuple[Conversation, ...]:
        if not self.path.exists():
            return ()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return tuple(Conversation(**c) for c in data)
        except (json.JSONDecodeError, OSError, TypeError, ValidationError) as e:
            logger.warning("Discarding corrupt conversation store %s: %s", self.path, e)
            self.path.unlink(missing_ok=True)
            return ()

    def _commit(self, conversations: tuple[Conversation, ...]) -> None:
        self._conversations = conversations
        self.revision += 1
        if not conversations:
            self.path.unlink(missing_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(
                [c.model_dump(mode="json") for c in conversations],
                indent=2,
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )

    def _replace(self, conversation_id: str, fn) -> bool:
        """Commit a snapshot where *fn* replaces the matching conversation.

        *fn* returns the new conversation, or ``None`` to leave the store as is.
        """
        for i, conv in enumerate(self._conversations):
            if conv.id == conversation_id:
                updated = fn(conv)
                if updated is None:
                    return False
                snapshot = list(self._conversations)
                snapshot[i] = updated
                self._commit(tuple(snapshot))
                return True
        self._log_missing(conversation_id)
        return False

    def _log_missing(self, conversation_id: str) -> None:
        if conversation_id in self._tombstones:
            logger.debug("Ignoring update for deleted conversation %s", conversation_id)
        else:
            logger.info("Conversation %s not found", conversation_id)

    # ---- reads ----

    def list_conversations(self) -> list[Conversation]:
        """Pinned first, then store order (newest conversations at the front)."""
        return sorted(self._conversations, key=lambda c: not c.is_pinned)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        return None

    def get_message(self, conversation_id: str, message_id: str) -> Optional[Message]:
        conv = self.get_conversation(conversation_id)
        if conv is None:
            return None
        for m in conv.messages:
            if m.id == message_id:
                return m
        return None

    def is_tombstoned(self, conversation_id: str) -> bool:
        return conversation_id in self._tombstones

    # ---- active pointer ----

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def active_conversation(self) -> Optional[Conversation]:
        if self._active_id is None:
            return None
        return self.get_conversation(self._active_id)

    def select(self, conversation_id: str) -> bool:
        if self.get_conversation(conversation_id) is None:
            self._log_missing(conversation_id)
            return False
        self._active_id = conversation_id
        return True

    def clear_active(self) -> None:
        self._active_id = None

    # ---- mutations ----

    def create_conversation(self, initial_message: Message, title: str) -> str:
        conv = Conversation(title=title, messages=[initial_message])
        self._commit((conv, *self._conversations))
        logger.info("Created conversation %s", conv.id)
        return conv.id

    def append_message(self, conversation_id: str, message: Message) -> bool:
        return self._replace(
            conversation_id,
            lambda c: c.model_copy(
                update={"messages": [*c.messages, message], "updated_at": now_iso()}
            ),
        )

    def update_message(self, conversation_id: str, message_id: str, **fields) -> bool:
        """Patch one message. The patched message is re-validated."""

        def patch(conv: Conversation) -> Optional[Conversation]:
            messages = list(conv.messages)
            for i, m in enumerate(messages):
                if m.id == message_id:
                    messages[i] = Message.model_validate({**m.model_dump(), **fields})
                    return conv.model_copy(
                        update={"messages": messages, "updated_at": now_iso()}
                    )
            logger.info("Message %s not found in conversation %s", message_id, conversation_id)
            return None

        return self._replace(conversation_id, patch)

    def append_fragment(self, conversation_id: str, message_id: str, fragment: str) -> bool:
        """Append *fragment* to a message's content, read from the current snapshot.

        Errored messages are terminal and refuse further fragments.
        """

        def patch(conv: Conversation) -> Optional[Conversation]:
            messages = list(conv.messages)
            for i, m in enumerate(messages):
                if m.id == message_id:
                    if m.is_error:
                        return None
                    messages[i] = m.model_copy(update={"content": m.content + fragment})
                    return conv.model_copy(update={"messages": messages})
            return None

        return self._replace(conversation_id, patch)

    def rename_conversation(self, conversation_id: str, title: str) -> bool:
        return self._replace(
            conversation_id,
            lambda c: c.model_copy(update={"title": title, "updated_at": now_iso()}),
        )

    def toggle_pin(self, conversation_id: str) -> Optional[bool]:
        """Flip the pinned flag; returns the new value, or ``None`` if unknown."""
        conv = self.get_conversation(conversation_id)
        if conv is None:
            self._log_missing(conversation_id)
            return None
        pinned = not conv.is_pinned
        self._replace(conversation_id, lambda c: c.model_copy(update={"is_pinned": pinned}))
        return pinned

    def delete_conversation(self, conversation_id: str) -> bool:
        remaining = tuple(c for c in self._conversations if c.id != conversation_id)
        if len(remaining) == len(self._conversations):
            self._log_missing(conversation_id)
            return False
        self._tombstones.add(conversation_id)
        if self._active_id == conversation_id:
            self._active_id = None
        self._commit(remaining)
        logger.info("Deleted conversation %s", conversation_id)
        return True


_store: Optional[ConversationStore] = None


def get_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = ConversationStore(config_dir() / "conversations.json")
    return _store


def reset_store() -> None:
    global _store
    _store = None
