"""Drives a generation request from user input to a settled model message.

Every request follows the same steps regardless of mode:

1. resolve the target conversation (the active one, or a new one),
2. append the user's message before anything is awaited,
3. start background titling when the conversation is new,
4. append a placeholder model message whose id becomes the correlation key,
5. call the gateway with the mode's filtered history,
6. fold streamed fragments into the placeholder, or
7. store a single result (media URL) on it,
8. on failure mark the placeholder as an error and substitute the reason,
9. release the request handle exactly once.

All writes go through the store addressed by ``(conversation_id, message_id)``,
so concurrent requests never write into each other's messages, and a request
whose conversation was deleted keeps running with its writes ignored.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from ..llm.base import GenerationError, GenerationGateway
from ..llm.registry import get_gateway
from ..preferences import UserPreferences, load_preferences
from .models import ImageAttachment, Message, MessageKind, new_id
from .modes import GenerationMode, GenerationRequest, ModeDescriptor, resolve_mode
from .storage import ConversationStore, get_store
from .titles import TitleTasks

logger = logging.getLogger(__name__)

_MAX_FINISHED_HANDLES = 200


class GenerationState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


TERMINAL_STATES = {
    GenerationState.COMPLETED,
    GenerationState.FAILED,
    GenerationState.SUPERSEDED,
}


@dataclass
class GenerationEvent:
    type: str  # "token" | "progress" | "done" | "error"
    content: str = ""


class GenerationHandle:
    """Tracks one in-flight request; replaces a process-wide loading flag."""

    def __init__(self, mode: GenerationMode, conversation_id: str, message_id: str):
        self.id = new_id()
        self.mode = mode
        self.conversation_id = conversation_id
        self.message_id = message_id
        self.state = GenerationState.IDLE
        self.error: Optional[str] = None
        self.progress: Optional[str] = None
        self.task: Optional[asyncio.Task] = None
        self._events: asyncio.Queue[GenerationEvent] = asyncio.Queue()

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _emit(self, type: str, content: str = "") -> None:
        self._events.put_nowait(GenerationEvent(type=type, content=content))

    def _report_progress(self, text: str) -> None:
        self.progress = text
        self._emit("progress", text)

    async def events(self) -> AsyncIterator[GenerationEvent]:
        """Yield events until the request settles (``done`` or ``error``)."""
        while True:
            event = await self._events.get()
            yield event
            if event.type in ("done", "error"):
                return

    async def wait(self) -> "GenerationHandle":
        if self.task is not None:
            await asyncio.shield(self.task)
        return self

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "mode": self.mode.value,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "state": self.state.value,
            "error": self.error,
            "progress": self.progress,
        }


class StreamReconciler:
    def __init__(
        self,
        store: ConversationStore,
        gateway: Optional[GenerationGateway],
        preferences_loader: Callable[[], UserPreferences] = load_preferences,
    ):
        self.store = store
        self.gateway = gateway
        self.preferences_loader = preferences_loader
        self.titles = TitleTasks(store, gateway)
        self._outstanding: dict[str, GenerationHandle] = {}
        self._handles: dict[str, GenerationHandle] = {}

    def use_gateway(self, gateway: Optional[GenerationGateway]) -> None:
        """Swap the provider (e.g. after the API key changed); running requests keep theirs."""
        self.gateway = gateway
        self.titles.gateway = gateway

    # ---- outstanding requests ----

    @property
    def is_loading(self) -> bool:
        return bool(self._outstanding)

    def outstanding(self) -> list[GenerationHandle]:
        return list(self._outstanding.values())

    def get_handle(self, handle_id: str) -> Optional[GenerationHandle]:
        return self._handles.get(handle_id)

    def _remember(self, handle: GenerationHandle) -> None:
        self._handles[handle.id] = handle
        if len(self._handles) > _MAX_FINISHED_HANDLES:
            for old_id in [h.id for h in self._handles.values() if h.done]:
                if len(self._handles) <= _MAX_FINISHED_HANDLES:
                    break
                del self._handles[old_id]

    # ---- entry points ----

    def start_generation(
        self,
        mode: GenerationMode,
        text: str,
        image: Optional[ImageAttachment] = None,
    ) -> GenerationHandle:
        """Record the request in the store and schedule the gateway call.

        Must be called from a running event loop. The user message and the
        placeholder are in the store when this returns.
        """
        gateway = self.gateway
        if gateway is None:
            raise GenerationError("No Gemini API key configured.")
        descriptor = resolve_mode(mode, image)

        user_message = Message(role="user", content=text)
        if image is not None:
            user_message = Message(
                role="user",
                content=text,
                kind=MessageKind.IMAGE,
                media_url=image.data_uri,
            )

        active = self.store.active_conversation()
        if active is not None:
            conversation_id = active.id
            history = list(active.messages)
            self.store.append_message(conversation_id, user_message)
            is_new = False
        else:
            conversation_id = self.store.create_conversation(
                user_message, descriptor.provisional_title(text)
            )
            self.store.select(conversation_id)
            history = []
            is_new = True

        # An image-only message has nothing to title from
        if is_new and text.strip():
            self.titles.spawn(conversation_id, text)

        placeholder = Message(
            role="model",
            content=descriptor.placeholder_text,
            kind=descriptor.placeholder_kind,
        )
        self.store.append_message(conversation_id, placeholder)

        handle = GenerationHandle(descriptor.mode, conversation_id, placeholder.id)
        request = GenerationRequest(
            text=text,
            history=descriptor.history_filter(history),
            image=image,
            prefs=self.preferences_loader(),
            on_progress=handle._report_progress,
        )
        self._outstanding[handle.id] = handle
        self._remember(handle)
        handle.task = asyncio.get_running_loop().create_task(
            self._drive(handle, descriptor, request, gateway)
        )
        logger.info(
            "Dispatched %s request %s into conversation %s",
            descriptor.mode.value, handle.id, conversation_id,
        )
        return handle

    async def run_generation(
        self,
        mode: GenerationMode,
        text: str,
        image: Optional[ImageAttachment] = None,
    ) -> GenerationHandle:
        handle = self.start_generation(mode, text, image)
        return await handle.wait()

    def delete_conversation(self, conversation_id: str) -> bool:
        self.titles.cancel(conversation_id)
        return self.store.delete_conversation(conversation_id)

    # ---- the state machine ----

    async def _drive(
        self,
        handle: GenerationHandle,
        descriptor: ModeDescriptor,
        request: GenerationRequest,
        gateway: GenerationGateway,
    ) -> None:
        conversation_id, message_id = handle.conversation_id, handle.message_id
        handle.state = GenerationState.DISPATCHED
        try:
            if descriptor.streaming:
                await self._consume_stream(handle, descriptor, request, gateway)
            else:
                result = descriptor.invoke(gateway, request)
                if inspect.isawaitable(result):
                    result = await result
                self.store.update_message(
                    conversation_id,
                    message_id,
                    content=descriptor.completion_text,
                    media_url=result,
                )
            if self.store.get_conversation(conversation_id) is None:
                handle.state = GenerationState.SUPERSEDED
            else:
                handle.state = GenerationState.COMPLETED
        except asyncio.CancelledError:
            self._fail(handle, "Generation was cancelled.")
            raise
        except Exception as e:
            logger.error("Generation %s (%s) failed: %s", handle.id, descriptor.mode.value, e)
            self._fail(handle, str(e) or descriptor.fallback_error)
        finally:
            self._outstanding.pop(handle.id, None)
            if handle.state == GenerationState.FAILED:
                handle._emit("error", handle.error or "")
            else:
                handle._emit("done", handle.state.value)

    async def _consume_stream(
        self,
        handle: GenerationHandle,
        descriptor: ModeDescriptor,
        request: GenerationRequest,
        gateway: GenerationGateway,
    ) -> None:
        fragments = descriptor.invoke(gateway, request)
        if inspect.isawaitable(fragments):
            fragments = await fragments
        async for fragment in fragments:
            handle.state = GenerationState.STREAMING
            if not fragment:
                continue
            if self.store.append_fragment(handle.conversation_id, handle.message_id, fragment):
                handle._emit("token", fragment)

    def _fail(self, handle: GenerationHandle, reason: str) -> None:
        handle.state = GenerationState.FAILED
        handle.error = reason
        partial = self.store.get_message(handle.conversation_id, handle.message_id)
        if partial is not None and partial.content and handle.mode not in (
            GenerationMode.IMAGE,
            GenerationMode.VIDEO,
        ):
            logger.warning(
                "Replacing %d streamed characters of message %s with the error text",
                len(partial.content), handle.message_id,
            )
        self.store.update_message(
            handle.conversation_id, handle.message_id, content=reason, is_error=True
        )


_reconciler: Optional[StreamReconciler] = None


def get_reconciler() -> StreamReconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = StreamReconciler(get_store(), get_gateway())
    elif _reconciler.gateway is None:
        _reconciler.use_gateway(get_gateway())
    return _reconciler


def reset_reconciler() -> None:
    global _reconciler
    _reconciler = None
