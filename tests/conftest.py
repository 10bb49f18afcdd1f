import asyncio
from typing import Callable, Optional, Sequence, Union

import pytest

from converse import config as config_module
from converse import crypto
from converse.conversation.reconciler import StreamReconciler, reset_reconciler
from converse.conversation.storage import ConversationStore, reset_store
from converse.llm.base import GenerationGateway
from converse.llm.registry import reset_gateway
from converse.notifications import reset_sink
from converse.preferences import UserPreferences

Fragments = Union[Sequence[str], Callable[[str], Sequence[str]]]


class FakeGateway(GenerationGateway):
    """Scripted gateway: streams fixed fragments and can fail after k of them."""

    name = "fake"

    def __init__(
        self,
        fragments: Fragments = ("Hello", ", ", "world"),
        fail_after: Optional[int] = None,
        error: Optional[Exception] = None,
        image_result: str = "data:image/png;base64,iVBORw0KGgo=",
        image_error: Optional[Exception] = None,
        video_result: str = "https://videos.example/v1.mp4",
        video_progress: Sequence[str] = (),
        title_result: str = "Fake Title",
        title_gate: Optional[asyncio.Event] = None,
        stream_gate: Optional[asyncio.Event] = None,
    ):
        self.fragments = fragments
        self.fail_after = fail_after
        self.error = error or RuntimeError("stream broke")
        self.image_result = image_result
        self.image_error = image_error
        self.video_result = video_result
        self.video_progress = video_progress
        self.title_result = title_result
        self.title_gate = title_gate
        self.stream_gate = stream_gate
        self.calls: list[dict] = []

    def _fragments_for(self, text: str) -> list[str]:
        if callable(self.fragments):
            return list(self.fragments(text))
        return list(self.fragments)

    async def _stream(self, text: str):
        fragments = self._fragments_for(text)
        for i, fragment in enumerate(fragments):
            if self.fail_after == i:
                raise self.error
            if i == 1 and self.stream_gate is not None:
                await self.stream_gate.wait()
            yield fragment
            await asyncio.sleep(0)
        if self.fail_after is not None and self.fail_after >= len(fragments):
            raise self.error

    def _record(self, op: str, text: str, history=None, prefs=None, **extra) -> None:
        self.calls.append({
            "op": op,
            "text": text,
            "history": [m.content for m in history or []],
            "prefs": prefs,
            **extra,
        })

    def chat(self, history, new_input, prefs):
        self._record("chat", new_input, history, prefs)
        return self._stream(new_input)

    def chat_with_image(self, history, new_input, image, prefs):
        self._record("chat_with_image", new_input, history, prefs, image=image)
        return self._stream(new_input)

    def code_review(self, history, query, prefs):
        self._record("code_review", query, history, prefs)
        return self._stream(query)

    def script(self, history, prompt, prefs):
        self._record("script", prompt, history, prefs)
        return self._stream(prompt)

    def mind_map(self, prompt, prefs):
        self._record("mind_map", prompt, prefs=prefs)
        return self._stream(prompt)

    async def image(self, prompt):
        self._record("image", prompt)
        await asyncio.sleep(0)
        if self.image_error is not None:
            raise self.image_error
        return self.image_result

    async def video(self, prompt, on_progress=None):
        self._record("video", prompt)
        for step in self.video_progress:
            if on_progress:
                on_progress(step)
            await asyncio.sleep(0)
        return self.video_result

    async def download_video(self, uri):
        self._record("download_video", uri)
        return b"video-bytes"

    async def title(self, seed_text):
        if self.title_gate is not None:
            await self.title_gate.wait()
        return self.title_result


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point every persisted file at a temp dir and drop cached singletons."""
    config_dir = tmp_path / "converse"
    monkeypatch.setattr(config_module, "_config_dir", config_dir)
    for name in ("GEMINI_API_KEY", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"):
        monkeypatch.delenv(name, raising=False)

    def reset_all():
        config_module.reset_config_cache()
        crypto.reset_key_cache()
        reset_store()
        reset_gateway()
        reset_reconciler()
        reset_sink()

    reset_all()
    yield config_dir
    reset_all()


@pytest.fixture
def store(tmp_path):
    return ConversationStore(tmp_path / "conversations.json")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def reconciler(store, gateway):
    return StreamReconciler(store, gateway, preferences_loader=UserPreferences)
