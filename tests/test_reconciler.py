import asyncio

import pytest

from conftest import FakeGateway
from converse.conversation.mindmap import parse_mind_map
from converse.conversation.models import ImageAttachment, Message, MessageKind
from converse.conversation.modes import GenerationMode
from converse.conversation.reconciler import GenerationState, StreamReconciler
from converse.llm.base import GenerationError
from converse.preferences import UserPreferences


def _model_message(store, handle) -> Message:
    return store.get_message(handle.conversation_id, handle.message_id)


class TestChatFlow:
    async def test_new_chat_streams_and_gets_title(self, reconciler, store):
        handle = reconciler.start_generation(GenerationMode.CHAT, "Hello")

        # Recorded before anything is awaited
        conv = store.get_conversation(handle.conversation_id)
        assert conv.title == "New Chat"
        assert [m.role for m in conv.messages] == ["user", "model"]
        assert conv.messages[0].content == "Hello"
        assert store.active_id == conv.id
        assert reconciler.is_loading

        await handle.wait()
        await reconciler.titles.wait_all()

        assert handle.state == GenerationState.COMPLETED
        assert _model_message(store, handle).content == "Hello, world"
        assert not _model_message(store, handle).is_error
        assert store.get_conversation(conv.id).title == "Fake Title"
        assert not reconciler.is_loading

    async def test_followup_reuses_active_conversation_with_history(self, reconciler, store, gateway):
        first = await reconciler.run_generation(GenerationMode.CHAT, "Hi")
        second = await reconciler.run_generation(GenerationMode.CHAT, "And then?")

        assert second.conversation_id == first.conversation_id
        assert len(store.list_conversations()) == 1
        assert gateway.calls[-1]["history"] == ["Hi", "Hello, world"]
        contents = [m.content for m in store.get_conversation(first.conversation_id).messages]
        assert contents == ["Hi", "Hello, world", "And then?", "Hello, world"]

    async def test_events_carry_each_fragment(self, reconciler):
        handle = reconciler.start_generation(GenerationMode.CHAT, "Hi")
        events = [e async for e in handle.events()]
        assert [e.content for e in events if e.type == "token"] == ["Hello", ", ", "world"]
        assert events[-1].type == "done"
        assert events[-1].content == "completed"

    async def test_empty_fragments_are_skipped(self, store):
        gateway = FakeGateway(fragments=["a", "", "b"])
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = await reconciler.run_generation(GenerationMode.CHAT, "x")
        assert _model_message(store, handle).content == "ab"

    async def test_preferences_reach_the_gateway(self, store, gateway):
        prefs = UserPreferences(user_name="Ada", custom_instruction="Be brief.")
        reconciler = StreamReconciler(store, gateway, preferences_loader=lambda: prefs)
        await reconciler.run_generation(GenerationMode.CHAT, "Hi")
        assert gateway.calls[0]["prefs"] == prefs

    async def test_attached_image_promotes_chat(self, reconciler, store, gateway):
        image = ImageAttachment(mime_type="image/jpeg", data="/9j/4AAQ")
        handle = await reconciler.run_generation(GenerationMode.CHAT, "What is this?", image)

        assert handle.mode == GenerationMode.CHAT_WITH_IMAGE
        assert gateway.calls[0]["op"] == "chat_with_image"
        user = store.get_conversation(handle.conversation_id).messages[0]
        assert user.kind == MessageKind.IMAGE
        assert user.image_url == "data:image/jpeg;base64,/9j/4AAQ"

    async def test_image_mode_without_image_falls_back_to_chat(self, reconciler, store, gateway):
        handle = await reconciler.run_generation(GenerationMode.CHAT_WITH_IMAGE, "Hi")

        assert handle.mode == GenerationMode.CHAT
        assert gateway.calls[0]["op"] == "chat"
        assert not _model_message(store, handle).is_error

    @pytest.mark.parametrize("mode", [GenerationMode.IMAGE, GenerationMode.VIDEO, GenerationMode.CODE])
    async def test_image_outside_chat_is_rejected(self, reconciler, store, gateway, mode):
        image = ImageAttachment(mime_type="image/png", data="iVBORw0KGgo=")
        with pytest.raises(GenerationError, match="chat mode"):
            reconciler.start_generation(mode, "a fox", image)
        assert store.list_conversations() == []
        assert gateway.calls == []

    async def test_image_only_message_is_not_titled(self, reconciler, store):
        image = ImageAttachment(mime_type="image/png", data="iVBORw0KGgo=")
        handle = await reconciler.run_generation(GenerationMode.CHAT, "", image)

        assert reconciler.titles.pending() == []
        assert store.get_conversation(handle.conversation_id).title == "New Chat"

    async def test_without_gateway_nothing_is_recorded(self, store):
        reconciler = StreamReconciler(store, None, preferences_loader=UserPreferences)
        with pytest.raises(GenerationError):
            reconciler.start_generation(GenerationMode.CHAT, "Hi")
        assert store.list_conversations() == []


class TestFailures:
    @pytest.mark.parametrize("k", [0, 2])
    async def test_failure_after_k_fragments_substitutes_error(self, store, k):
        gateway = FakeGateway(fragments=["a", "b", "c"], fail_after=k, error=GenerationError("quota exceeded"))
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)

        handle = await reconciler.run_generation(GenerationMode.CHAT, "Hi")

        message = _model_message(store, handle)
        assert message.is_error
        assert message.content == "quota exceeded"
        assert handle.state == GenerationState.FAILED
        assert handle.error == "quota exceeded"
        assert not reconciler.is_loading

    async def test_blank_error_uses_fallback_text(self, store):
        gateway = FakeGateway(fail_after=0, error=RuntimeError())
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = await reconciler.run_generation(GenerationMode.CHAT, "Hi")
        assert _model_message(store, handle).content == "Sorry, an error occurred. Please try again."

    async def test_error_event_is_last(self, store):
        gateway = FakeGateway(fail_after=1, error=GenerationError("boom"))
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = reconciler.start_generation(GenerationMode.CHAT, "Hi")
        events = [e async for e in handle.events()]
        assert [e.type for e in events] == ["token", "error"]
        assert events[-1].content == "boom"

    async def test_errored_messages_are_not_sent_as_history(self, store):
        gateway = FakeGateway(fail_after=0, error=GenerationError("boom"))
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        await reconciler.run_generation(GenerationMode.CHAT, "first")

        gateway.fail_after = None
        await reconciler.run_generation(GenerationMode.CHAT, "second")
        assert gateway.calls[-1]["history"] == ["first"]

    async def test_cancelled_generation_marks_message_failed(self, store):
        gate = asyncio.Event()
        gateway = FakeGateway(stream_gate=gate)
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = reconciler.start_generation(GenerationMode.CHAT, "Hi")
        await asyncio.sleep(0.01)

        handle.task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handle.task

        assert _model_message(store, handle).is_error
        assert handle.state == GenerationState.FAILED
        assert not reconciler.is_loading


class TestMediaModes:
    async def test_image_success(self, reconciler, store):
        handle = reconciler.start_generation(GenerationMode.IMAGE, "a red fox in the snow at dawn")

        conv = store.get_conversation(handle.conversation_id)
        assert conv.title == "Image: a red fox in the sno..."
        placeholder = _model_message(store, handle)
        assert placeholder.content == "Generating image..."
        assert placeholder.kind == MessageKind.IMAGE

        await handle.wait()
        message = _model_message(store, handle)
        assert message.content == ""
        assert message.image_url == "data:image/png;base64,iVBORw0KGgo="
        assert not message.is_error

    async def test_image_failure(self, store):
        gateway = FakeGateway(image_error=GenerationError("Image generation failed: blocked"))
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = await reconciler.run_generation(GenerationMode.IMAGE, "a fox")

        message = _model_message(store, handle)
        assert message.is_error
        assert message.content == "Image generation failed: blocked"
        assert message.image_url is None

    async def test_image_in_existing_conversation(self, reconciler, store, gateway):
        chat = await reconciler.run_generation(GenerationMode.CHAT, "Hi")
        image = await reconciler.run_generation(GenerationMode.IMAGE, "a red fox")

        assert image.conversation_id == chat.conversation_id
        assert gateway.calls[-1] == {"op": "image", "text": "a red fox", "history": [], "prefs": None}
        messages = store.get_conversation(chat.conversation_id).messages
        assert len(messages) == 4
        assert messages[2].role == "user"
        assert messages[2].content == "a red fox"
        assert messages[3].image_url == "data:image/png;base64,iVBORw0KGgo="

    async def test_video_reports_progress(self, store):
        gateway = FakeGateway(video_progress=["Still generating video (10s)..."])
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = reconciler.start_generation(GenerationMode.VIDEO, "waves at sunset")
        events = [e async for e in handle.events()]

        assert ("progress", "Still generating video (10s)...") in [(e.type, e.content) for e in events]
        message = _model_message(store, handle)
        assert message.content == "Video generated."
        assert message.video_url == "https://videos.example/v1.mp4"

    async def test_media_messages_excluded_from_text_history(self, reconciler, gateway):
        await reconciler.run_generation(GenerationMode.IMAGE, "a fox")
        await reconciler.run_generation(GenerationMode.CHAT, "describe it")
        # The image reply is dropped, its text prompt stays
        assert gateway.calls[-1]["history"] == ["a fox"]

    async def test_mind_map_is_parsed_only_when_complete(self, store):
        fragments = ['{"topic": "Py', 'thon", "children": [', '{"topic": "Syntax"}]}']
        gateway = FakeGateway(fragments=fragments)
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = await reconciler.run_generation(GenerationMode.MINDMAP, "Python")

        for end in range(1, len(fragments)):
            partial = "".join(fragments[:end])
            assert parse_mind_map(partial, complete=False) is None
            assert parse_mind_map(partial, complete=True) is None

        message = _model_message(store, handle)
        assert message.is_mind_map
        tree = parse_mind_map(message.content, complete=True)
        assert tree.topic == "Python"
        assert [c.topic for c in tree.children] == ["Syntax"]
        assert store.get_conversation(handle.conversation_id).title.startswith("Mind Map: Python")


class TestConcurrency:
    async def test_concurrent_generations_do_not_mix(self, store):
        gateway = FakeGateway(fragments=lambda text: [text, "-", text.upper()])
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)

        first = reconciler.start_generation(GenerationMode.CHAT, "alpha")
        store.clear_active()
        second = reconciler.start_generation(GenerationMode.CHAT, "beta")
        assert len(reconciler.outstanding()) == 2

        await asyncio.gather(first.wait(), second.wait())

        assert first.conversation_id != second.conversation_id
        assert _model_message(store, first).content == "alpha-ALPHA"
        assert _model_message(store, second).content == "beta-BETA"
        assert not reconciler.is_loading

    async def test_same_conversation_requests_target_their_own_placeholders(self, store):
        gateway = FakeGateway(fragments=lambda text: [text, "!"])
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)

        first = reconciler.start_generation(GenerationMode.CHAT, "one")
        second = reconciler.start_generation(GenerationMode.CHAT, "two")
        await asyncio.gather(first.wait(), second.wait())

        assert first.conversation_id == second.conversation_id
        assert _model_message(store, first).content == "one!"
        assert _model_message(store, second).content == "two!"

    async def test_deleting_conversation_supersedes_stream(self, store):
        gate = asyncio.Event()
        gateway = FakeGateway(stream_gate=gate)
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = reconciler.start_generation(GenerationMode.CHAT, "Hi")
        await asyncio.sleep(0.01)

        assert reconciler.delete_conversation(handle.conversation_id)
        gate.set()
        await handle.wait()

        assert handle.state == GenerationState.SUPERSEDED
        assert store.get_conversation(handle.conversation_id) is None
        assert store.list_conversations() == []


class TestTitles:
    async def test_late_title_after_delete_is_dropped(self, store):
        gate = asyncio.Event()
        gateway = FakeGateway(title_gate=gate)
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = await reconciler.run_generation(GenerationMode.CHAT, "Hi")

        # Delete through the store so the title task is still running
        store.delete_conversation(handle.conversation_id)
        gate.set()
        await reconciler.titles.wait_all()

        assert store.get_conversation(handle.conversation_id) is None
        assert store.list_conversations() == []

    async def test_delete_cancels_title_task(self, store):
        gate = asyncio.Event()
        gateway = FakeGateway(title_gate=gate)
        reconciler = StreamReconciler(store, gateway, preferences_loader=UserPreferences)
        handle = await reconciler.run_generation(GenerationMode.CHAT, "Hi")
        [task] = reconciler.titles.pending()

        reconciler.delete_conversation(handle.conversation_id)
        await asyncio.sleep(0.01)

        assert task.cancelled()
        assert reconciler.titles.pending() == []

    async def test_every_mode_gets_a_generated_title(self, reconciler, store):
        handle = await reconciler.run_generation(GenerationMode.SCRIPT, "A heist in Lisbon")
        assert store.get_conversation(handle.conversation_id).title == "Script: A heist in Lisbon..."
        await reconciler.titles.wait_all()
        assert store.get_conversation(handle.conversation_id).title == "Fake Title"

    async def test_title_failure_keeps_provisional_title(self, store):
        class NoTitleGateway(FakeGateway):
            async def title(self, seed_text):
                raise GenerationError("title model unavailable")

        reconciler = StreamReconciler(store, NoTitleGateway(), preferences_loader=UserPreferences)
        handle = await reconciler.run_generation(GenerationMode.CHAT, "Hi")
        await reconciler.titles.wait_all()
        assert store.get_conversation(handle.conversation_id).title == "New Chat"


class TestHandles:
    async def test_handles_are_looked_up_by_id(self, reconciler):
        handle = await reconciler.run_generation(GenerationMode.CODE, "def f(): pass")
        found = reconciler.get_handle(handle.id)
        assert found is handle
        snapshot = found.snapshot()
        assert snapshot["state"] == "completed"
        assert snapshot["mode"] == "code"
        assert reconciler.get_handle("unknown") is None
