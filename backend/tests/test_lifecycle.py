"""Unit tests for thread/message lifecycle helpers."""

import pytest

from chatzo_models import Message, TextPart
from chatzo.errors import ChatError
from chatzo.services.lifecycle import (
    clear_streaming,
    mark_streaming,
    plan_truncation,
    prepare_turn,
)


def msg(msg_id: str, role: str, text: str = "") -> Message:
    parts = [TextPart(text=text)] if text else []
    return Message(id=msg_id, thread_id="", role=role, parts=parts)


def conversation() -> list[Message]:
    return [
        msg("u1", "user", "first"),
        msg("a1", "assistant", "reply one"),
        msg("u2", "user", "second"),
        msg("a2", "assistant", "reply two"),
    ]


class TestPlanTruncation:
    """The pure truncation rule."""

    def test_keeps_target_and_earlier(self):
        """Test everything after the target is removed."""
        plan = plan_truncation(conversation(), "u2", "proposed")

        assert [m.id for m in plan.kept] == ["u1", "a1", "u2"]
        assert [m.id for m in plan.removed] == ["a2"]

    def test_reuses_following_assistant_id(self):
        """Test the first removed assistant lends its id."""
        plan = plan_truncation(conversation(), "u1", "proposed")

        assert plan.assistant_message_id == "a1"

    def test_uses_proposed_id_without_following_assistant(self):
        """Test the proposed id is used when nothing follows the target."""
        plan = plan_truncation(conversation(), "a2", "proposed")

        assert plan.removed == []
        assert plan.assistant_message_id == "proposed"

    def test_missing_target(self):
        """Test an unknown target yields no plan."""
        assert plan_truncation(conversation(), "nope", "proposed") is None


class TestPrepareTurn:
    """Turn preparation against the store."""

    @pytest.mark.asyncio
    async def test_new_thread_creates_pair(self, store, user):
        """Test a turn without a thread creates one with two messages."""
        turn = await prepare_turn(
            store, user.id, [TextPart(text="hi")], proposed_assistant_id="a_new"
        )

        assert turn.is_new_thread
        messages = store.live(turn.thread_id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].id == "a_new"
        assert messages[1].parts == []

    @pytest.mark.asyncio
    async def test_existing_thread_appends_pair(self, store, user):
        """Test a turn on an existing thread appends a user/assistant pair."""
        thread = store.add_thread(user.id, conversation())

        turn = await prepare_turn(store, user.id, [TextPart(text="third")], thread_id=thread.id)

        assert not turn.is_new_thread
        assert [m.role for m in store.live(thread.id)][-2:] == ["user", "assistant"]
        assert len(store.live(thread.id)) == 6

    @pytest.mark.asyncio
    async def test_edit_without_thread_rejected(self, store, user):
        """Test editing needs a thread."""
        with pytest.raises(ChatError) as exc_info:
            await prepare_turn(store, user.id, [], edit_from_message_id="u1", edit_mode="edit")

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_foreign_thread_forbidden(self, store, user):
        """Test another user's thread cannot be extended."""
        other = store.add_user("someone_else")
        thread = store.add_thread(other.id)

        with pytest.raises(ChatError) as exc_info:
            await prepare_turn(store, user.id, [TextPart(text="x")], thread_id=thread.id)

        assert exc_info.value.code == "forbidden:chat"

    @pytest.mark.asyncio
    async def test_missing_thread(self, store, user):
        with pytest.raises(ChatError) as exc_info:
            await prepare_turn(store, user.id, [TextPart(text="x")], thread_id="missing")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_retry_truncates_and_reuses_assistant_id(self, store, user):
        """Test retry keeps messages up to the target plus one fresh placeholder."""
        thread = store.add_thread(user.id, conversation())

        turn = await prepare_turn(
            store,
            user.id,
            [],
            thread_id=thread.id,
            edit_from_message_id="u2",
            edit_mode="retry",
            proposed_assistant_id="proposed",
        )

        live = store.live(thread.id)
        assert [m.id for m in live] == ["u1", "a1", "u2", "a2"]
        assert live[-1].parts == []
        assert turn.assistant_message_id == "a2"
        assert live[2].parts[0].text == "second"
        assert store.versions[thread.id] == 1

    @pytest.mark.asyncio
    async def test_edit_replaces_target_parts(self, store, user):
        """Test edit overwrites the target and soft-deletes the rest."""
        thread = store.add_thread(user.id, conversation())

        turn = await prepare_turn(
            store,
            user.id,
            [TextPart(text="first, edited")],
            thread_id=thread.id,
            edit_from_message_id="u1",
            edit_mode="edit",
        )

        live = store.live(thread.id)
        assert [m.id for m in live] == ["u1", "a1"]
        assert live[0].parts[0].text == "first, edited"
        assert live[0].edited
        assert turn.assistant_message_id == "a1"
        deleted = [m.id for m in store.messages[thread.id] if m.is_deleted]
        assert deleted == ["a1", "u2", "a2"]

    @pytest.mark.asyncio
    async def test_racing_edit_conflicts(self, store, user):
        """Test an edit whose target was already truncated away is a conflict."""
        thread = store.add_thread(user.id, conversation())
        await prepare_turn(
            store, user.id, [], thread_id=thread.id, edit_from_message_id="u1", edit_mode="retry"
        )

        with pytest.raises(ChatError) as exc_info:
            await prepare_turn(
                store, user.id, [], thread_id=thread.id, edit_from_message_id="u2", edit_mode="retry"
            )

        assert exc_info.value.status_code == 409


class TestStreamingFlag:
    """Live-streaming flag transitions."""

    @pytest.mark.asyncio
    async def test_mark_then_clear(self, store, user):
        """Test the flag and stream fields are set and cleared together."""
        thread = store.add_thread(user.id)

        await mark_streaming(store, thread.id, "stream_1")
        live = await store.get_thread(thread.id)
        assert live.is_live
        assert live.current_stream_id == "stream_1"
        assert live.stream_started_at is not None

        assert await clear_streaming(store, thread.id) is True
        idle = await store.get_thread(thread.id)
        assert not idle.is_live
        assert idle.current_stream_id is None
        assert idle.stream_started_at is None

    @pytest.mark.asyncio
    async def test_second_clear_is_noop(self, store, user):
        """Test clearing an idle thread does nothing."""
        thread = store.add_thread(user.id)
        await mark_streaming(store, thread.id, "stream_1")
        await clear_streaming(store, thread.id)

        assert await clear_streaming(store, thread.id) is False
        assert store.streaming_calls == [True, False]

    @pytest.mark.asyncio
    async def test_clear_missing_thread(self, store):
        assert await clear_streaming(store, "missing") is False
