import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.errors import NotFoundError, TransientSendFailure, ValidationFailure
from app.logic.task_chat_logic import (
    ChatMessage,
    TaskChatSession,
    matches_server_echo,
    new_temp_id,
    normalize_server_message,
)

T0 = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)

TASK = {
    "id": 41,
    "name": "Pour level 3 slab",
    "creator": {"userId": 3, "name": "Ada Obi"},
    "assignedUserDetails": [{"userId": 7, "name": "Jane Smith"}],
}


class RecordingSender:
    def __init__(self, fail_with: Exception | None = None):
        self.calls = []
        self.fail_with = fail_with
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        await self.release.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return None


def _session(sender=None, current_user_id=1):
    return TaskChatSession(TASK, current_user_id, sender or RecordingSender(), clock=lambda: T0)


class TestNormalize:
    def test_defaults(self):
        message = normalize_server_message({"id": 5, "message": "hi", "senderId": 7, "createdAt": "2026-03-02T09:30:00Z"})
        assert message.text == "hi"
        assert message.user_id == 7
        assert message.status == "delivered"
        assert message.sender == {"name": "Unknown"}
        assert message.is_temp is False

    def test_user_id_fallback(self):
        assert normalize_server_message({"id": 5, "text": "x", "userId": 9}).user_id == 9

    def test_temp_id_format(self):
        prefix, millis, suffix = new_temp_id().split("_")
        assert prefix == "temp"
        assert millis.isdigit()
        assert len(suffix) == 9


class TestComposer:
    def test_typing_opens_and_closes_dropdown(self):
        session = _session()
        session.update_input("hey @ja")
        assert [u.name for u in session.mention_candidates()] == ["Jane Smith"]
        session.update_input("hey @jane smith")
        assert session.mention_candidates() == []

    def test_select_mention_updates_input(self):
        session = _session()
        session.update_input("@ja")
        jane = session.mention_candidates()[0]
        session.select_mention(jane)
        assert session.input_text == "@Jane Smith "
        assert session.cursor == len("@Jane Smith ")
        assert session.mention_query is None
        assert session.mention_map == {"@Jane Smith": 7}

    def test_select_without_open_query_is_ignored(self):
        session = _session()
        session.update_input("hello")
        jane = session.mentionable_users()[1]
        assert session.select_mention(jane) is None
        assert session.input_text == "hello"

    def test_staging(self):
        session = _session()
        session.stage_attachment({"uri": "/tmp/a.jpg", "name": "a.jpg", "type": "image"})
        session.stage_attachment({"uri": "/tmp/b.pdf", "name": "b.pdf"})
        session.remove_attachment(0)
        session.remove_attachment(5)
        assert [att["name"] for att in session.attachments] == ["b.pdf"]
        session.clear_attachments()
        assert session.attachments == []


class TestSend:
    def test_empty_send_is_a_no_op(self):
        sender = RecordingSender()
        session = _session(sender)
        session.update_input("   ")
        assert session.send_message() is None
        assert session.visible_messages() == []
        assert sender.calls == []

    @pytest.mark.asyncio
    async def test_message_visible_before_delivery(self):
        sender = RecordingSender()
        sender.release.clear()
        session = _session(sender)
        session.update_input("  pour starts at 10  ")

        delivery = session.send_message()

        visible = session.visible_messages()
        assert len(visible) == 1
        assert visible[0].status == "sending"
        assert visible[0].is_temp is True
        assert visible[0].text == "pour starts at 10"
        assert visible[0].sender == {"name": "You"}
        assert session.input_text == ""
        assert sender.calls == []

        task = asyncio.ensure_future(delivery)
        await asyncio.sleep(0)
        sender.release.set()
        sent = await task
        assert sent.status == "sent"
        assert sender.calls[0]["task_id"] == 41
        assert sender.calls[0]["message"] == "pour starts at 10"
        assert sender.calls[0]["client_key"] == sent.client_key

    @pytest.mark.asyncio
    async def test_send_passes_resolved_mentions(self):
        sender = RecordingSender()
        session = _session(sender)
        session.update_input("@ja")
        session.select_mention(session.mention_candidates()[0])
        session.update_input(session.input_text + "please check @Nobody")
        await session.send_message()
        assert sender.calls[0]["mentions"] == [7]

    @pytest.mark.asyncio
    async def test_attachment_only_send(self):
        sender = RecordingSender()
        session = _session(sender)
        session.stage_attachment({"uri": "/tmp/a.jpg", "name": "a.jpg", "type": "image"})
        await session.send_message()
        assert sender.calls[0]["message"] == ""
        assert sender.calls[0]["attachments"] == [{"uri": "/tmp/a.jpg", "name": "a.jpg", "type": "image"}]
        assert session.attachments == []

    @pytest.mark.asyncio
    async def test_failure_keeps_message_and_raises(self):
        session = _session(RecordingSender(fail_with=RuntimeError("offline")))
        session.update_input("hello")
        with pytest.raises(TransientSendFailure) as exc:
            await session.send_message()
        assert exc.value.retryable is True
        [failed] = session.visible_messages()
        assert failed.status == "failed"

    @pytest.mark.asyncio
    async def test_concurrent_sends_update_their_own_message(self):
        sender = RecordingSender()
        session = _session(sender)
        session.update_input("first")
        first = session.send_message()
        session.update_input("second")
        second = session.send_message()
        await asyncio.gather(first, second)
        assert [m.status for m in session.local_messages] == ["sent", "sent"]
        assert [m.text for m in session.local_messages] == ["first", "second"]


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_restores_composer(self):
        session = _session(RecordingSender(fail_with=TransientSendFailure("message_send_failed", "boom")))
        session.stage_attachment({"uri": "/tmp/a.jpg", "name": "a.jpg", "type": "image/jpeg"})
        session.update_input("see photo")
        with pytest.raises(TransientSendFailure):
            await session.send_message()
        failed = session.local_messages[0]

        session.retry(failed.id)

        assert session.input_text == "see photo"
        assert session.attachments == [{"uri": "/tmp/a.jpg", "name": "a.jpg", "type": "image/jpeg"}]
        assert session.mention_query is None
        assert session.local_messages == []

    def test_retry_converts_url_attachments(self):
        session = _session()
        session.local_messages.append(
            ChatMessage(
                id="temp_1_abc",
                text="",
                user_id=1,
                attachments=["/static/messages/41/site.png"],
                status="failed",
                is_temp=True,
            )
        )
        session.retry("temp_1_abc")
        assert session.attachments == [
            {"uri": "/static/messages/41/site.png", "name": "site.png", "type": "application/octet-stream"}
        ]

    def test_retry_rejects_unknown_or_healthy_messages(self):
        session = _session()
        session.local_messages.append(ChatMessage(id="temp_2", text="ok", user_id=1, status="sent", is_temp=True))
        with pytest.raises(NotFoundError):
            session.retry("missing")
        with pytest.raises(ValidationFailure):
            session.retry("temp_2")


class TestReconciliation:
    def _temp(self, **overrides):
        fields = dict(id="temp_1", text="hi", user_id=7, created_at=T0.isoformat(), status="sent", is_temp=True)
        fields.update(overrides)
        return ChatMessage(**fields)

    def test_echo_within_window_hides_temp(self):
        session = _session(current_user_id=7)
        session.local_messages.append(self._temp())
        session.load_server_messages(
            [{"id": 100, "message": "hi", "senderId": 7, "createdAt": (T0 + timedelta(seconds=3)).isoformat()}]
        )
        visible = session.visible_messages()
        assert [(m.id, m.text) for m in visible] == [(100, "hi")]
        assert session.local_messages == []

    def test_echo_outside_window_keeps_both(self):
        temp = self._temp()
        server = ChatMessage(id=100, text="hi", user_id=7, created_at=(T0 + timedelta(seconds=12)).isoformat())
        assert matches_server_echo(temp, server, 10) is False

    def test_different_sender_is_not_an_echo(self):
        temp = self._temp()
        server = ChatMessage(id=100, text="hi", user_id="8", created_at=T0.isoformat())
        assert matches_server_echo(temp, server, 10) is False

    def test_client_key_decides_when_both_sides_have_one(self):
        temp = self._temp(client_key="k1")
        late = ChatMessage(id=100, text="hi", user_id=7, created_at=(T0 + timedelta(minutes=5)).isoformat(), client_key="k1")
        other = ChatMessage(id=101, text="hi", user_id=7, created_at=T0.isoformat(), client_key="k2")
        assert matches_server_echo(temp, late, 10) is True
        assert matches_server_echo(temp, other, 10) is False

    def test_merged_list_is_chronological(self):
        session = _session(current_user_id=7)
        session.local_messages.append(self._temp(text="latest", created_at=(T0 + timedelta(minutes=1)).isoformat()))
        session.load_server_messages(
            [
                {"id": 2, "message": "second", "senderId": 3, "createdAt": (T0 + timedelta(seconds=30)).isoformat()},
                {"id": 1, "message": "first", "senderId": 3, "createdAt": T0.isoformat()},
            ]
        )
        assert [m.text for m in session.visible_messages()] == ["first", "second", "latest"]

    @pytest.mark.asyncio
    async def test_returned_echo_is_merged(self):
        async def send(**kwargs):
            return ChatMessage(
                id=500,
                text=kwargs["message"],
                user_id=1,
                created_at=T0.isoformat(),
                client_key=kwargs["client_key"],
            )

        session = _session(send)
        session.update_input("done")
        await session.send_message()
        assert [(m.id, m.is_temp) for m in session.visible_messages()] == [(500, False)]
        assert session.local_messages == []

    def test_unmatched_temps_survive_a_reload(self):
        session = _session(current_user_id=7)
        session.local_messages.append(self._temp(client_key="k1"))
        session.local_messages.append(self._temp(id="temp_2", text="later", client_key="k2", status="failed"))
        session.load_server_messages([{"id": 100, "message": "hi", "senderId": 7, "clientKey": "k1"}])
        assert [m.id for m in session.local_messages] == ["temp_2"]


class TestReadReceipts:
    def test_read_by_someone_else(self):
        session = _session(current_user_id=1)
        assert session.is_read_by_others(ChatMessage(id=1, text="x", user_id=1, read_by=[1, 7])) is True
        assert session.is_read_by_others(ChatMessage(id=2, text="x", user_id=1, read_by=[1])) is False
        assert session.is_read_by_others(ChatMessage(id=3, text="x", user_id=7, read_by=[1, 7])) is False


class TestMentionableUsers:
    def test_participants_from_server_messages(self):
        session = _session(current_user_id=1)
        session.load_server_messages([{"id": 1, "message": "hey", "senderId": 12, "sender": {"userId": 12, "name": "Eve"}}])
        assert [(u.name, u.role) for u in session.mentionable_users()] == [
            ("Ada Obi", "creator"),
            ("Jane Smith", "assigned"),
            ("Eve", "participant"),
        ]

    def test_render_uses_session_users(self):
        session = _session()
        message = ChatMessage(id=1, text="@Ada Obi ok", user_id=7)
        fragments = session.render(message)
        assert fragments[0].is_mention
        assert fragments[0].user_id == 3
