"""Client-side task chat state: optimistic sends and reconciliation.

A ``TaskChatSession`` lives for as long as one task chat is open. Local state
is only ever mutated synchronously; the only awaits are on the send
collaborator, so several deliveries may be in flight and each one updates its
own temp message by id.
"""

from __future__ import annotations

import logging
import random
import string
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.errors import NotFoundError, TransientSendFailure, ValidationFailure
from app.logic.mention_logic import (
    MentionableUser,
    MentionQuery,
    MentionSelection,
    MessageFragment,
    apply_mention_selection,
    build_mentionable_users,
    detect_mention_query,
    extract_mentions,
    filter_mention_candidates,
    render_mention_fragments,
    same_user,
)

logger = logging.getLogger(__name__)

STATUS_SENDING = "sending"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"

RETRY_ATTACHMENT_TYPE = "application/octet-stream"
_BASE36 = string.digits + string.ascii_lowercase

SendMessageFn = Callable[..., Awaitable[Any]]


@dataclass
class ChatMessage:
    id: Any
    text: str
    user_id: Any
    sender: dict = field(default_factory=lambda: {"name": "Unknown"})
    created_at: str | None = None
    attachments: list = field(default_factory=list)
    mentions: list = field(default_factory=list)
    status: str = STATUS_DELIVERED
    is_temp: bool = False
    read_by: list = field(default_factory=list)
    client_key: str | None = None


def normalize_server_message(record: Mapping) -> ChatMessage:
    """Build a ``ChatMessage`` from a server record (camelCase wire keys)."""
    user_id = record.get("senderId")
    if user_id is None:
        user_id = record.get("userId")
    return ChatMessage(
        id=record.get("id"),
        text=record.get("message") or record.get("text") or "",
        user_id=user_id,
        sender=record.get("sender") or {"name": "Unknown"},
        created_at=record.get("createdAt"),
        attachments=list(record.get("attachments") or []),
        mentions=list(record.get("mentions") or []),
        status=record.get("status") or STATUS_DELIVERED,
        read_by=list(record.get("readBy") or []),
        client_key=record.get("clientKey"),
    )


def new_temp_id() -> str:
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"temp_{int(time.time() * 1000)}_{suffix}"


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


_EPOCH = datetime.min.replace(tzinfo=UTC)


def _sort_key(message: ChatMessage) -> datetime:
    return parse_timestamp(message.created_at) or _EPOCH


def matches_server_echo(temp: ChatMessage, server: ChatMessage, window_seconds: float) -> bool:
    """True when ``server`` is the confirmed copy of the optimistic ``temp``.

    Client keys decide when both sides carry one. Otherwise fall back to
    same text, same sender and timestamps less than ``window_seconds`` apart.
    """
    if temp.client_key and server.client_key:
        return temp.client_key == server.client_key
    if server.text != temp.text or not same_user(server.user_id, temp.user_id):
        return False
    sent_at = parse_timestamp(temp.created_at)
    echoed_at = parse_timestamp(server.created_at)
    if sent_at is None or echoed_at is None:
        return False
    return abs((echoed_at - sent_at).total_seconds()) < window_seconds


def retry_attachment(att: Any) -> Any:
    if isinstance(att, str):
        return {"uri": att, "name": att.rsplit("/", 1)[-1], "type": RETRY_ATTACHMENT_TYPE}
    return att


class TaskChatSession:
    def __init__(
        self,
        task: Mapping | None,
        current_user_id: Any,
        send_message_fn: SendMessageFn,
        *,
        reconcile_window_seconds: float | None = None,
        dropdown_limit: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.task = dict(task or {})
        self.current_user_id = current_user_id
        self._send = send_message_fn
        self.reconcile_window_seconds = (
            reconcile_window_seconds
            if reconcile_window_seconds is not None
            else settings.chat_reconcile_window_seconds
        )
        self.dropdown_limit = dropdown_limit or settings.mention_dropdown_limit
        self._clock = clock or (lambda: datetime.now(UTC))

        self.input_text = ""
        self.cursor = 0
        self.attachments: list = []
        self.mention_query: MentionQuery | None = None
        self.mention_map: dict[str, Any] = {}
        self.local_messages: list[ChatMessage] = []
        self.server_messages: list[ChatMessage] = []

    @property
    def task_id(self) -> Any:
        return self.task.get("id")

    # ── Composer ───────────────────────────────────────────────

    def update_input(self, text: str, cursor: int | None = None) -> MentionQuery | None:
        self.input_text = text
        self.cursor = len(text) if cursor is None else cursor
        self.mention_query = detect_mention_query(text, self.cursor)
        return self.mention_query

    def mention_candidates(self) -> list[MentionableUser]:
        if self.mention_query is None:
            return []
        return filter_mention_candidates(self.mentionable_users(), self.mention_query.search, self.dropdown_limit)

    def select_mention(self, user: MentionableUser) -> MentionSelection | None:
        if self.mention_query is None:
            return None
        selection = apply_mention_selection(self.input_text, self.mention_query, user, self.mention_map)
        self.input_text = selection.text
        self.cursor = selection.cursor
        self.mention_query = None
        return selection

    def stage_attachment(self, att: Mapping) -> None:
        self.attachments.append(dict(att))

    def remove_attachment(self, index: int) -> None:
        if 0 <= index < len(self.attachments):
            del self.attachments[index]

    def clear_attachments(self) -> None:
        self.attachments = []

    def _close_mentions(self) -> None:
        self.mention_query = None

    # ── Sending ────────────────────────────────────────────────

    def send_message(self) -> Awaitable[ChatMessage] | None:
        """Show the composed message immediately and return its delivery.

        Returns ``None`` without touching state when there is nothing to
        send. Otherwise the temp message is already visible with status
        ``sending`` when this returns; awaiting the result performs the
        network call.
        """
        text = self.input_text.strip()
        attachments = list(self.attachments)
        if not text and not attachments:
            return None

        temp = ChatMessage(
            id=new_temp_id(),
            text=text,
            user_id=self.current_user_id,
            sender={"name": "You"},
            created_at=self._clock().isoformat(),
            attachments=attachments,
            mentions=extract_mentions(text, self.mentionable_users(), self.mention_map),
            status=STATUS_SENDING,
            is_temp=True,
            client_key=uuid.uuid4().hex,
        )
        self.local_messages.append(temp)

        self.input_text = ""
        self.cursor = 0
        self.clear_attachments()
        self._close_mentions()
        return self._deliver(temp)

    async def _deliver(self, temp: ChatMessage) -> ChatMessage:
        try:
            echoed = await self._send(
                task_id=self.task_id,
                message=temp.text,
                attachments=temp.attachments,
                mentions=temp.mentions,
                client_key=temp.client_key,
            )
        except Exception as exc:
            self._set_status(temp.id, STATUS_FAILED)
            logger.warning("Task %s message %s failed to send: %s", self.task_id, temp.id, exc)
            if isinstance(exc, TransientSendFailure):
                raise
            raise TransientSendFailure("message_send_failed", str(exc) or "Failed to send message") from exc

        self._set_status(temp.id, STATUS_SENT)
        if isinstance(echoed, ChatMessage):
            self._merge_server_message(echoed)
        return temp

    def _set_status(self, message_id: Any, status: str) -> None:
        for message in self.local_messages:
            if message.id == message_id:
                message.status = status

    def retry(self, message_id: Any) -> None:
        """Move a failed message back into the composer for another attempt."""
        message = next((m for m in self.local_messages if m.id == message_id), None)
        if message is None:
            raise NotFoundError("message_not_found", "Message not found")
        if message.status != STATUS_FAILED:
            raise ValidationFailure("message_not_failed", "Only failed messages can be retried")

        self.update_input(message.text)
        if message.attachments:
            self.attachments = [retry_attachment(att) for att in message.attachments]
        self._close_mentions()
        self.local_messages = [m for m in self.local_messages if m.id != message_id]

    # ── History ────────────────────────────────────────────────

    def load_server_messages(self, records: Iterable[Mapping | ChatMessage]) -> list[ChatMessage]:
        self.server_messages = [
            record if isinstance(record, ChatMessage) else normalize_server_message(record) for record in records
        ]
        self._prune_echoed()
        return self.server_messages

    def _merge_server_message(self, message: ChatMessage) -> None:
        if message.id is None or not any(m.id == message.id for m in self.server_messages):
            self.server_messages.append(message)
        self._prune_echoed()

    def _is_echoed(self, message: ChatMessage) -> bool:
        return any(matches_server_echo(message, server, self.reconcile_window_seconds) for server in self.server_messages)

    def _prune_echoed(self) -> None:
        self.local_messages = [m for m in self.local_messages if not (m.is_temp and self._is_echoed(m))]

    def visible_messages(self) -> list[ChatMessage]:
        pending = [message for message in self.local_messages if message.is_temp and not self._is_echoed(message)]
        return sorted([*self.server_messages, *pending], key=_sort_key)

    def mentionable_users(self) -> list[MentionableUser]:
        seen = [*self.server_messages, *(m for m in self.local_messages if not m.is_temp)]
        return build_mentionable_users(self.task, seen, self.current_user_id)

    def render(self, message: ChatMessage) -> list[MessageFragment]:
        return render_mention_fragments(message.text, self.mentionable_users(), self.mention_map)

    def is_read_by_others(self, message: ChatMessage) -> bool:
        if not same_user(message.user_id, self.current_user_id):
            return False
        return any(not same_user(reader, self.current_user_id) for reader in message.read_by)
