from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRef(_WireModel):
    user_id: int
    name: str | None = None


class TaskMessageRead(_WireModel):
    id: int
    message: str
    sender_id: int
    sender: UserRef | None = None
    created_at: datetime
    attachments: list[str] = []
    mentions: list[int] = []
    read_by: list[int] = []
    client_key: str | None = None

    @classmethod
    def from_model(cls, message) -> TaskMessageRead:
        sender = message.sender
        return cls(
            id=message.id,
            message=message.body or "",
            sender_id=message.sender_person_id,
            sender=UserRef(user_id=sender.id, name=sender.name) if sender else None,
            created_at=message.created_at,
            attachments=list(message.attachments or []),
            mentions=list(message.mentions or []),
            read_by=list(message.read_by or []),
            client_key=message.client_key,
        )


class TaskMessageEnvelope(_WireModel):
    task_message: TaskMessageRead


class TaskMessageList(_WireModel):
    messages: list[TaskMessageRead]


class TaskChatRead(_WireModel):
    """Task payload consumed by the chat engine to build mention candidates."""

    id: int
    name: str
    project_id: int
    creator: UserRef | None = None
    assigned_user_details: list[UserRef] = []


class TaskChatEnvelope(_WireModel):
    task: TaskChatRead


class ReadReceipt(_WireModel):
    task_id: int
    updated: int
