"""Server side of the task chat: storing and listing messages."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.db import unit_of_work
from app.errors import ServerError, ValidationFailure
from app.models.person import Person
from app.models.projects import ProjectTask
from app.models.task_message import TaskMessage
from app.services.common import coerce_int_id, get_or_404
from app.services.observability import TASK_MESSAGES
from app.services.task_attachments import delete_attachments, prepare_attachments, save_attachments
from app.telemetry import get_tracer

logger = logging.getLogger(__name__)


def resolve_mentioned_person_ids(db: Session, raw_ids: list[str] | None, sender_id: int) -> list[int]:
    """Keep mention ids that point at active people, in the order given.

    Unknown or malformed ids are dropped, as is the sender.
    """
    if not raw_ids:
        return []
    candidates: list[int] = []
    for raw in raw_ids:
        try:
            person_id = coerce_int_id(raw)
        except (TypeError, ValueError):
            continue
        if person_id == sender_id or person_id in candidates:
            continue
        candidates.append(person_id)
    if not candidates:
        return []
    active = {
        person_id
        for (person_id,) in db.query(Person.id)
        .filter(Person.id.in_(candidates))
        .filter(Person.is_active.is_(True))
        .all()
    }
    return [person_id for person_id in candidates if person_id in active]


class TaskMessages:
    @staticmethod
    def send(
        db: Session,
        *,
        task_id,
        sender_id: int,
        body: str | None,
        mentions: list[str] | None = None,
        files=None,
        client_key: str | None = None,
    ) -> TaskMessage:
        task = get_or_404(db, ProjectTask, task_id, detail="Task not found", code="task_not_found")

        if client_key:
            existing = (
                db.query(TaskMessage)
                .filter(TaskMessage.task_id == task.id)
                .filter(TaskMessage.client_key == client_key)
                .first()
            )
            if existing is not None:
                # A retried send whose first attempt did reach us.
                logger.info("Task %s: duplicate send for client key %s", task.id, client_key)
                return TaskMessages.get(db, existing.id)

        text = (body or "").strip()
        prepared = prepare_attachments(files)
        if not text and not prepared:
            TASK_MESSAGES.labels(status="rejected").inc()
            raise ValidationFailure("empty_message", "Message text or attachment required")

        mention_ids = resolve_mentioned_person_ids(db, mentions, sender_id)
        urls = save_attachments(task.id, prepared)
        tracer = get_tracer(__name__)
        try:
            with tracer.start_as_current_span(
                "task_message.store",
                attributes={"task.id": task.id, "task_message.attachments": len(urls)},
            ), unit_of_work(db):
                message = TaskMessage(
                    task_id=task.id,
                    sender_person_id=sender_id,
                    body=text,
                    attachments=urls,
                    mentions=mention_ids,
                    read_by=[sender_id],
                    client_key=client_key or None,
                )
                db.add(message)
                db.flush()
                message_id = message.id
        except SQLAlchemyError as exc:
            delete_attachments(task.id, prepared)
            TASK_MESSAGES.labels(status="error").inc()
            logger.exception("Storing message for task %s failed", task.id)
            raise ServerError("task_message_create_failed", str(exc)) from exc

        TASK_MESSAGES.labels(status="stored").inc()
        if mention_ids:
            logger.info("Task %s message %s mentions people %s", task.id, message_id, mention_ids)
        return TaskMessages.get(db, message_id)

    @staticmethod
    def get(db: Session, message_id) -> TaskMessage:
        return get_or_404(
            db,
            TaskMessage,
            message_id,
            detail="Message not found",
            code="task_message_not_found",
            options=[joinedload(TaskMessage.sender)],
        )

    @staticmethod
    def list_for_task(db: Session, task_id) -> list[TaskMessage]:
        task = get_or_404(db, ProjectTask, task_id, detail="Task not found", code="task_not_found")
        return (
            db.query(TaskMessage)
            .options(joinedload(TaskMessage.sender))
            .filter(TaskMessage.task_id == task.id)
            .order_by(TaskMessage.created_at.asc(), TaskMessage.id.asc())
            .all()
        )

    @staticmethod
    def mark_task_read(db: Session, task_id, reader_id: int) -> int:
        """Add ``reader_id`` to ``read_by`` on every message of the task. Returns rows changed."""
        task = get_or_404(db, ProjectTask, task_id, detail="Task not found", code="task_not_found")
        updated = 0
        with unit_of_work(db):
            messages = db.query(TaskMessage).filter(TaskMessage.task_id == task.id).all()
            for message in messages:
                readers = list(message.read_by or [])
                if reader_id in readers:
                    continue
                # Reassign so the JSON column is flagged dirty.
                message.read_by = [*readers, reader_id]
                updated += 1
        return updated


task_messages = TaskMessages()
