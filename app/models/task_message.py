from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class TaskMessage(Base):
    __tablename__ = "task_messages"
    __table_args__ = (
        Index("ix_task_messages_task_id_created_at", "task_id", "created_at"),
        Index("ix_task_messages_client_key", "client_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(Integer, ForeignKey("project_tasks.id", ondelete="CASCADE"), nullable=False)
    sender_person_id: Mapped[int] = mapped_column(Integer, ForeignKey("people.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachments: Mapped[list | None] = mapped_column(JSON)
    mentions: Mapped[list | None] = mapped_column(JSON)
    read_by: Mapped[list | None] = mapped_column(JSON)
    # Echo of the client-generated key on the optimistic copy.
    client_key: Mapped[str | None] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    task = relationship("ProjectTask", back_populates="messages")
    sender = relationship("Person", foreign_keys=[sender_person_id])
