import enum
import uuid
from datetime import UTC, date, datetime

from sqlalchemy import Date, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class MaterialRequestStatus(enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    issued = "issued"
    purchased = "purchased"


class MaterialRequestUrgency(enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class MaterialRequest(Base):
    __tablename__ = "material_requests"
    __table_args__ = (
        Index("ix_material_requests_task_id", "task_id"),
        Index("ix_material_requests_project_id", "project_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_id: Mapped[int] = mapped_column(Integer, ForeignKey("project_tasks.id"), nullable=False)
    project_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("projects.id"))
    requested_by: Mapped[int] = mapped_column(Integer, ForeignKey("people.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="Material Request")
    description: Mapped[str | None] = mapped_column(Text)
    urgency: Mapped[str] = mapped_column(String(20), default=MaterialRequestUrgency.medium.value)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[MaterialRequestStatus] = mapped_column(
        Enum(MaterialRequestStatus, name="material_request_status"),
        default=MaterialRequestStatus.pending,
    )
    approved_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("people.id"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    total_estimated_cost: Mapped[float] = mapped_column(Float, default=0.0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __mapper_args__ = {"version_id_col": version}

    task = relationship("ProjectTask", foreign_keys=[task_id])
    project = relationship("Project", foreign_keys=[project_id])
    requester = relationship("Person", foreign_keys=[requested_by])
    approver = relationship("Person", foreign_keys=[approved_by])
    items = relationship(
        "MaterialRequestItem",
        back_populates="material_request",
        cascade="all, delete-orphan",
        order_by="MaterialRequestItem.created_at",
    )


class MaterialRequestItem(Base):
    __tablename__ = "material_request_items"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    material_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("material_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_name: Mapped[str | None] = mapped_column(String(200))
    quantity_requested: Mapped[float | None] = mapped_column(Float)
    unit: Mapped[str | None] = mapped_column(String(40))
    specifications: Mapped[str | None] = mapped_column(Text)
    brand: Mapped[str | None] = mapped_column(String(120))
    model: Mapped[str | None] = mapped_column(String(120))
    quality_grade: Mapped[str | None] = mapped_column(String(60))
    estimated_unit_cost: Mapped[float | None] = mapped_column(Float)
    supplier: Mapped[str | None] = mapped_column(String(200))
    delivery_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    quantity_approved: Mapped[float | None] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    material_request = relationship("MaterialRequest", back_populates="items")
