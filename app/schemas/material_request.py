from __future__ import annotations

from datetime import date, datetime
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

from app.models.material_request import MaterialRequestStatus


def _date_only(value):
    # The mobile date pickers send full ISO timestamps.
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


WireDate = Annotated[date | None, BeforeValidator(_date_only)]


def _status_not_null(value):
    # Omit the key to leave an item status unchanged.
    if value is None:
        raise ValueError("status cannot be null")
    return value


ItemStatus = Annotated[str | None, AfterValidator(_status_not_null)]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MaterialRequestItemFields(_WireModel):
    item_name: str | None = None
    quantity_requested: float | None = None
    unit: str | None = None
    specifications: str | None = None
    brand: str | None = None
    model: str | None = None
    quality_grade: str | None = None
    estimated_unit_cost: float | None = None
    supplier: str | None = None
    delivery_date: WireDate = None
    notes: str | None = None


class MaterialRequestItemCreate(MaterialRequestItemFields):
    # Older clients send `requirements` instead of `specifications`.
    requirements: str | None = None


class MaterialRequestItemUpdate(MaterialRequestItemFields):
    status: ItemStatus = None
    quantity_approved: float | None = None


class MaterialRequestCreate(_WireModel):
    task_id: int
    title: str | None = None
    description: str | None = None
    urgency: str | None = None
    expected_delivery_date: WireDate = None
    items: list[MaterialRequestItemCreate] | None = None

    # Legacy single-item body
    item_name: str | None = None
    quantity_requested: float | str | None = None
    unit: str | None = None
    requirements: str | None = None


class ApprovedItemUpdate(_WireModel):
    item_id: UUID
    status: ItemStatus = None
    quantity_approved: float | None = None
    estimated_unit_cost: float | None = None
    supplier: str | None = None
    delivery_date: WireDate = None
    notes: str | None = None


class MaterialRequestStatusUpdate(_WireModel):
    status: MaterialRequestStatus
    approved_items: list[ApprovedItemUpdate] | None = None
    rejection_reason: str | None = None
    notes: str | None = None


class NameRef(_WireModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
    name: str | None = None


class MaterialRequestItemRead(MaterialRequestItemFields):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
    id: UUID
    material_request_id: UUID
    status: str
    quantity_approved: float | None = None
    created_at: datetime
    updated_at: datetime


class MaterialRequestRead(_WireModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
    id: UUID
    task_id: int
    project_id: int | None = None
    requested_by: int
    title: str
    description: str | None = None
    urgency: str | None = None
    expected_delivery_date: date | None = None
    status: MaterialRequestStatus
    approved_by: int | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    notes: str | None = None
    total_estimated_cost: float = 0.0
    version: int
    created_at: datetime
    updated_at: datetime
    items: list[MaterialRequestItemRead] = []
    task: NameRef | None = None
    requester: NameRef | None = None
    approver: NameRef | None = None


class MaterialRequestEnvelope(_WireModel):
    message: str
    request: MaterialRequestRead


class MaterialRequestList(_WireModel):
    requests: list[MaterialRequestRead]


class MaterialRequestItemEnvelope(_WireModel):
    message: str
    item: MaterialRequestItemRead


class MessageOnly(_WireModel):
    message: str
