import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.db import unit_of_work
from app.errors import ConflictError, ServerError, ValidationFailure
from app.models.material_request import (
    MaterialRequest,
    MaterialRequestItem,
    MaterialRequestStatus,
    MaterialRequestUrgency,
)
from app.models.projects import ProjectTask
from app.schemas.material_request import (
    MaterialRequestCreate,
    MaterialRequestItemCreate,
    MaterialRequestItemUpdate,
    MaterialRequestStatusUpdate,
)
from app.services.common import coerce_int_id, get_or_404
from app.services.observability import MATERIAL_REQUEST_OPERATIONS
from app.telemetry import get_tracer

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Material Request"
DEFAULT_UNIT = "pcs"
ITEM_PENDING = "pending"

# Transitions an approver is expected to make. Anything else is still applied
# (last writer wins) but logged.
_EXPECTED_TRANSITIONS = {
    MaterialRequestStatus.pending: {MaterialRequestStatus.approved, MaterialRequestStatus.rejected},
    MaterialRequestStatus.approved: {MaterialRequestStatus.issued, MaterialRequestStatus.purchased},
}

_ITEM_COPY_FIELDS = (
    "item_name",
    "quantity_requested",
    "unit",
    "brand",
    "model",
    "quality_grade",
    "estimated_unit_cost",
    "supplier",
    "delivery_date",
    "notes",
)


def compute_total_estimated_cost(items: Iterable[MaterialRequestItem]) -> float:
    """Sum of (approved quantity, else requested quantity) x unit cost; missing cost counts as 0."""
    total = 0.0
    for item in items:
        quantity = item.quantity_approved if item.quantity_approved is not None else item.quantity_requested
        total += (quantity or 0) * (item.estimated_unit_cost or 0)
    return total


def is_expected_transition(current: MaterialRequestStatus | None, new: MaterialRequestStatus) -> bool:
    if current is None or current == new:
        return True
    return new in _EXPECTED_TRANSITIONS.get(current, set())


def _request_load_options():
    return [
        selectinload(MaterialRequest.items),
        joinedload(MaterialRequest.task),
        joinedload(MaterialRequest.requester),
        joinedload(MaterialRequest.approver),
    ]


def _item_from_payload(payload: MaterialRequestItemCreate) -> MaterialRequestItem:
    data = {field: getattr(payload, field) for field in _ITEM_COPY_FIELDS}
    return MaterialRequestItem(
        **data,
        specifications=payload.specifications or payload.requirements,
        status=ITEM_PENDING,
    )


def _legacy_item(payload: MaterialRequestCreate) -> MaterialRequestItem | None:
    if not (payload.item_name and payload.quantity_requested):
        return None
    try:
        quantity = float(payload.quantity_requested)
    except ValueError:
        raise ValidationFailure("invalid_quantity", "quantityRequested must be a number") from None
    return MaterialRequestItem(
        item_name=payload.item_name,
        quantity_requested=quantity,
        unit=payload.unit or DEFAULT_UNIT,
        specifications=payload.requirements,
        status=ITEM_PENDING,
    )


class MaterialRequests:
    @staticmethod
    def create(db: Session, payload: MaterialRequestCreate, requested_by: int) -> MaterialRequest:
        task = get_or_404(db, ProjectTask, payload.task_id, detail="Task not found", code="task_not_found")
        try:
            with unit_of_work(db):
                mr = MaterialRequest(
                    task_id=task.id,
                    project_id=task.project_id,
                    requested_by=requested_by,
                    title=payload.title or DEFAULT_TITLE,
                    description=payload.description,
                    urgency=payload.urgency or MaterialRequestUrgency.medium.value,
                    expected_delivery_date=payload.expected_delivery_date,
                    status=MaterialRequestStatus.pending,
                )
                if payload.items:
                    mr.items = [_item_from_payload(item) for item in payload.items]
                else:
                    legacy = _legacy_item(payload)
                    if legacy is not None:
                        mr.items = [legacy]
                mr.total_estimated_cost = compute_total_estimated_cost(mr.items)
                db.add(mr)
                db.flush()
                request_id = mr.id
        except SQLAlchemyError as exc:
            MATERIAL_REQUEST_OPERATIONS.labels(operation="create", status="error").inc()
            logger.exception("Create material request failed for task %s", payload.task_id)
            raise ServerError("material_request_create_failed", str(exc)) from exc

        MATERIAL_REQUEST_OPERATIONS.labels(operation="create", status="success").inc()
        logger.info("Material request %s created for task %s with %d item(s)", request_id, task.id, len(mr.items))
        return MaterialRequests.get(db, request_id)

    @staticmethod
    def get(db: Session, request_id) -> MaterialRequest:
        return get_or_404(
            db,
            MaterialRequest,
            request_id,
            detail="Request not found",
            code="material_request_not_found",
            options=_request_load_options(),
        )

    @staticmethod
    def list_for_project(db: Session, project_id) -> list[MaterialRequest]:
        return (
            db.query(MaterialRequest)
            .options(*_request_load_options())
            .filter(MaterialRequest.project_id == coerce_int_id(project_id))
            .order_by(MaterialRequest.created_at.desc())
            .all()
        )

    @staticmethod
    def list_for_task(db: Session, task_id) -> list[MaterialRequest]:
        return (
            db.query(MaterialRequest)
            .options(*_request_load_options())
            .filter(MaterialRequest.task_id == coerce_int_id(task_id))
            .order_by(MaterialRequest.created_at.desc())
            .all()
        )

    @staticmethod
    def update_status(
        db: Session,
        request_id,
        payload: MaterialRequestStatusUpdate,
        approved_by: int,
    ) -> MaterialRequest:
        """Apply an approver decision and any per-item approvals in one transaction.

        Request fields are overwritten unconditionally. Items listed in
        ``approved_items`` are updated by id (only fields present in the
        payload); unlisted items are left alone. The stored total is
        recomputed over every item afterwards.
        """
        mr = get_or_404(
            db,
            MaterialRequest,
            request_id,
            detail="Request not found",
            code="material_request_not_found",
            options=[selectinload(MaterialRequest.items)],
        )
        if not is_expected_transition(mr.status, payload.status):
            logger.warning(
                "Material request %s moved %s -> %s outside the approval flow",
                mr.id,
                mr.status.value if mr.status else None,
                payload.status.value,
            )
        tracer = get_tracer(__name__)
        try:
            with tracer.start_as_current_span(
                "material_request.update_status",
                attributes={"material_request.id": str(mr.id), "material_request.status": payload.status.value},
            ), unit_of_work(db):
                mr.status = payload.status
                mr.approved_by = approved_by
                mr.approved_at = datetime.now(UTC)
                mr.rejection_reason = payload.rejection_reason
                mr.notes = payload.notes

                if payload.approved_items is not None:
                    items_by_id = {item.id: item for item in mr.items}
                    for update in payload.approved_items:
                        item = items_by_id.get(update.item_id)
                        if item is None:
                            logger.info("Skipping item %s: not part of request %s", update.item_id, mr.id)
                            continue
                        for field, value in update.model_dump(exclude_unset=True, exclude={"item_id"}).items():
                            setattr(item, field, value)

                mr.total_estimated_cost = compute_total_estimated_cost(mr.items)
                db.flush()
        except StaleDataError as exc:
            MATERIAL_REQUEST_OPERATIONS.labels(operation="update", status="conflict").inc()
            raise ConflictError("material_request_conflict", "Request was modified concurrently") from exc
        except SQLAlchemyError as exc:
            MATERIAL_REQUEST_OPERATIONS.labels(operation="update", status="error").inc()
            logger.exception("Update material request %s failed", request_id)
            raise ServerError("material_request_update_failed", str(exc)) from exc

        MATERIAL_REQUEST_OPERATIONS.labels(operation="update", status="success").inc()
        return MaterialRequests.get(db, mr.id)

    @staticmethod
    def add_item(db: Session, request_id, payload: MaterialRequestItemCreate) -> MaterialRequestItem:
        mr = get_or_404(
            db,
            MaterialRequest,
            request_id,
            detail="Request not found",
            code="material_request_not_found",
            options=[selectinload(MaterialRequest.items)],
        )
        try:
            with unit_of_work(db):
                item = _item_from_payload(payload)
                mr.items.append(item)
                mr.total_estimated_cost = compute_total_estimated_cost(mr.items)
                db.flush()
        except SQLAlchemyError as exc:
            MATERIAL_REQUEST_OPERATIONS.labels(operation="add_item", status="error").inc()
            logger.exception("Add item to material request %s failed", request_id)
            raise ServerError("material_request_item_create_failed", str(exc)) from exc
        MATERIAL_REQUEST_OPERATIONS.labels(operation="add_item", status="success").inc()
        db.refresh(item)
        return item

    @staticmethod
    def update_item(db: Session, item_id, payload: MaterialRequestItemUpdate) -> MaterialRequestItem:
        item = get_or_404(db, MaterialRequestItem, item_id, detail="Item not found", code="item_not_found")
        try:
            with unit_of_work(db):
                for field, value in payload.model_dump(exclude_unset=True).items():
                    setattr(item, field, value)
                mr = item.material_request
                mr.total_estimated_cost = compute_total_estimated_cost(mr.items)
                db.flush()
        except SQLAlchemyError as exc:
            MATERIAL_REQUEST_OPERATIONS.labels(operation="update_item", status="error").inc()
            logger.exception("Update material request item %s failed", item_id)
            raise ServerError("material_request_item_update_failed", str(exc)) from exc
        MATERIAL_REQUEST_OPERATIONS.labels(operation="update_item", status="success").inc()
        db.refresh(item)
        return item

    @staticmethod
    def delete_item(db: Session, item_id) -> None:
        item = get_or_404(db, MaterialRequestItem, item_id, detail="Item not found", code="item_not_found")
        try:
            with unit_of_work(db):
                mr = item.material_request
                mr.items.remove(item)
                mr.total_estimated_cost = compute_total_estimated_cost(mr.items)
                db.flush()
        except SQLAlchemyError as exc:
            MATERIAL_REQUEST_OPERATIONS.labels(operation="delete_item", status="error").inc()
            logger.exception("Delete material request item %s failed", item_id)
            raise ServerError("material_request_item_delete_failed", str(exc)) from exc
        MATERIAL_REQUEST_OPERATIONS.labels(operation="delete_item", status="success").inc()


material_requests = MaterialRequests()
