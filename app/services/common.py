"""Small helpers shared by the service layer."""

from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from app.errors import NotFoundError


def coerce_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def coerce_int_id(value) -> int:
    if isinstance(value, bool):
        raise ValueError("Boolean is not an id")
    return int(str(value).strip())


def get_or_404(db: Session, model, obj_id, *, detail: str | None = None, options=None, code: str = "not_found"):
    """Load ``model`` by primary key or raise :class:`NotFoundError`.

    Malformed ids are reported as not found rather than as validation errors;
    the caller cannot tell a bad id from a missing row.
    """
    label = detail or f"{model.__name__} not found"
    try:
        key = coerce_uuid(obj_id) if _uses_uuid_pk(model) else coerce_int_id(obj_id)
    except (TypeError, ValueError):
        raise NotFoundError(code, label)
    if options:
        obj = db.get(model, key, options=options)
    else:
        obj = db.get(model, key)
    if obj is None:
        raise NotFoundError(code, label)
    return obj


def _uses_uuid_pk(model) -> bool:
    pk = model.__table__.primary_key.columns
    if len(pk) != 1:
        return False
    column = next(iter(pk))
    try:
        return column.type.python_type is uuid.UUID
    except NotImplementedError:
        return False
