from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import AuthContext, get_current_user, get_db
from app.schemas.material_request import (
    MaterialRequestCreate,
    MaterialRequestEnvelope,
    MaterialRequestItemCreate,
    MaterialRequestItemEnvelope,
    MaterialRequestItemUpdate,
    MaterialRequestList,
    MaterialRequestStatusUpdate,
    MessageOnly,
)
from app.services.material_requests import material_requests

router = APIRouter(prefix="/material-requests", tags=["material-requests"])


@router.post("", response_model=MaterialRequestEnvelope, status_code=status.HTTP_201_CREATED)
def create_material_request(
    payload: MaterialRequestCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
):
    request = material_requests.create(db, payload, requested_by=user.user_id)
    return {"message": "Material request created successfully", "request": request}


@router.get("/project/{project_id}", response_model=MaterialRequestList)
def list_project_requests(
    project_id: int,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    return {"requests": material_requests.list_for_project(db, project_id)}


@router.get("/task/{task_id}", response_model=MaterialRequestList)
def list_task_requests(
    task_id: int,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    return {"requests": material_requests.list_for_task(db, task_id)}


# ── Item management ─────────────────────────────────────────────
# Declared before the /{request_id} routes so "items" is never read as a request id.


@router.put("/items/{item_id}", response_model=MaterialRequestItemEnvelope)
def update_request_item(
    item_id: str,
    payload: MaterialRequestItemUpdate,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    item = material_requests.update_item(db, item_id, payload)
    return {"message": "Item updated successfully", "item": item}


@router.delete("/items/{item_id}", response_model=MessageOnly)
def delete_request_item(
    item_id: str,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    material_requests.delete_item(db, item_id)
    return {"message": "Item deleted successfully"}


@router.get("/{request_id}", response_model=MaterialRequestEnvelope)
def get_material_request(
    request_id: str,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    return {"message": "OK", "request": material_requests.get(db, request_id)}


@router.patch("/{request_id}/status", response_model=MaterialRequestEnvelope)
def update_material_request(
    request_id: str,
    payload: MaterialRequestStatusUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
):
    request = material_requests.update_status(db, request_id, payload, approved_by=user.user_id)
    return {"message": "Request updated successfully", "request": request}


@router.post("/{request_id}/items", response_model=MaterialRequestItemEnvelope, status_code=status.HTTP_201_CREATED)
def add_item_to_request(
    request_id: str,
    payload: MaterialRequestItemCreate,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    item = material_requests.add_item(db, request_id, payload)
    return {"message": "Item added successfully", "item": item}
