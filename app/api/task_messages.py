from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from app.api.deps import AuthContext, get_current_user, get_db
from app.schemas.task_message import (
    ReadReceipt,
    TaskChatEnvelope,
    TaskMessageEnvelope,
    TaskMessageList,
    TaskMessageRead,
)
from app.services.task_messages import task_messages
from app.services.tasks import project_tasks

router = APIRouter(tags=["task-chat"])


@router.post("/messages/send", response_model=TaskMessageEnvelope, status_code=status.HTTP_201_CREATED)
def send_task_message(
    task_id: Annotated[int, Form(alias="taskId")],
    message: Annotated[str, Form()] = "",
    mentions: Annotated[list[str] | None, Form(alias="mentions[]")] = None,
    client_key: Annotated[str | None, Form(alias="clientKey")] = None,
    attachments: Annotated[list[UploadFile] | None, File()] = None,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
):
    stored = task_messages.send(
        db,
        task_id=task_id,
        sender_id=user.user_id,
        body=message,
        mentions=mentions,
        files=attachments,
        client_key=client_key,
    )
    return {"task_message": TaskMessageRead.from_model(stored)}


@router.get("/messages/task/{task_id}", response_model=TaskMessageList)
def list_task_messages(
    task_id: int,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    messages = task_messages.list_for_task(db, task_id)
    return {"messages": [TaskMessageRead.from_model(message) for message in messages]}


@router.post("/messages/task/{task_id}/read", response_model=ReadReceipt)
def mark_task_messages_read(
    task_id: int,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
):
    updated = task_messages.mark_task_read(db, task_id, user.user_id)
    return {"task_id": task_id, "updated": updated}


@router.get("/tasks/{task_id}", response_model=TaskChatEnvelope)
def get_task_for_chat(
    task_id: int,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(get_current_user),
):
    task = project_tasks.get(db, task_id)
    return {"task": project_tasks.chat_payload(task)}
