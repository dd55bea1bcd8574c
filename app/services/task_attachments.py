"""Validation, MIME normalization and storage of task chat attachments."""

import contextlib
import logging
import mimetypes
import time
import uuid
from collections.abc import Sequence
from pathlib import Path

from starlette.datastructures import UploadFile

from app.config import settings
from app.errors import ValidationFailure
from app.services.observability import ATTACHMENT_UPLOAD_TIME, TASK_MESSAGE_ATTACHMENTS
from app.services.storage import storage

logger = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"
_BARE_TYPE_HINTS = {
    "image": "image/jpeg",
    "video": "video/mp4",
}


def normalize_mime_type(type_hint: str | None) -> str:
    """Turn picker type hints into a concrete MIME type.

    Pickers report bare ``"image"`` / ``"video"``; those become
    ``image/jpeg`` / ``video/mp4``. Anything else without a slash, or nothing
    at all, is ``application/octet-stream``.
    """
    if not type_hint:
        return DEFAULT_MIME
    hint = type_hint.strip()
    if "/" in hint:
        return hint
    return _BARE_TYPE_HINTS.get(hint.lower(), DEFAULT_MIME)


def _is_upload_like(item: object) -> bool:
    return hasattr(item, "filename") and hasattr(item, "file")


def coerce_upload_files(files: UploadFile | Sequence[UploadFile | str] | str | bytes | None) -> list[UploadFile]:
    if files is None:
        return []
    if isinstance(files, str | bytes):
        return []
    if _is_upload_like(files):
        return [files] if files.filename else []
    uploads: list[UploadFile] = []
    for item in files:
        # Stray text form fields named "attachments" are ignored.
        if _is_upload_like(item) and getattr(item, "filename", None):
            uploads.append(item)
    return uploads


def prepare_attachments(files) -> list[dict]:
    prepared: list[dict] = []
    for upload in coerce_upload_files(files):
        with contextlib.suppress(Exception):
            upload.file.seek(0)
        content = upload.file.read() or b""
        if len(content) > settings.message_attachment_max_size_bytes:
            raise ValidationFailure("attachment_too_large", f"Attachment {upload.filename} is too large")
        mime_type = upload.content_type or mimetypes.guess_type(upload.filename)[0]
        prepared.append(
            {
                "stored_name": f"{uuid.uuid4().hex}{Path(upload.filename).suffix}",
                "file_name": upload.filename,
                "mime_type": normalize_mime_type(mime_type),
                "content": content,
            }
        )
    return prepared


def save_attachments(task_id: int, prepared: list[dict]) -> list[str]:
    """Store prepared files and return their URLs in upload order."""
    urls: list[str] = []
    for item in prepared:
        key = f"{settings.message_attachment_upload_dir}/{task_id}/{item['stored_name']}"
        started = time.monotonic()
        urls.append(storage.put(key, item["content"], item["mime_type"]))
        ATTACHMENT_UPLOAD_TIME.observe(time.monotonic() - started)
        TASK_MESSAGE_ATTACHMENTS.labels(content_type=item["mime_type"]).inc()
    return urls


def delete_attachments(task_id: int, prepared: list[dict]) -> None:
    for item in prepared:
        key = f"{settings.message_attachment_upload_dir}/{task_id}/{item['stored_name']}"
        try:
            storage.delete(key)
        except OSError:
            logger.warning("Could not remove orphaned attachment %s", key, exc_info=True)
