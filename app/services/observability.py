"""Prometheus metrics for task chat and material requests."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

TASK_MESSAGES = Counter(
    "task_messages_total",
    "Task chat messages accepted by the server",
    ["status"],  # status: stored, rejected
)

TASK_MESSAGE_ATTACHMENTS = Counter(
    "task_message_attachments_total",
    "Attachments stored with task chat messages",
    ["content_type"],
)

MATERIAL_REQUEST_OPERATIONS = Counter(
    "material_request_operations_total",
    "Material request writes",
    ["operation", "status"],  # status: success, error, conflict
)

ATTACHMENT_UPLOAD_TIME = Histogram(
    "task_message_attachment_upload_seconds",
    "Time spent storing a single chat attachment",
)
