"""HTTP client the task chat engine uses to reach the field operations API."""

from app.services.field_client.client import FieldClient, FieldClientError

__all__ = ["FieldClient", "FieldClientError"]
