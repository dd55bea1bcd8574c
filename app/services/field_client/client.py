"""Async HTTP client for the field operations API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import httpx

from app.config import settings
from app.errors import NotFoundError, TransientSendFailure
from app.logic.task_chat_logic import ChatMessage, normalize_server_message
from app.services.task_attachments import normalize_mime_type

logger = logging.getLogger(__name__)

# The API rejects an empty message field even when files are attached.
ATTACHMENT_ONLY_PLACEHOLDER = " "


class FieldClientError(Exception):
    """Base exception for field API client errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


def _error_message(data: Any, status_code: int) -> str:
    if isinstance(data, dict):
        return data.get("message") or data.get("detail") or data.get("error") or str(data)
    return str(data) if data else f"HTTP {status_code}"


class FieldClient:
    """
    HTTP client for the field operations REST API.

    Features:
    - Bearer token and acting-user headers
    - Multipart task message sends with MIME normalization
    - Material request create, list and status updates

    Nothing is retried automatically; a failed chat send is surfaced so the
    chat session can offer a manual retry.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: int | None = None,
        user_id: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: API root, e.g. "https://field.example.com"
            token: Bearer token, passed through untouched
            timeout: Request timeout in seconds
            user_id: Acting user, sent as X-User-Id
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = (base_url or settings.field_api_base_url).rstrip("/")
        self.token = token
        self.timeout = timeout or settings.field_api_timeout
        self.user_id = user_id
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json", "User-Agent": "sitecrew-field/1.0"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            if self.user_id is not None:
                headers["X-User-Id"] = str(self.user_id)
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    def _handle_response(self, response: httpx.Response) -> Any:
        if response.status_code == 204:
            return None

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if response.status_code == 404:
            raise NotFoundError("not_found", _error_message(data, 404))

        if response.status_code >= 400:
            logger.warning("Field API error: status=%s body=%s", response.status_code, data)
            raise FieldClientError(
                f"API error ({response.status_code}): {_error_message(data, response.status_code)}",
                status_code=response.status_code,
                response=data,
            )
        return data

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._get_client().request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Field API %s %s failed: %s", method, path, exc)
            raise FieldClientError(f"Request failed: {exc}") from exc
        return self._handle_response(response)

    # ── Task chat ───────────────────────────────────────────────

    async def fetch_task(self, task_id: int) -> dict:
        data = await self._request("GET", f"/api/tasks/{task_id}")
        return (data or {}).get("task") or {}

    async def fetch_task_messages(self, task_id: int) -> list[ChatMessage]:
        data = await self._request("GET", f"/api/messages/task/{task_id}")
        return [normalize_server_message(record) for record in (data or {}).get("messages", [])]

    async def _attachment_part(self, att: Any) -> tuple[str, tuple[str, bytes, str]]:
        if isinstance(att, str):
            att = {"uri": att}
        uri = att.get("uri") or ""
        name = att.get("name") or uri.rsplit("/", 1)[-1] or "attachment"
        mime = normalize_mime_type(att.get("type") or att.get("mimeType"))

        content = att.get("content")
        if content is None:
            if uri.startswith(("http://", "https://")):
                content = await self._download(uri)
            else:
                content = await asyncio.to_thread(Path(uri.removeprefix("file://")).read_bytes)
        return "attachments", (name, content, mime)

    async def _download(self, uri: str) -> bytes:
        # Credentials only go to the API's own host.
        if httpx.URL(uri).host == httpx.URL(self.base_url).host:
            response = await self._get_client().get(uri)
        else:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as bare:
                response = await bare.get(uri)
        response.raise_for_status()
        return response.content

    async def send_task_message(
        self,
        task_id: int,
        message: str,
        attachments: Iterable[Any] | None = None,
        mentions: Iterable[Any] | None = None,
        client_key: str | None = None,
    ) -> ChatMessage:
        """Post one chat message; any failure is raised as ``TransientSendFailure``."""
        attachments = list(attachments or [])
        data: dict[str, Any] = {
            "taskId": str(task_id),
            "message": message if message or not attachments else ATTACHMENT_ONLY_PLACEHOLDER,
            "mentions[]": [str(user_id) for user_id in mentions or []],
        }
        if client_key:
            data["clientKey"] = client_key

        try:
            files = [await self._attachment_part(att) for att in attachments]
            result = await self._request("POST", "/api/messages/send", data=data, files=files or None)
        except (FieldClientError, NotFoundError, OSError, httpx.HTTPError) as exc:
            status_code = getattr(exc, "status_code", None) or 503
            raise TransientSendFailure("message_send_failed", str(exc), status_code=status_code) from exc

        record = (result or {}).get("taskMessage") or (result or {}).get("task_message") or {}
        return normalize_server_message(record)

    # ── Material requests ───────────────────────────────────────

    async def create_material_request(self, payload: Mapping[str, Any]) -> dict:
        data = await self._request("POST", "/api/material-requests", json=dict(payload))
        return data["request"]

    async def list_project_requests(self, project_id: int) -> list[dict]:
        data = await self._request("GET", f"/api/material-requests/project/{project_id}")
        return data.get("requests", [])

    async def list_task_requests(self, task_id: int) -> list[dict]:
        data = await self._request("GET", f"/api/material-requests/task/{task_id}")
        return data.get("requests", [])

    async def update_request_status(self, request_id: str, payload: Mapping[str, Any]) -> dict:
        data = await self._request("PATCH", f"/api/material-requests/{request_id}/status", json=dict(payload))
        return data["request"]
