import json

import httpx
import pytest

from app.errors import NotFoundError, TransientSendFailure
from app.services.field_client import FieldClient, FieldClientError


def _client(handler, **kwargs) -> FieldClient:
    return FieldClient(
        base_url="https://field.test",
        token="tok",
        user_id=3,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _multipart_fields(request: httpx.Request) -> str:
    return request.content.decode("latin-1")


@pytest.mark.asyncio
async def test_fetch_task_messages_normalizes():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["X-User-Id"] == "3"
        assert request.url.path == "/api/messages/task/41"
        return httpx.Response(
            200,
            json={"messages": [{"id": 1, "message": "hi", "senderId": 7, "createdAt": "2026-03-02T09:30:00Z"}]},
        )

    async with _client(handler) as client:
        [message] = await client.fetch_task_messages(41)
    assert message.text == "hi"
    assert message.user_id == 7
    assert message.status == "delivered"


@pytest.mark.asyncio
async def test_fetch_task_returns_task_payload():
    def handler(request):
        return httpx.Response(200, json={"task": {"id": 41, "creator": {"userId": 3, "name": "Ada"}}})

    async with _client(handler) as client:
        task = await client.fetch_task(41)
    assert task["creator"]["name"] == "Ada"


@pytest.mark.asyncio
async def test_fetch_missing_task_raises_not_found():
    def handler(request):
        return httpx.Response(404, json={"message": "Task not found"})

    async with _client(handler) as client:
        with pytest.raises(NotFoundError) as exc:
            await client.fetch_task(999)
    assert exc.value.detail == "Task not found"


@pytest.mark.asyncio
async def test_send_message_multipart_fields():
    seen = {}

    def handler(request):
        seen["body"] = _multipart_fields(request)
        seen["content_type"] = request.headers["content-type"]
        return httpx.Response(
            201,
            json={"taskMessage": {"id": 9, "message": "see photo", "senderId": 3, "clientKey": "k1"}},
        )

    async with _client(handler) as client:
        message = await client.send_task_message(
            41,
            "see photo",
            attachments=[{"uri": "photo.jpg", "name": "photo.jpg", "type": "image", "content": b"jpegbytes"}],
            mentions=[7, 9],
            client_key="k1",
        )

    assert seen["content_type"].startswith("multipart/form-data")
    body = seen["body"]
    assert 'name="taskId"' in body and "41" in body
    assert body.count('name="mentions[]"') == 2
    assert 'name="clientKey"' in body
    assert 'filename="photo.jpg"' in body
    assert "Content-Type: image/jpeg" in body
    assert message.id == 9
    assert message.client_key == "k1"


@pytest.mark.asyncio
async def test_attachment_only_message_sends_placeholder(tmp_path):
    upload = tmp_path / "plan.pdf"
    upload.write_bytes(b"%PDF-1.4")
    seen = {}

    def handler(request):
        seen["body"] = _multipart_fields(request)
        return httpx.Response(201, json={"taskMessage": {"id": 10, "message": " ", "senderId": 3}})

    async with _client(handler) as client:
        await client.send_task_message(41, "", attachments=[{"uri": f"file://{upload}", "mimeType": "pdf"}])

    body = seen["body"]
    assert 'name="message"\r\n\r\n \r\n' in body
    assert 'filename="plan.pdf"' in body
    assert "Content-Type: application/octet-stream" in body


@pytest.mark.asyncio
async def test_send_failure_is_transient():
    def handler(request):
        return httpx.Response(500, json={"message": "Server error", "error": "boom"})

    async with _client(handler) as client:
        with pytest.raises(TransientSendFailure) as exc:
            await client.send_task_message(41, "hello")
    assert exc.value.retryable is True
    assert exc.value.status_code == 500


@pytest.mark.asyncio
async def test_send_network_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    async with _client(handler) as client:
        with pytest.raises(TransientSendFailure) as exc:
            await client.send_task_message(41, "hello")
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_material_request_calls():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path, request.content))
        if request.method == "GET":
            return httpx.Response(200, json={"requests": [{"id": "r1"}]})
        return httpx.Response(200, json={"message": "ok", "request": {"id": "r1", "status": "approved"}})

    async with _client(handler) as client:
        created = await client.create_material_request({"taskId": 41, "itemName": "Cement", "quantityRequested": "25"})
        by_project = await client.list_project_requests(5)
        by_task = await client.list_task_requests(41)
        updated = await client.update_request_status("r1", {"status": "approved"})

    assert created["id"] == "r1"
    assert by_project == by_task == [{"id": "r1"}]
    assert updated["status"] == "approved"
    assert [(method, path) for method, path, _ in calls] == [
        ("POST", "/api/material-requests"),
        ("GET", "/api/material-requests/project/5"),
        ("GET", "/api/material-requests/task/41"),
        ("PATCH", "/api/material-requests/r1/status"),
    ]
    assert json.loads(calls[0][2])["itemName"] == "Cement"


@pytest.mark.asyncio
async def test_other_errors_raise_client_error():
    def handler(request):
        return httpx.Response(409, json={"message": "Request was modified concurrently"})

    async with _client(handler) as client:
        with pytest.raises(FieldClientError) as exc:
            await client.update_request_status("r1", {"status": "approved"})
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_attachment_downloads_keep_credentials_on_api_host():
    seen = []

    def handler(request):
        seen.append((request.url.host, request.headers.get("Authorization"), request.headers.get("X-User-Id")))
        if request.url.path == "/api/messages/send":
            return httpx.Response(201, json={"taskMessage": {"id": 11, "message": " ", "senderId": 3}})
        return httpx.Response(200, content=b"jpegbytes")

    async with _client(handler) as client:
        await client.send_task_message(
            41,
            "",
            attachments=["https://cdn.example/photo.jpg", "https://field.test/static/messages/41/plan.png"],
        )

    assert seen == [
        ("cdn.example", None, None),
        ("field.test", "Bearer tok", "3"),
        ("field.test", "Bearer tok", "3"),
    ]
