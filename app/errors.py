"""Error taxonomy shared by the chat engine and the material request API."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldOpsError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False

    def __str__(self) -> str:
        return self.detail

    def to_payload(self) -> dict:
        return {"message": self.detail}


class NotFoundError(FieldOpsError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404, retryable=False)


class ValidationFailure(FieldOpsError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class ConflictError(FieldOpsError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=409, retryable=False)


class TransientSendFailure(FieldOpsError):
    def __init__(self, code: str, detail: str, status_code: int = 503):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=True)


class ServerError(FieldOpsError):
    """Unexpected persistence failure; the raw error text is passed to the caller."""

    def __init__(self, code: str, error: str, detail: str = "Server error"):
        super().__init__(code=code, detail=detail, status_code=500, retryable=False)
        object.__setattr__(self, "error", error)

    def to_payload(self) -> dict:
        return {"message": self.detail, "error": self.error}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(FieldOpsError)
    async def _field_ops_error(request: Request, exc: FieldOpsError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: code=%s detail=%s", request.method, request.url.path, exc.code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content={"message": detail}, headers=exc.headers)
