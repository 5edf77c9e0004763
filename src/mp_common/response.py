"""Response envelope shared by every endpoint.

    {"code": 0, "message": "success", "data": {...}, "retryable": false,
     "timestamp": "2026-03-01T12:00:00+00:00", "request_id": "req_..."}

`code` is 0 on success, otherwise the AppError code. `retryable` tells the
caller whether repeating the same request can succeed: after a concurrent
modification (re-read first) or a payment-port timeout (same idempotency
key, at most one effect).
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from starlette.requests import Request

from src.mp_common.errors import AppError


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class ApiResponse(BaseModel):
    code: int = 0
    message: str = "success"
    data: Any = None
    retryable: bool = False
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    request_id: str = Field(default_factory=new_request_id)


def _request_id(request: Request | None) -> str:
    if request is None:
        return new_request_id()
    return getattr(request.state, "request_id", None) or new_request_id()


def success_response(data: Any = None, request: Request | None = None) -> ApiResponse:
    return ApiResponse(data=data, request_id=_request_id(request))


def error_response(exc: AppError, request: Request | None = None) -> ApiResponse:
    return ApiResponse(
        code=exc.code,
        message=exc.message,
        retryable=exc.retryable,
        request_id=_request_id(request),
    )
