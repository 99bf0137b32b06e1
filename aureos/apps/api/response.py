from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorDetail(BaseModel):
    # Auth failures reuse one code and message so callers cannot tell causes apart.
    code: str
    message: str


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    # The middleware normally stamps request.state; exception handlers can run before it does.
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    if not request_id:
        request_id = str(uuid4())
    request.state.request_id = request_id
    return request_id


def _meta(request: Request) -> dict[str, Any]:
    return ResponseMeta(request_id=get_request_id(request)).model_dump()


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    # Route payloads are pydantic models; dump them here so datetimes serialize once.
    payload = data.model_dump(mode="json") if isinstance(data, BaseModel) else data
    return {"data": payload, "meta": _meta(request)}


def error_response(*, request: Request, code: str, message: str) -> dict[str, Any]:
    return {"error": ErrorDetail(code=code, message=message).model_dump(), "meta": _meta(request)}
