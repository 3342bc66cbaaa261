"""Unified API response envelope and error codes."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from utils.timezone import now_utc


class APIError(BaseModel):
    """Error details in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class APIMeta(BaseModel):
    """Metadata included in every API response."""

    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Request identifier for tracing")
    pagination: dict[str, int] | None = Field(None, description="Page details for listings")


class APIResponse(BaseModel):
    """
    Response format for every billing endpoint.

    {success, data, error, meta}: data is set on success, error on failure.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def _meta(request_id: str | None, pagination: dict[str, int] | None = None) -> APIMeta:
    return APIMeta(
        timestamp=now_utc(),
        request_id=request_id or str(uuid4()),
        pagination=pagination,
    )


def success_response(
    data: Any,
    request_id: str | None = None,
    pagination: dict[str, int] | None = None,
) -> APIResponse:
    """Create a success response."""
    return APIResponse(success=True, data=data, error=None, meta=_meta(request_id, pagination))


def error_response(code: str, message: str, request_id: str | None = None) -> APIResponse:
    """Create an error response."""
    return APIResponse(
        success=False,
        data=None,
        error=APIError(code=code, message=message),
        meta=_meta(request_id),
    )


class ErrorCodes:
    """Machine-readable error codes returned by the billing API."""

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Invoice state
    INVOICE_IMMUTABLE = "INVOICE_IMMUTABLE"
    LAST_ITEM = "LAST_ITEM"
    CONFLICT = "CONFLICT"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
