"""Domain error base class and the DRF exception handler.

Every module raises subclasses of ``DomainError`` from its service layer.
The handler below renders them, together with DRF's own API exceptions,
as ``{"message": ..., "code": ...}`` so clients see a single error shape.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = structlog.get_logger(__name__)


class DomainError(Exception):
    """Base class for business-rule violations surfaced to API clients."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "domain_error"
    default_message: str = "Request could not be processed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(DomainError):
    code = "validation_error"
    default_message = "Validation failed."


class PermissionDenied(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "You do not have permission to access this resource."


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Resource not found."


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Resource state conflicts with the request."


class RateLimited(DomainError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"
    default_message = "Too many attempts. Please wait before trying again."


class UpstreamError(DomainError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "upstream_error"
    default_message = "An upstream service failed. Please try again later."


def exception_handler(exc: Exception, context: dict[str, Any]) -> Optional[Response]:
    """Translate domain and DRF exceptions into ``{"message", "code"}`` bodies."""
    if isinstance(exc, DomainError):
        view = context.get("view")
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "api.domain_error",
            error=exc.__class__.__name__,
            code=exc.code,
            status_code=exc.status_code,
            view=view.__class__.__name__ if view else None,
        )
        return Response(
            {"message": exc.message, "code": exc.code},
            status=exc.status_code,
        )

    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, exceptions.ValidationError):
        response.data = {
            "message": "Validation failed.",
            "code": "validation_error",
            "errors": response.data,
        }
    else:
        detail = response.data
        if isinstance(detail, dict) and "detail" in detail:
            detail = detail["detail"]
        response.data = {
            "message": str(detail),
            "code": getattr(detail, "code", None) or "error",
        }
    return response
