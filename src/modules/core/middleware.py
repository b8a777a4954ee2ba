"""Request correlation and client-address helpers."""

from __future__ import annotations

import re
import time
from typing import Callable, Optional

import structlog
import uuid6
from django.http import HttpRequest, HttpResponse

REQUEST_ID_HEADER = "X-Request-ID"
# Inbound ids are echoed into logs and headers, so only accept short tokens.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

logger = structlog.get_logger(__name__)


def get_client_ip(request: HttpRequest) -> Optional[str]:
    """Return the socket peer address of the request."""
    return request.META.get("REMOTE_ADDR") or None


def get_forwarded_ip(request: HttpRequest) -> str:
    """Return the first hop from ``X-Forwarded-For`` (empty if absent)."""
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    return forwarded.split(",")[0].strip() if forwarded else ""


def resolve_request_id(request: HttpRequest) -> str:
    candidate = request.headers.get(REQUEST_ID_HEADER, "")
    if _REQUEST_ID_RE.match(candidate):
        return candidate
    return str(uuid6.uuid7())


class CorrelationIdMiddleware:
    """Tag every log line of a request with one correlation id.

    The id comes from ``X-Request-ID`` when the caller sends a well-formed
    one, otherwise a UUIDv7 is generated.  It is bound to structlog's
    contextvars for the duration of the request and echoed back in the
    response header.  Gateway webhook deliveries also carry their event id
    so a delivery can be traced across retries.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        request_id = resolve_request_id(request)

        structlog.contextvars.clear_contextvars()
        context = {
            "correlation_id": request_id,
            "client_ip": get_forwarded_ip(request) or get_client_ip(request),
        }
        gateway_event_id = request.headers.get("X-Razorpay-Event-Id")
        if gateway_event_id:
            context["gateway_event_id"] = gateway_event_id
        structlog.contextvars.bind_contextvars(**context)

        started = time.monotonic()
        logger.info("request.started", method=request.method, path=request.path)
        response = self.get_response(request)
        duration_ms = round((time.monotonic() - started) * 1000, 2)

        logger.info(
            "request.finished",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response[REQUEST_ID_HEADER] = request_id
        return response
