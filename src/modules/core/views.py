"""Health endpoint used by the load balancer and uptime checks."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict

import structlog
from django.conf import settings
from django.core.cache import cache
from django.db import connections
from django.http import HttpRequest, JsonResponse
from django.utils import timezone

logger = structlog.get_logger(__name__)

CACHE_PROBE_KEY = "health:probe"


def _ping_database() -> None:
    connection = connections["default"]
    connection.ensure_connection()
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _ping_cache() -> None:
    cache.set(CACHE_PROBE_KEY, "ok", 10)
    if cache.get(CACHE_PROBE_KEY) != "ok":
        raise ConnectionError("cache read-back mismatch")


def _timed_probe(name: str, probe: Callable[[], None]) -> Dict[str, Any]:
    started = time.monotonic()
    try:
        probe()
    except Exception:
        logger.error("health_check.probe_failed", service=name, exc_info=True)
        return {"status": "down"}
    return {
        "status": "up",
        "response_time_ms": round((time.monotonic() - started) * 1000, 2),
    }


def _payments_configuration() -> Dict[str, Any]:
    # Credentials are only checked for presence; the gateway is never called.
    missing = [
        name
        for name in ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET")
        if not getattr(settings, name, "")
    ]
    if missing:
        return {"status": "unconfigured", "missing": missing}
    return {"status": "configured"}


def health_check(request: HttpRequest) -> JsonResponse:
    """Report database, cache and payment-gateway readiness.

    Database or cache failure answers 503 (``unhealthy``).  Missing gateway
    credentials keep the process serving but mark it ``degraded``, since
    checkout and webhooks cannot succeed.
    """
    services = {
        "database": _timed_probe("database", _ping_database),
        "cache": _timed_probe("cache", _ping_cache),
        "payments": _payments_configuration(),
    }

    if any(services[name]["status"] == "down" for name in ("database", "cache")):
        overall, status_code = "unhealthy", 503
    elif services["payments"]["status"] != "configured":
        overall, status_code = "degraded", 200
    else:
        overall, status_code = "healthy", 200

    logger.info("health_check.completed", status=overall)
    return JsonResponse(
        {
            "status": overall,
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=status_code,
    )
