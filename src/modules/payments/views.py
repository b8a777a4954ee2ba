"""Gateway webhook endpoint.

A plain Django view: the gateway authenticates with an HMAC signature over
the raw body, not with a JWT, so DRF authentication, throttling and parsing
are bypassed.
"""

from __future__ import annotations

import uuid6
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from modules.payments.exceptions import InvalidWebhook
from modules.payments.webhooks import build_webhook_reconciler

SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"


@csrf_exempt
@require_POST
def payment_webhook(request: HttpRequest) -> JsonResponse:
    """POST /api/v1/payments/webhook/"""
    webhook_id = request.headers.get(EVENT_ID_HEADER) or f"wh_{uuid6.uuid7().hex}"
    reconciler = build_webhook_reconciler()

    try:
        event = reconciler.parse(
            request.body, request.headers.get(SIGNATURE_HEADER), webhook_id
        )
    except InvalidWebhook as exc:
        return JsonResponse(
            {"success": False, "message": str(exc), "webhookId": webhook_id},
            status=400,
        )

    result = reconciler.reconcile(event)
    return JsonResponse(result.as_response(webhook_id, event.event))
