"""Payment gateway exceptions."""

from __future__ import annotations

from modules.core.exceptions import UpstreamError, ValidationFailed


class InvalidPaymentSignature(ValidationFailed):
    code = "invalid_payment_signature"
    default_message = "Payment verification failed: invalid signature."


class PaymentNotCaptured(ValidationFailed):
    code = "payment_not_captured"
    default_message = "Payment has not been captured."


class PaymentAmountMismatch(ValidationFailed):
    code = "payment_amount_mismatch"
    default_message = "Payment amount does not match the order total."


class PaymentOrderMismatch(ValidationFailed):
    """The payment was made against a different gateway order."""

    code = "payment_order_mismatch"
    default_message = "Payment does not belong to this order."


class GatewayError(UpstreamError):
    """The gateway call failed; the message never carries gateway internals."""

    code = "gateway_error"
    default_message = "Payment gateway is unavailable. Please try again later."


class GatewayNotConfigured(GatewayError):
    code = "gateway_not_configured"
    default_message = "Payment gateway is not configured."


class InvalidWebhook(Exception):
    """A webhook delivery failed authentication or could not be parsed.

    Handled by the webhook view (HTTP 400); it never reaches the DRF
    exception handler.
    """
