"""Wallet domain exceptions."""

from __future__ import annotations

from modules.core.exceptions import ValidationFailed


class InvalidTopUpAmount(ValidationFailed):
    code = "invalid_top_up_amount"


class TopUpOrderMismatch(ValidationFailed):
    code = "top_up_order_mismatch"
    default_message = "Payment does not belong to this top-up order."


class NotCustomerTopUp(ValidationFailed):
    """The gateway order was not opened by ``initiate_top_up`` for this customer."""

    code = "not_customer_top_up"
    default_message = "Gateway order is not a wallet top-up of this customer."
