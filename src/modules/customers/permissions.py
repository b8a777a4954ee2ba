"""DRF permission and request helpers for customer-facing endpoints."""

from __future__ import annotations

from rest_framework.permissions import BasePermission
from rest_framework.request import Request

from modules.customers.exceptions import CustomerProfileMissing
from modules.customers.models import Customer


def get_request_customer(request: Request) -> Customer:
    """Return the active customer behind ``request.user``.

    Raises:
        CustomerProfileMissing: the user has no (active) customer profile.
    """
    customer = getattr(request.user, "customer", None)
    if customer is None or not customer.is_active:
        raise CustomerProfileMissing()
    return customer


class IsCustomer(BasePermission):
    """Allow only authenticated users that own an active customer profile."""

    message = CustomerProfileMissing.default_message

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not (user and user.is_authenticated):
            return False
        customer = Customer.objects.filter(user_id=user.pk, is_active=True).first()
        return customer is not None
