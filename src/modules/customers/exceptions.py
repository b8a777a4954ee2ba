"""Customer domain exceptions."""

from __future__ import annotations

from modules.core.exceptions import PermissionDenied


class CustomerProfileMissing(PermissionDenied):
    """The authenticated user has no active customer profile."""

    code = "customer_required"
    default_message = "Customer access required."
