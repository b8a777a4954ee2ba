import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from modules.cart.models import Cart, CartItem
from modules.cart.services import CartService
from modules.coupons.models import Coupon, CouponType
from modules.coupons.repositories.django_repository import CouponDjangoRepository
from modules.coupons.services import CouponService
from modules.customers.models import Customer
from modules.orders.dtos import RequestProvenanceDTO
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import CheckoutService
from modules.payments.exceptions import GatewayError
from modules.payments.gateway import (
    GatewayOrder,
    GatewayPayment,
    IPaymentGateway,
    set_payment_gateway,
)
from modules.products.models import Product, ProductOption

User = get_user_model()

VALID_SIGNATURE = "valid_signature"
WEBHOOK_SECRET = "whsec_test"


class FakePaymentGateway(IPaymentGateway):
    """In-memory gateway: numbered orders, scripted payments, real webhook HMAC."""

    key_id = "rzp_test_key"

    def __init__(self) -> None:
        self.orders: list[GatewayOrder] = []
        self.payments: dict[str, GatewayPayment] = {}
        self.fail_create = False

    def create_order(self, amount, currency, reference, notes=None):
        if self.fail_create:
            raise GatewayError()
        order = GatewayOrder(
            id=f"order_{len(self.orders) + 1:04d}",
            amount=Decimal(amount),
            currency=currency,
            receipt=reference,
            notes={"orderId": reference, **(notes or {})},
        )
        self.orders.append(order)
        return order

    def fetch_order(self, order_id):
        for order in self.orders:
            if order.id == order_id:
                return order
        raise GatewayError()

    def add_payment(self, payment_id, amount, order_id, status="captured"):
        payment = GatewayPayment(
            id=payment_id,
            status=status,
            amount=Decimal(amount),
            currency="INR",
            order_id=order_id,
            method="upi",
        )
        self.payments[payment_id] = payment
        return payment

    def fetch_payment(self, payment_id):
        try:
            return self.payments[payment_id]
        except KeyError:
            raise GatewayError() from None

    def verify_payment_signature(self, order_id, payment_id, signature):
        return signature == VALID_SIGNATURE

    def verify_webhook_signature(self, raw_body, signature, secret):
        return hmac.compare_digest(
            sign_webhook(raw_body, secret).encode(), signature.encode()
        )


def sign_webhook(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def webhook_body(event: str, payment=None, order=None) -> bytes:
    payload = {}
    if payment is not None:
        payload["payment"] = {"entity": payment}
    if order is not None:
        payload["order"] = {"entity": order}
    return json.dumps({"event": event, "payload": payload}).encode()


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters live in the cache; start every test from zero."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def gateway():
    fake = FakePaymentGateway()
    set_payment_gateway(fake)
    yield fake
    set_payment_gateway(None)


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def make_customer(username: str, email: str, first_name: str = "Asha") -> Customer:
    user = User.objects.create_user(username=username, password="testpass123")
    return Customer.objects.create(
        user=user,
        first_name=first_name,
        last_name="Iyer",
        email=email,
        mobile="9876543210",
    )


@pytest.fixture()
def customer():
    return make_customer("asha", "asha@example.com")


@pytest.fixture()
def other_customer():
    return make_customer("rohan", "rohan@example.com", first_name="Rohan")


@pytest.fixture()
def auth_client(customer):
    client = APIClient()
    client.force_authenticate(user=customer.user)
    return client


@pytest.fixture()
def admin_client():
    client = APIClient()
    admin = User.objects.create_superuser("admin", password="admin123")
    client.force_authenticate(user=admin)
    return client


# ---------------------------------------------------------------------------
# Catalog and cart
# ---------------------------------------------------------------------------


@pytest.fixture()
def product():
    product = Product.objects.create(sku="font-serif", name="Classic Serif Family")
    ProductOption.objects.create(product=product, name="Desktop", price=Decimal("120.00"))
    ProductOption.objects.create(product=product, name="Web", price=Decimal("80.00"))
    return product


@pytest.fixture()
def free_product():
    product = Product.objects.create(sku="icon-free", name="Starter Icon Set")
    ProductOption.objects.create(product=product, name="SVG pack", price=Decimal("0.00"))
    return product


def fill_cart(customer, product, options=None) -> Cart:
    cart, _ = Cart.objects.get_or_create(customer=customer)
    item = CartItem.objects.create(cart=cart, product=product)
    item.options.set(options if options is not None else product.options.all())
    return cart


@pytest.fixture()
def cart(customer, product):
    """Cart holding both options of ``product`` (subtotal 200.00)."""
    return fill_cart(customer, product)


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_coupon():
    def _make(code="SAVE10", **kwargs):
        defaults = {
            "name": f"{code} coupon",
            "type": CouponType.PERCENTAGE,
            "discount": Decimal("10"),
            "total_uses": 0,
            "customer_uses": 0,
        }
        defaults.update(kwargs)
        return Coupon.objects.create(code=code, **defaults)

    return _make


# ---------------------------------------------------------------------------
# Services and orders
# ---------------------------------------------------------------------------


@pytest.fixture()
def order_repository():
    return OrderDjangoRepository()


@pytest.fixture()
def coupon_service(order_repository):
    return CouponService(CouponDjangoRepository(), order_repository)


@pytest.fixture()
def checkout_service(order_repository, coupon_service, gateway):
    return CheckoutService(
        order_repository=order_repository,
        coupon_service=coupon_service,
        cart_service=CartService(),
        payment_gateway=gateway,
    )


@pytest.fixture()
def pending_order(checkout_service, customer, cart):
    """Pending order for 200.00 created from ``cart``."""
    return checkout_service.start_checkout(customer, RequestProvenanceDTO())


@pytest.fixture()
def awaiting_payment(checkout_service, customer, pending_order):
    """Pending order with a gateway order opened for it."""
    checkout_service.create_payment_order(pending_order.id, customer)
    pending_order.refresh_from_db()
    return pending_order


@pytest.fixture()
def signed_webhook():
    """Build a ``(raw_body, signature)`` pair for a gateway event."""

    def _build(event, payment=None, order=None, secret=WEBHOOK_SECRET):
        body = webhook_body(event, payment=payment, order=order)
        return body, sign_webhook(body, secret)

    return _build


@pytest.fixture()
def add_to_cart():
    return fill_cart


@pytest.fixture()
def sign():
    return sign_webhook
