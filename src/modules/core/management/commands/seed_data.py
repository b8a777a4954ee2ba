from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from modules.cart.models import Cart, CartItem
from modules.coupons.models import Coupon, CouponType
from modules.customers.models import Customer
from modules.products.models import Product, ProductOption


class Command(BaseCommand):
    help = "Seed database with realistic development data."

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write("Seeding development data...")

        users_created = self._seed_staff()
        customers = self._seed_customers()
        products = self._seed_products()
        coupons_created = self._seed_coupons()
        self._seed_carts(customers, products)

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"staff={users_created}, "
                f"customers={len(customers)}, "
                f"products={len(products)}, "
                f"coupons={coupons_created}"
            )
        )

    def _seed_staff(self) -> int:
        User = get_user_model()
        if User.objects.filter(username="admin").exists():
            return 0
        User.objects.create_superuser("admin", password="admin123")
        return 1

    def _seed_customers(self) -> list[Customer]:
        self.stdout.write("Creating customers...")
        User = get_user_model()
        customers: list[Customer] = []
        seed_customers = [
            ("asha", "Asha", "Iyer", "asha@example.com", "9876543210"),
            ("rohan", "Rohan", "Mehta", "rohan@example.com", "9123456780"),
            ("meera", "Meera", "Nair", "meera@example.com", ""),
        ]
        for username, first_name, last_name, email, mobile in seed_customers:
            user, _ = User.objects.get_or_create(
                username=username, defaults={"email": email}
            )
            if not user.has_usable_password():
                user.set_password(f"{username}123")
                user.save(update_fields=["password"])
            customer, _ = Customer.objects.get_or_create(
                user=user,
                defaults={
                    "first_name": first_name,
                    "last_name": last_name,
                    "email": email,
                    "mobile": mobile,
                },
            )
            customers.append(customer)
        return customers

    def _seed_products(self) -> list[Product]:
        self.stdout.write("Creating products...")
        catalog = [
            ("FONT-SERIF", "Classic Serif Family", [("Desktop licence", "499.00"), ("Web licence", "799.00")]),
            ("TPL-INVITE", "Wedding Invite Templates", [("Single design", "149.00"), ("Full pack", "999.00")]),
            ("ICON-FREE", "Starter Icon Set", [("SVG pack", "0.00")]),
        ]
        products: list[Product] = []
        for sku, name, options in catalog:
            product, _ = Product.objects.get_or_create(sku=sku, defaults={"name": name})
            for option_name, price in options:
                ProductOption.objects.get_or_create(
                    product=product,
                    name=option_name,
                    defaults={"price": Decimal(price)},
                )
            products.append(product)
        return products

    def _seed_coupons(self) -> int:
        self.stdout.write("Creating coupons...")
        now = timezone.now()
        seed_coupons = [
            {
                "code": "SAVE10",
                "name": "10% off everything",
                "type": CouponType.PERCENTAGE,
                "discount": Decimal("10"),
                "total_uses": 100,
                "customer_uses": 1,
            },
            {
                "code": "FLAT100",
                "name": "100 off orders above 500",
                "type": CouponType.FIXED,
                "discount": Decimal("100"),
                "min_amount": Decimal("500"),
                "total_uses": 0,
                "customer_uses": 2,
            },
            {
                "code": "WELCOME5",
                "name": "Welcome discount",
                "type": CouponType.PERCENTAGE,
                "discount": Decimal("5"),
                "max_discount": Decimal("50"),
                "total_uses": 0,
                "customer_uses": 1,
                "auto_apply": True,
            },
        ]
        created = 0
        for data in seed_coupons:
            code = data.pop("code")
            _, was_created = Coupon.objects.get_or_create(
                code=code,
                defaults={**data, "date_start": now, "date_end": now + timedelta(days=90)},
            )
            created += int(was_created)
        return created

    def _seed_carts(self, customers: list[Customer], products: list[Product]) -> None:
        self.stdout.write("Filling carts...")
        for customer, product in zip(customers, products):
            cart, _ = Cart.objects.get_or_create(customer=customer)
            if cart.items.exists():
                continue
            item = CartItem.objects.create(cart=cart, product=product)
            item.options.set(product.options.all()[:1])
