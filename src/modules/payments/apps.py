from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.payments"
    label = "payments"

    def ready(self) -> None:
        from modules.payments.gateway import build_payment_gateway, set_payment_gateway

        set_payment_gateway(build_payment_gateway())
