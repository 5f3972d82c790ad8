from django.apps import AppConfig


class CartLedgerConfig(AppConfig):
    name = "cart_ledger"
    label = "cart_ledger"
    verbose_name = "Cart ledger"
    default_auto_field = "django.db.models.BigAutoField"
