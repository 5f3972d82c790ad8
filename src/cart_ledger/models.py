from __future__ import annotations

from django.conf import settings
from django.db import models


class Product(models.Model):
    """
    Inventory-bearing catalog entry.

    ``available`` is stored for cheap reads but is only ever written by the
    ledger, as ``derive_available(stock, reserved)``, inside the same unit of
    work as the stock/reserved change.
    """

    title = models.CharField(max_length=200, unique=True)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=100, blank=True, default="")
    image = models.CharField(max_length=500, blank=True, default="")
    price = models.DecimalField(max_digits=10, decimal_places=2)
    stock = models.IntegerField(default=0)
    reserved = models.IntegerField(default=0)
    available = models.IntegerField(default=0)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                name="product_stock_non_negative",
                condition=models.Q(stock__gte=0),
            ),
            models.CheckConstraint(
                name="product_reserved_non_negative",
                condition=models.Q(reserved__gte=0),
            ),
            models.CheckConstraint(
                name="product_available_non_negative",
                condition=models.Q(available__gte=0),
            ),
            models.CheckConstraint(
                name="product_price_non_negative",
                condition=models.Q(price__gte=0),
            ),
        ]

    def __str__(self) -> str:
        return (
            f"{self.title} (stock={self.stock} reserved={self.reserved} "
            f"available={self.available})"
        )


class Cart(models.Model):
    """Per-user container of line items. Survives checkout and is reused."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"Cart<{self.user_id}>"


class CartItem(models.Model):
    cart = models.ForeignKey(Cart, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    quantity = models.IntegerField()

    class Meta:
        # Insertion order.
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["cart", "product"], name="unique_cartitem_per_product"
            ),
            models.CheckConstraint(
                name="cartitem_quantity_positive",
                condition=models.Q(quantity__gte=1),
            ),
        ]

    def __str__(self) -> str:
        return f"CartItem<{self.cart_id}:{self.product_id}> qty={self.quantity}"


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


# Fulfillment state machine: current status -> statuses it may move to.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    OrderStatus.PENDING.value: frozenset(
        {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value}
    ),
    OrderStatus.PROCESSING.value: frozenset(
        {OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value}
    ),
    OrderStatus.SHIPPED.value: frozenset({OrderStatus.DELIVERED.value}),
    OrderStatus.DELIVERED.value: frozenset(),
    OrderStatus.CANCELLED.value: frozenset(),
}


class Order(models.Model):
    """
    Snapshot of a converted cart.

    Items and ``total_price`` are fixed at creation; only ``status`` changes
    afterwards.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+"
    )
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(
        max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "status"], name="order_user_status_idx"),
        ]

    def __str__(self) -> str:
        return (
            f"Order<{self.pk}> user={self.user_id} status={self.status} "
            f"total={self.total_price}"
        )


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    quantity = models.IntegerField()
    # Unit price at purchase time.
    price = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                name="orderitem_quantity_positive",
                condition=models.Q(quantity__gte=1),
            ),
        ]

    @property
    def subtotal(self):
        return self.price * self.quantity

    def __str__(self) -> str:
        return (
            f"OrderItem<{self.order_id}:{self.product_id}> "
            f"{self.quantity} x {self.price}"
        )
