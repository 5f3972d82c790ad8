"""
Checkout and order records.

``convert`` is the only place stock is permanently deducted. It runs as a
single unit of work: the order, its items, the stock deductions and the
emptied cart are committed together or not at all.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog

from . import ledger
from .conf import get_setting
from .decorators import ledger_operation
from .exceptions import (
    EmptyCart,
    InsufficientStock,
    InvalidStatus,
    InvalidStatusTransition,
    OrderNotFound,
)
from .models import STATUS_TRANSITIONS, Cart, CartItem, Order, OrderItem, OrderStatus
from .users import resolve_user

logger = structlog.get_logger(__name__)


def _check_line(product, quantity: int) -> None:
    """
    Re-validate one cart line against the locked product row.

    The line's own reservation counts towards what it may take: a line of
    5 against stock=5, reserved=5 is fine. Any part of the line no longer
    covered by ``reserved`` (e.g. after an administrative resync) must be
    covered by ``available``, and the physical stock must hold the whole
    line.
    """
    held = min(product.reserved, quantity)
    usable = min(product.stock, product.available + held)
    if usable < quantity:
        raise InsufficientStock(product.pk, requested=quantity, available=usable)


@ledger_operation("orders.convert", context=("user_id",))
def convert(user_id: Any) -> Order:
    """
    Turn the user's cart into a pending order.

    Steps, all inside one transaction:

    1. lock the cart row and every product row it references
    2. re-validate each line against the current ledger state
    3. deduct stock and snapshot each line's unit price
    4. persist the order with its items and total
    5. delete the cart lines (the cart itself is kept)

    Raises
    ------
    EmptyCart
        If the cart has no lines (or the user never had a cart).
    InsufficientStock
        Naming the first line that can no longer be fulfilled.
    UserNotFound
    """
    user = resolve_user(user_id)
    cart = Cart.objects.select_for_update().filter(user=user).first()
    items = list(CartItem.objects.filter(cart=cart).order_by("id")) if cart else []
    if not items:
        raise EmptyCart(user.pk)

    products = ledger.lock_products(item.product_id for item in items)
    for item in items:
        _check_line(products[item.product_id], item.quantity)

    order_items = []
    for item in items:
        product = products[item.product_id]
        ledger.deduct(product.pk, item.quantity)
        order_items.append(
            OrderItem(
                product_id=product.pk, quantity=item.quantity, price=product.price
            )
        )

    total = sum((oi.subtotal for oi in order_items), Decimal("0.00"))
    order = Order.objects.create(
        user=user, total_price=total, status=OrderStatus.PENDING
    )
    for oi in order_items:
        oi.order = order
    OrderItem.objects.bulk_create(order_items)

    CartItem.objects.filter(cart=cart).delete()

    logger.info(
        "Order created from cart",
        order_id=order.pk,
        cart_id=cart.pk,
        lines=len(order_items),
        total=str(total),
    )
    return order


def list_orders(user_id: Any) -> list[Order]:
    """The user's orders, newest first, with items prefetched."""
    user = resolve_user(user_id)
    return list(Order.objects.filter(user=user).prefetch_related("items"))


def get_order(user_id: Any, order_id: Any) -> Order:
    user = resolve_user(user_id)
    try:
        return Order.objects.prefetch_related("items").get(pk=order_id, user=user)
    except (Order.DoesNotExist, ValueError, TypeError):
        raise OrderNotFound(order_id) from None


def _normalize_status(status: Any) -> str:
    if not isinstance(status, str) or not status.strip():
        raise InvalidStatus(status, message="Order status must be a non-empty string")
    value = status.strip().lower()
    if value not in OrderStatus.values:
        raise InvalidStatus(status)
    return value


@ledger_operation("orders.update_status", context=("order_id", "status"))
def update_status(order_id: Any, status: Any) -> Order:
    """
    Move an order to a new fulfillment status.

    With ENFORCE_STATUS_TRANSITIONS on (the default) only the moves in
    STATUS_TRANSITIONS are accepted; setting the current status again is a
    no-op either way.
    """
    value = _normalize_status(status)
    try:
        order = Order.objects.select_for_update().get(pk=order_id)
    except (Order.DoesNotExist, ValueError, TypeError):
        raise OrderNotFound(order_id) from None

    if value == order.status:
        return order

    enforce = get_setting("ENFORCE_STATUS_TRANSITIONS")
    if enforce and value not in STATUS_TRANSITIONS[order.status]:
        raise InvalidStatusTransition(order.status, value)

    previous = order.status
    order.status = value
    order.save(update_fields=["status", "updated_at"])
    logger.info("Order status changed", previous=previous, current=value)
    return order


@ledger_operation("orders.delete", context=("user_id", "order_id"))
def delete_order(user_id: Any, order_id: Any) -> dict[str, Any]:
    """
    Purge an order record and its items.

    This is not a cancellation: stock and reservations are not restored.
    """
    user = resolve_user(user_id)
    try:
        order = Order.objects.select_for_update().get(pk=order_id, user=user)
    except (Order.DoesNotExist, ValueError, TypeError):
        raise OrderNotFound(order_id) from None

    pk = order.pk
    order.delete()
    logger.warning("Order purged without restoring inventory", status=order.status)
    return {"deleted": pk}
