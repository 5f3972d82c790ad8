"""
Cart aggregate: the per-user working set of (product, quantity) lines.

Every mutation goes through the inventory ledger so the units sitting in
carts are always covered by reservations. The user's cart row is locked
first, then product rows, which keeps the lock order identical to checkout.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

import structlog

from . import ledger
from .decorators import ledger_operation
from .exceptions import ItemNotFound
from .models import Cart, CartItem
from .users import resolve_user

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CartLine:
    item_id: int
    product_id: int
    title: str
    price: Decimal
    image: str
    quantity: int
    available: int
    subtotal: Decimal

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CartView:
    """
    Materialized cart as returned to callers.

    ``cart_id`` is None when the user never added anything.
    """

    cart_id: int | None
    user_id: Any
    items: tuple[CartLine, ...]
    total_amount: Decimal

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _lock_cart(user, create: bool = False) -> Cart | None:
    if create:
        Cart.objects.get_or_create(user=user)
    return Cart.objects.select_for_update().filter(user=user).first()


def _get_item(cart: Cart | None, cart_item_id: Any) -> CartItem:
    if cart is None:
        raise ItemNotFound(cart_item_id)
    try:
        return CartItem.objects.get(pk=cart_item_id, cart=cart)
    except (CartItem.DoesNotExist, ValueError, TypeError):
        raise ItemNotFound(cart_item_id) from None


def _build_view(user, cart: Cart | None) -> CartView:
    if cart is None:
        return CartView(
            cart_id=None, user_id=user.pk, items=(), total_amount=Decimal("0.00")
        )

    lines = tuple(
        CartLine(
            item_id=item.pk,
            product_id=item.product_id,
            title=item.product.title,
            price=item.product.price,
            image=item.product.image,
            quantity=item.quantity,
            available=item.product.available,
            subtotal=item.product.price * item.quantity,
        )
        for item in cart.items.select_related("product").order_by("id")
    )
    total = sum((line.subtotal for line in lines), Decimal("0.00"))
    return CartView(cart_id=cart.pk, user_id=user.pk, items=lines, total_amount=total)


def get_cart(user_id: Any) -> CartView:
    """Current cart with live prices, images, availability and total."""
    user = resolve_user(user_id)
    return _build_view(user, Cart.objects.filter(user=user).first())


@ledger_operation("cart.add_item", context=("user_id", "product_id", "quantity"))
def add_item(user_id: Any, product_id: Any, quantity: Any) -> CartView:
    """
    Add ``quantity`` units of a product to the user's cart.

    Only the added units are reserved, never the new line total, so units
    already held by the line are not reserved twice. The cart is created on
    first use.

    Raises
    ------
    InsufficientStock
        If the product cannot cover the added units. The cart is unchanged.
    InvalidQuantity
        If ``quantity`` is not a positive integer.
    ProductNotFound, UserNotFound
    """
    units = ledger.coerce_quantity(quantity)
    user = resolve_user(user_id)
    product = ledger.get_product(product_id)
    cart = _lock_cart(user, create=True)

    item = CartItem.objects.filter(cart=cart, product_id=product.pk).first()
    ledger.reserve(product.pk, units)

    if item is None:
        item = CartItem.objects.create(cart=cart, product_id=product.pk, quantity=units)
    else:
        item.quantity += units
        item.save(update_fields=["quantity"])

    logger.info(
        "Item added to cart",
        cart_id=cart.pk,
        item_id=item.pk,
        line_quantity=item.quantity,
    )
    return _build_view(user, cart)


@ledger_operation("cart.update_item", context=("user_id", "cart_item_id", "quantity"))
def update_item(user_id: Any, cart_item_id: Any, quantity: Any) -> CartView:
    """
    Set a line to ``quantity`` units, reserving or releasing the difference.
    A quantity of zero or less removes the line.
    """
    new_quantity = ledger.to_int(quantity)
    if new_quantity <= 0:
        return remove_item(user_id, cart_item_id)

    user = resolve_user(user_id)
    cart = _lock_cart(user)
    item = _get_item(cart, cart_item_id)

    delta = new_quantity - item.quantity
    if delta > 0:
        ledger.reserve(item.product_id, delta)
    elif delta < 0:
        ledger.release(item.product_id, -delta)

    if delta:
        item.quantity = new_quantity
        item.save(update_fields=["quantity"])
        logger.info(
            "Cart item updated", cart_id=cart.pk, item_id=item.pk, delta=delta
        )

    return _build_view(user, cart)


@ledger_operation("cart.remove_item", context=("user_id", "cart_item_id"))
def remove_item(user_id: Any, cart_item_id: Any) -> CartView:
    user = resolve_user(user_id)
    cart = _lock_cart(user)
    item = _get_item(cart, cart_item_id)

    ledger.release(item.product_id, item.quantity)
    item.delete()

    logger.info("Cart item removed", cart_id=cart.pk, item_id=cart_item_id)
    return _build_view(user, cart)


@ledger_operation("cart.clear", context=("user_id",))
def clear(user_id: Any) -> dict[str, int]:
    """
    Release every line's reservation and empty the cart, all or nothing.
    """
    user = resolve_user(user_id)
    cart = _lock_cart(user)
    if cart is None:
        return {"cleared": 0}

    items = list(cart.items.order_by("product_id"))
    ledger.lock_products(item.product_id for item in items)
    for item in items:
        ledger.release(item.product_id, item.quantity)
    CartItem.objects.filter(cart=cart).delete()

    logger.info("Cart cleared", cart_id=cart.pk, lines=len(items))
    return {"cleared": len(items)}
