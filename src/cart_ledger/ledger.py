"""
Inventory ledger: authoritative stock / reserved / available bookkeeping.

Every mutation locks the product row (``SELECT ... FOR UPDATE``) for the
duration of its read-modify-write, so concurrent reservations against the
same product serialize and none of them can act on a stale ``available``.
``available`` is re-derived from ``stock`` and ``reserved`` inside the same
unit of work as each write.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Iterable

import structlog
from django.db import IntegrityError, transaction

from .decorators import ledger_operation
from .exceptions import (
    CriticalInventoryFault,
    DuplicateProduct,
    InsufficientStock,
    InvalidPrice,
    InvalidQuantity,
    ProductNotFound,
)
from .models import Product

logger = structlog.get_logger(__name__)

# Product.price is DecimalField(max_digits=10, decimal_places=2).
_CENT = Decimal("0.01")
_MAX_PRICE = Decimal("99999999.99")


def derive_available(stock: int, reserved: int) -> int:
    """Units eligible for new reservations, floored at zero."""
    return max(0, stock - reserved)


def to_int(value: Any) -> int:
    """
    Coerce a client-supplied quantity to an int.

    Accepts ints, integral floats/Decimals and numeric strings ("3", " 3 ").
    Anything else raises InvalidQuantity.
    """
    if isinstance(value, bool):
        raise InvalidQuantity(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidQuantity(value)
        return int(value)
    if isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            raise InvalidQuantity(value)
        return int(value)
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidQuantity(value) from None
        if not parsed.is_finite() or parsed != parsed.to_integral_value():
            raise InvalidQuantity(value)
        return int(parsed)
    raise InvalidQuantity(value)


def coerce_quantity(value: Any, minimum: int = 1) -> int:
    quantity = to_int(value)
    if quantity < minimum:
        raise InvalidQuantity(
            value, message=f"Quantity must be at least {minimum}, got {value!r}"
        )
    return quantity


def parse_price(value: Any) -> Decimal:
    """
    Coerce a client-supplied unit price to a two-place Decimal.

    Accepts ints, floats, Decimals and numeric strings. Negative values,
    more than two decimal places, and anything non-numeric raise
    InvalidPrice.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise InvalidPrice(value)
    try:
        price = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidPrice(value) from None

    if not price.is_finite():
        raise InvalidPrice(value)
    if price < 0 or price > _MAX_PRICE:
        raise InvalidPrice(
            value, message=f"Price must be between 0 and {_MAX_PRICE}, got {value!r}"
        )
    if price != price.quantize(_CENT, rounding=ROUND_DOWN):
        raise InvalidPrice(
            value, message=f"Price has more than two decimals: {value!r}"
        )
    return price.quantize(_CENT)


def get_product(product_id: Any) -> Product:
    """Plain (non-locking) read of a product."""
    try:
        return Product.objects.get(pk=product_id)
    except (Product.DoesNotExist, ValueError, TypeError):
        raise ProductNotFound(product_id) from None


def lock_product(product_id: Any) -> Product:
    """
    Fetch a product row and hold an exclusive lock on it until the current
    transaction ends. Must be called inside a unit of work.
    """
    try:
        return Product.objects.select_for_update().get(pk=product_id)
    except (Product.DoesNotExist, ValueError, TypeError):
        raise ProductNotFound(product_id) from None


def lock_products(product_ids: Iterable[Any]) -> dict[Any, Product]:
    """
    Lock several product rows at once, in ascending id order.

    A fixed lock order means two transactions touching overlapping products
    cannot deadlock on each other.
    """
    ids = sorted(set(product_ids))
    rows = Product.objects.select_for_update().filter(pk__in=ids).order_by("pk")
    products = {p.pk: p for p in rows}
    for product_id in ids:
        if product_id not in products:
            raise ProductNotFound(product_id)
    return products


def _persist(product: Product, *fields: str) -> Product:
    product.available = derive_available(product.stock, product.reserved)
    product.save(update_fields=[*fields, "available"])
    return product


@ledger_operation("ledger.create_product", context=("title",))
def create_product(title: str, price: Any, stock: Any = 0, **fields: Any) -> Product:
    """
    Register a product with no reservations and a derived ``available``.

    Raises
    ------
    InvalidPrice
        If ``price`` is not a non-negative amount with at most two decimals.
    InvalidQuantity
        If ``stock`` is not a non-negative integer.
    DuplicateProduct
        If a product with the same title already exists.
    """
    unit_price = parse_price(price)
    units = coerce_quantity(stock, minimum=0)

    if Product.objects.filter(title=title).exists():
        raise DuplicateProduct(title)

    try:
        # Savepoint: a concurrent registration of the same title loses here.
        with transaction.atomic():
            product = Product.objects.create(
                title=title,
                price=unit_price,
                stock=units,
                reserved=0,
                available=derive_available(units, 0),
                **fields,
            )
    except IntegrityError:
        raise DuplicateProduct(title) from None

    logger.info("Product registered", product_id=product.pk, stock=units)
    return product


@ledger_operation("ledger.reserve", context=("product_id", "quantity"))
def reserve(product_id: Any, quantity: Any) -> Product:
    """
    Hold ``quantity`` units of a product.

    Raises
    ------
    InsufficientStock
        If fewer than ``quantity`` units are available. The product is left
        unchanged.
    """
    units = coerce_quantity(quantity)
    product = lock_product(product_id)

    if product.available < units:
        raise InsufficientStock(
            product.pk, requested=units, available=product.available
        )

    product.reserved += units
    _persist(product, "reserved")
    logger.debug(
        "Stock reserved",
        product_id=product.pk,
        reserved=product.reserved,
        available=product.available,
    )
    return product


@ledger_operation("ledger.release", context=("product_id", "quantity"))
def release(product_id: Any, quantity: Any) -> Product:
    """Drop a hold of ``quantity`` units. ``reserved`` never goes below zero."""
    units = coerce_quantity(quantity)
    product = lock_product(product_id)

    if units > product.reserved:
        logger.warning(
            "Release exceeds reservation, clamping to zero",
            product_id=product.pk,
            requested=units,
            reserved=product.reserved,
        )
    product.reserved = max(0, product.reserved - units)
    _persist(product, "reserved")
    logger.debug(
        "Stock released",
        product_id=product.pk,
        reserved=product.reserved,
        available=product.available,
    )
    return product


@ledger_operation("ledger.deduct", context=("product_id", "quantity"))
def deduct(product_id: Any, quantity: Any) -> Product:
    """
    Permanently consume ``quantity`` units: the reservation is fulfilled and
    the physical stock leaves the ledger.

    Raises
    ------
    CriticalInventoryFault
        If stock would go negative. This means an earlier invariant breach
        and is logged at critical level.
    """
    units = coerce_quantity(quantity)
    product = lock_product(product_id)

    if product.stock < units:
        logger.critical(
            "Deduction would drive stock negative",
            product_id=product.pk,
            stock=product.stock,
            reserved=product.reserved,
            requested=units,
        )
        raise CriticalInventoryFault(
            product.pk, f"cannot deduct {units} from stock {product.stock}"
        )

    product.stock -= units
    product.reserved = max(0, product.reserved - units)
    _persist(product, "stock", "reserved")
    logger.info(
        "Stock deducted",
        product_id=product.pk,
        quantity=units,
        stock=product.stock,
        reserved=product.reserved,
    )
    return product


@ledger_operation("ledger.adjust_stock", context=("product_id", "new_stock"))
def adjust_stock(product_id: Any, new_stock: Any) -> Product:
    """
    Administrative resync of total stock. ``reserved`` is left as is; if the
    new stock is below it, ``available`` clamps to zero.
    """
    units = coerce_quantity(new_stock, minimum=0)
    product = lock_product(product_id)

    previous = product.stock
    product.stock = units
    _persist(product, "stock")

    if product.reserved > product.stock:
        logger.warning(
            "Stock adjusted below outstanding reservations",
            product_id=product.pk,
            stock=product.stock,
            reserved=product.reserved,
        )
    logger.info(
        "Stock adjusted",
        product_id=product.pk,
        previous_stock=previous,
        stock=product.stock,
    )
    return product
