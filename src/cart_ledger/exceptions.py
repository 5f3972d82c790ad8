"""
Exception hierarchy for cart_ledger.

This module defines all public exceptions raised by the ledger, cart and order
services.

Callers are encouraged to catch `CartLedgerError` when they want to handle
every failure of the subsystem, or a specific subclass such as
`InsufficientStock` when they need to render a dedicated message. Every error
carries a stable `code` and the context needed to explain it (offending
product id, requested vs. available quantity, ...), available through
`as_dict()`.
"""

from __future__ import annotations

from typing import Any


class CartLedgerError(Exception):
    """
    Base exception for all cart_ledger errors.

    Example
    -------
    >>> try:
    ...     cart.add_item(user_id, product_id, 2)
    ... except CartLedgerError as exc:
    ...     return JsonResponse(exc.as_dict(), status=409)
    """

    #: Stable error code for programmatic handling.
    code: str = "cart_ledger_error"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        if message is None:
            message = "An unspecified cart_ledger error occurred."
        super().__init__(message)
        self.message = message
        self.context = context

    def as_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class NotFound(CartLedgerError):
    """Base class for a user, product, cart item or order that does not exist."""

    code: str = "not_found"
    entity: str = "object"

    def __init__(self, identifier: Any) -> None:
        super().__init__(f"{self.entity} {identifier!r} not found", id=identifier)
        self.identifier = identifier


class UserNotFound(NotFound):
    code = "user_not_found"
    entity = "User"


class ProductNotFound(NotFound):
    code = "product_not_found"
    entity = "Product"


class ItemNotFound(NotFound):
    code = "item_not_found"
    entity = "Cart item"


class OrderNotFound(NotFound):
    code = "order_not_found"
    entity = "Order"


class InsufficientStock(CartLedgerError):
    """
    Raised when a requested quantity exceeds what the product can supply.

    Attributes
    ----------
    product_id
        The product that could not be reserved or sold.
    requested : int
        Units asked for by the failed call.
    available : int
        Units that were available at the time of the check.
    """

    code: str = "insufficient_stock"

    def __init__(self, product_id: Any, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id!r}: "
            f"requested {requested}, available {available}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidQuantity(CartLedgerError):
    """Raised for non-positive, non-integral or malformed quantities."""

    code: str = "invalid_quantity"

    def __init__(self, value: Any, message: str | None = None) -> None:
        super().__init__(message or f"Invalid quantity: {value!r}", value=value)
        self.value = value


class InvalidPrice(CartLedgerError):
    """Raised for negative, non-numeric or over-precise unit prices."""

    code: str = "invalid_price"

    def __init__(self, value: Any, message: str | None = None) -> None:
        super().__init__(message or f"Invalid price: {value!r}", value=value)
        self.value = value


class DuplicateProduct(CartLedgerError):
    code: str = "duplicate_product"

    def __init__(self, title: str) -> None:
        super().__init__(f"Product {title!r} already exists", title=title)
        self.title = title


class InvalidStatus(CartLedgerError):
    code: str = "invalid_status"

    def __init__(self, value: Any, message: str | None = None) -> None:
        super().__init__(message or f"Invalid order status: {value!r}", value=value)
        self.value = value


class InvalidStatusTransition(InvalidStatus):
    """
    Raised when an order status change is not allowed by the fulfillment
    state machine (e.g. "delivered" -> "pending").
    """

    code: str = "invalid_status_transition"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            requested,
            message=f"Cannot move order from {current!r} to {requested!r}",
        )
        self.context["current"] = current
        self.current = current


class EmptyCart(CartLedgerError):
    code: str = "empty_cart"

    def __init__(self, user_id: Any) -> None:
        super().__init__(f"Cart of user {user_id!r} has no items", user_id=user_id)
        self.user_id = user_id


class CriticalInventoryFault(CartLedgerError):
    """
    Raised when an internal ledger invariant would be violated, e.g. stock
    going negative during a deduction.

    This signals a bug upstream of the ledger rather than a user error and is
    always logged at critical level by the code raising it.
    """

    code: str = "critical_inventory_fault"

    def __init__(self, product_id: Any, detail: str) -> None:
        super().__init__(
            f"Inventory invariant violated for product {product_id!r}: {detail}",
            product_id=product_id,
            detail=detail,
        )
        self.product_id = product_id
        self.detail = detail


class TransactionAborted(CartLedgerError):
    """
    Raised when the underlying store could not commit a unit of work
    (lock timeout, serialization failure, lost connection, ...).

    All changes made inside the unit of work have been rolled back.
    """

    code: str = "transaction_aborted"
