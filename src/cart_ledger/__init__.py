from .exceptions import (
    CartLedgerError,
    CriticalInventoryFault,
    DuplicateProduct,
    EmptyCart,
    InsufficientStock,
    InvalidPrice,
    InvalidQuantity,
    InvalidStatus,
    InvalidStatusTransition,
    ItemNotFound,
    NotFound,
    OrderNotFound,
    ProductNotFound,
    TransactionAborted,
    UserNotFound,
)

__all__ = [
    "CartLedgerError",
    "CriticalInventoryFault",
    "DuplicateProduct",
    "EmptyCart",
    "InsufficientStock",
    "InvalidPrice",
    "InvalidQuantity",
    "InvalidStatus",
    "InvalidStatusTransition",
    "ItemNotFound",
    "NotFound",
    "OrderNotFound",
    "ProductNotFound",
    "TransactionAborted",
    "UserNotFound",
]
