"""
Settings for cart_ledger.

All options live in a single ``CART_LEDGER`` dict in the Django settings
module::

    CART_LEDGER = {
        "LOCK_TIMEOUT": 2.0,
        "ENFORCE_STATUS_TRANSITIONS": True,
    }

LOCK_TIMEOUT
    Maximum time (in seconds) a unit of work waits for a product row lock.
    None blocks indefinitely. Only enforced on PostgreSQL.

ENFORCE_STATUS_TRANSITIONS
    When True, order status changes must follow the fulfillment state
    machine. When False any known status is accepted.
"""

from __future__ import annotations

from typing import Any

from django.conf import settings

DEFAULTS: dict[str, Any] = {
    "LOCK_TIMEOUT": 3.0,
    "ENFORCE_STATUS_TRANSITIONS": True,
}


def get_setting(name: str) -> Any:
    if name not in DEFAULTS:
        raise KeyError(f"cart_ledger: unknown setting {name!r}")
    overrides = getattr(settings, "CART_LEDGER", None) or {}
    return overrides.get(name, DEFAULTS[name])
