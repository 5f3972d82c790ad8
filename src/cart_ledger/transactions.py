from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from django.db import DEFAULT_DB_ALIAS, DatabaseError, connections, transaction

from .conf import get_setting
from .exceptions import TransactionAborted

logger = structlog.get_logger(__name__)

_UNSET: Any = object()


def _apply_lock_timeout(connection, timeout: float | None) -> None:
    """
    Bound the time this transaction may wait for a row lock.

    Only PostgreSQL supports a per-transaction lock timeout; other backends
    keep their own locking behaviour. ``set_config(..., true)`` scopes the
    value to the current transaction, like ``SET LOCAL``.
    """
    if connection.vendor != "postgresql":
        return

    value = "0" if timeout is None else f"{max(1, int(timeout * 1000))}ms"
    with connection.cursor() as cursor:
        cursor.execute("SELECT set_config('lock_timeout', %s, true);", [value])


@contextmanager
def unit_of_work(
    timeout: float | None = _UNSET,
    using: str | None = None,
) -> Iterator[None]:
    """
    Run the enclosed block as one all-or-nothing database transaction.

    Every ledger mutation and every multi-item cart/order operation runs
    inside a unit of work. Row locks taken with ``select_for_update()`` in
    the block are held until it exits.

    Parameters
    ----------
    timeout : float | None, default=LOCK_TIMEOUT setting
        Maximum time (in seconds) to wait for a row lock.

        - None: block indefinitely.
        - float: abort the transaction if exceeded.

    using : str | None
        Database alias. Defaults to ``"default"``.

    Raises
    ------
    TransactionAborted
        If the store fails to execute or commit the transaction (lock
        timeout, serialization failure, lost connection, ...). Nothing done
        inside the block is persisted.

    Example
    -------
    >>> with unit_of_work():
    ...     ledger.deduct(product_id, 2)
    ...     order.save()

    Notes
    -----
    Nested units of work join the outer transaction through a savepoint; the
    lock timeout is only applied by the outermost one.
    """
    alias = using or DEFAULT_DB_ALIAS
    connection = connections[alias]
    outermost = not connection.in_atomic_block

    if timeout is _UNSET:
        timeout = get_setting("LOCK_TIMEOUT")

    try:
        with transaction.atomic(using=alias):
            if outermost:
                _apply_lock_timeout(connection, timeout)
            yield
    except DatabaseError as exc:
        logger.warning("Unit of work aborted", database=alias, error=str(exc))
        raise TransactionAborted(f"Transaction aborted: {exc}", database=alias) from exc
