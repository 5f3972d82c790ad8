from __future__ import annotations

from functools import wraps
from inspect import signature
from typing import Any, Callable, Mapping, Sequence

import structlog

from .exceptions import CartLedgerError
from .transactions import _UNSET, unit_of_work

logger = structlog.get_logger(__name__)


def _resolve_context(
    names: Sequence[str],
    fn: Callable[..., Any],
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> dict[str, Any]:
    """
    Pick the named arguments of a call for the log context.

    We bind (args, kwargs) against the function signature so both positional
    and keyword arguments are found reliably.
    """
    bound = signature(fn).bind_partial(*args, **kwargs)
    bound.apply_defaults()
    values: Mapping[str, Any] = bound.arguments
    return {name: values.get(name) for name in names}


def ledger_operation(
    name: str,
    *,
    context: Sequence[str] = (),
    timeout: float | None = _UNSET,
):
    """
    Decorator that runs a service function as one unit of work.

    The whole call commits or rolls back together, and for its duration
    the operation name and the selected arguments are bound into the
    structlog context so every log line emitted underneath carries them.

    Examples
    --------
    @ledger_operation("cart.add_item", context=("user_id", "product_id"))
    def add_item(user_id, product_id, quantity):
        ...

    Failure behavior
    ----------------
    - CartLedgerError subclasses are re-raised; only the outermost operation
      logs them as rejected, so one failure yields one log line.
    - Database failures surface as TransactionAborted (see unit_of_work).
    """

    def decorator(fn: Callable[..., Any]):
        parameters = signature(fn).parameters
        for arg in context:
            if arg not in parameters:
                raise KeyError(
                    f"cart_ledger: context references '{arg}', "
                    f"but it is not a parameter of {fn.__qualname__}. "
                    f"Available: {sorted(parameters)}"
                )

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any):
            values = _resolve_context(context, fn, args, kwargs)
            # Nested operations run under an outer one's bound "operation".
            outermost = "operation" not in structlog.contextvars.get_contextvars()

            with structlog.contextvars.bound_contextvars(operation=name, **values):
                try:
                    with unit_of_work(timeout=timeout):
                        return fn(*args, **kwargs)
                except CartLedgerError as exc:
                    if outermost:
                        logger.info(
                            "Operation rejected", code=exc.code, reason=exc.message
                        )
                    raise

        return wrapper

    return decorator
