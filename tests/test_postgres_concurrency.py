"""
PostgreSQL row-lock integration tests.

These tests validate real concurrency behavior (not mocks):
- Two shoppers racing for the last unit must not both get it.
- Many concurrent reservations never oversell.
- A checkout and a competing reservation serialize on the product row.
- A lock wait beyond LOCK_TIMEOUT aborts the transaction cleanly.
- Concurrent adds by the same user share one cart and one line.

They require a reachable PostgreSQL instance via DATABASE_URL.
"""

import threading

import pytest
from django.db import connection, connections

from cart_ledger import cart, ledger, orders
from cart_ledger.exceptions import InsufficientStock, TransactionAborted
from cart_ledger.models import Cart, CartItem, Order, Product
from cart_ledger.transactions import unit_of_work

pytestmark = pytest.mark.skipif(
    connection.vendor != "postgresql",
    reason="DATABASE_URL does not point at PostgreSQL; row-lock tests skipped.",
)


def _ensure_thread_connection() -> None:
    """Open a thread-local DB connection early to avoid first-connect races."""
    connections["default"].ensure_connection()


def _close_thread_connection() -> None:
    """Close the thread-local DB connection to avoid leaks between tests."""
    connections["default"].close()


def _run_concurrently(*targets) -> None:
    threads = [
        threading.Thread(target=t, name=f"worker-{i}") for i, t in enumerate(targets)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10.0)


def _product_state(product):
    p = Product.objects.get(pk=product.pk)
    return p.stock, p.reserved, p.available


def test_last_unit_is_sold_only_once(make_user, make_product):
    """stock=1: two concurrent add_item(qty=1) calls, exactly one wins."""
    product = make_product(stock=1)
    users = [make_user(), make_user()]

    barrier = threading.Barrier(len(users))
    outcomes: list[str] = []
    lock = threading.Lock()

    def shopper(user_id):
        def run() -> None:
            try:
                _ensure_thread_connection()
                barrier.wait(timeout=5.0)
                try:
                    cart.add_item(user_id, product.pk, 1)
                    result = "ok"
                except InsufficientStock:
                    result = "insufficient"
                with lock:
                    outcomes.append(result)
            finally:
                _close_thread_connection()

        return run

    _run_concurrently(*(shopper(u.pk) for u in users))

    assert sorted(outcomes) == ["insufficient", "ok"]
    assert _product_state(product) == (1, 1, 0)


def test_concurrent_reservations_never_oversell(make_user, make_product):
    product = make_product(stock=5)
    users = [make_user() for _ in range(8)]

    barrier = threading.Barrier(len(users))
    successes: list[int] = []
    lock = threading.Lock()

    def shopper(user_id):
        def run() -> None:
            try:
                _ensure_thread_connection()
                barrier.wait(timeout=5.0)
                try:
                    cart.add_item(user_id, product.pk, 1)
                except InsufficientStock:
                    return
                with lock:
                    successes.append(user_id)
            finally:
                _close_thread_connection()

        return run

    _run_concurrently(*(shopper(u.pk) for u in users))

    assert len(successes) == 5
    assert _product_state(product) == (5, 5, 0)


def test_checkout_and_reservation_serialize(make_user, make_product):
    """A reservation that waits on a checkout sees the post-checkout ledger."""
    buyer, rival = make_user(), make_user()
    product = make_product(stock=3)
    cart.add_item(buyer.pk, product.pk, 2)

    locked = threading.Event()
    finish = threading.Event()
    results: dict[str, object] = {}

    def checkout() -> None:
        try:
            _ensure_thread_connection()
            with unit_of_work():
                ledger.lock_product(product.pk)
                locked.set()
                # Hold the row until the rival has queued behind it.
                finish.wait(timeout=1.0)
                results["order"] = orders.convert(buyer.pk).pk
        finally:
            _close_thread_connection()

    def reserve() -> None:
        try:
            _ensure_thread_connection()
            assert locked.wait(timeout=5.0)
            try:
                cart.add_item(rival.pk, product.pk, 2)
                results["rival"] = "ok"
            except InsufficientStock:
                results["rival"] = "insufficient"
        finally:
            _close_thread_connection()

    t1 = threading.Thread(target=checkout, name="checkout")
    t2 = threading.Thread(target=reserve, name="rival")
    t1.start()
    t2.start()
    t1.join(timeout=10.0)
    t2.join(timeout=10.0)

    assert Order.objects.filter(pk=results["order"]).exists()
    assert results["rival"] == "insufficient"
    assert _product_state(product) == (1, 0, 1)


def test_lock_wait_beyond_timeout_aborts(make_product):
    product = make_product(stock=10)

    locked = threading.Event()
    release = threading.Event()
    results: dict[str, object] = {}

    def holder() -> None:
        try:
            _ensure_thread_connection()
            with unit_of_work():
                ledger.lock_product(product.pk)
                locked.set()
                release.wait(timeout=3.0)
        finally:
            _close_thread_connection()

    def contender() -> None:
        try:
            _ensure_thread_connection()
            assert locked.wait(timeout=3.0)
            try:
                with unit_of_work(timeout=0.2):
                    ledger.reserve(product.pk, 1)
            except TransactionAborted:
                results["aborted"] = True
        finally:
            _close_thread_connection()

    t1 = threading.Thread(target=holder, name="lock-holder")
    t2 = threading.Thread(target=contender, name="lock-contender")
    t1.start()
    t2.start()
    t2.join(timeout=5.0)
    release.set()
    t1.join(timeout=5.0)

    assert results.get("aborted") is True
    assert _product_state(product) == (10, 0, 10)


def test_same_user_concurrent_adds_share_one_cart(make_user, make_product):
    """A fresh user adding the same product twice at once ends with one line."""
    product = make_product(stock=10)
    user = make_user()

    barrier = threading.Barrier(2)
    errors: list[BaseException] = []
    lock = threading.Lock()

    def add() -> None:
        try:
            _ensure_thread_connection()
            barrier.wait(timeout=5.0)
            try:
                cart.add_item(user.pk, product.pk, 1)
            except Exception as exc:
                with lock:
                    errors.append(exc)
        finally:
            _close_thread_connection()

    _run_concurrently(add, add)

    assert errors == []
    assert Cart.objects.filter(user=user).count() == 1
    items = list(CartItem.objects.filter(cart__user=user))
    assert [(i.product_id, i.quantity) for i in items] == [(product.pk, 2)]
    assert _product_state(product) == (10, 2, 8)


def test_same_user_racing_for_last_unit(make_user, make_product):
    product = make_product(stock=1)
    user = make_user()

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def add() -> None:
        try:
            _ensure_thread_connection()
            barrier.wait(timeout=5.0)
            try:
                cart.add_item(user.pk, product.pk, 1)
                result = "ok"
            except InsufficientStock:
                result = "insufficient"
            with lock:
                outcomes.append(result)
        finally:
            _close_thread_connection()

    _run_concurrently(add, add)

    assert sorted(outcomes) == ["insufficient", "ok"]
    assert CartItem.objects.get(cart__user=user).quantity == 1
    assert _product_state(product) == (1, 1, 0)
