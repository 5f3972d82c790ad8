"""
Test bootstrap: configure Django once, create the schema, wipe rows between
tests.

The suite runs against in-memory SQLite by default. Set DATABASE_URL to a
PostgreSQL database to run it against real row locks (required by
test_postgres_concurrency.py).
"""

import itertools
import os
from urllib.parse import urlparse

import pytest


def _database_settings() -> dict:
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        return {"ENGINE": "django.db.backends.sqlite3", "NAME": ":memory:"}

    u = urlparse(database_url)
    if u.scheme not in {"postgres", "postgresql"}:
        raise pytest.UsageError(f"Unsupported DATABASE_URL scheme: {u.scheme!r}")

    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": (u.path or "").lstrip("/"),
        "USER": u.username or "",
        "PASSWORD": u.password or "",
        "HOST": u.hostname or "localhost",
        "PORT": str(u.port or 5432),
        "CONN_MAX_AGE": 0,
    }


def _configure_django() -> None:
    """Configure a minimal Django project (once per test run)."""
    from django.conf import settings

    if settings.configured:
        return

    settings.configure(
        SECRET_KEY="test",
        INSTALLED_APPS=[
            "django.contrib.auth",
            "django.contrib.contenttypes",
            "cart_ledger",
        ],
        DATABASES={"default": _database_settings()},
        DEFAULT_AUTO_FIELD="django.db.models.BigAutoField",
        PASSWORD_HASHERS=["django.contrib.auth.hashers.MD5PasswordHasher"],
        CART_LEDGER={"LOCK_TIMEOUT": 5.0},
        TIME_ZONE="UTC",
        USE_TZ=True,
    )

    import django

    django.setup()

    from cart_ledger.utils.logging import configure_logging

    os.environ.setdefault("ENVIRONMENT", "test")
    configure_logging()


# Test modules import models at collection time, so the app registry must be
# ready before pytest collects them.
_configure_django()


@pytest.fixture(scope="session", autouse=True)
def _schema():
    from django.core.management import call_command

    call_command("migrate", verbosity=0)


@pytest.fixture(autouse=True)
def _clean_tables(_schema):
    yield

    from django.contrib.auth import get_user_model

    from cart_ledger.models import Cart, CartItem, Order, OrderItem, Product

    # Children first: product references are PROTECTed.
    OrderItem.objects.all().delete()
    Order.objects.all().delete()
    CartItem.objects.all().delete()
    Cart.objects.all().delete()
    Product.objects.all().delete()
    get_user_model().objects.all().delete()


_seq = itertools.count(1)


@pytest.fixture
def make_user():
    from django.contrib.auth import get_user_model

    def factory(username=None):
        name = username or f"user-{next(_seq)}"
        return get_user_model().objects.create_user(username=name)

    return factory


@pytest.fixture
def make_product():
    from cart_ledger import ledger

    def factory(stock=10, price="9.99", title=None, **fields):
        return ledger.create_product(
            title or f"product-{next(_seq)}", price=price, stock=stock, **fields
        )

    return factory


@pytest.fixture
def user(make_user):
    return make_user()
