"""
Pytest configuration and shared test fixtures.

Provides settings pinned for tests, a fixed clock, users, in-memory stores
and an OrderService wired to them. The environment is set before any
storefront module is imported so the cached settings pick it up.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_CACHE_ENABLED", "false")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from datetime import datetime  # noqa: E402
from typing import Callable  # noqa: E402

import pytest  # noqa: E402

from storefront.core.config import Settings  # noqa: E402
from storefront.database.models import User, UserRole  # noqa: E402
from storefront.services.orders.service import OrderService  # noqa: E402
from tests.fakes import (  # noqa: E402
    FIXED_NOW,
    FakeCache,
    FakeCatalog,
    FakeOrderDatabase,
    FakeOrderStore,
    FakePromoCodeStore,
    make_user,
)


@pytest.fixture
def settings() -> Settings:
    """
    Settings with the default pricing policy and short store timeouts.

    Returns:
        Settings: Fresh settings instance, independent of the cached one
    """
    return Settings(
        environment="test",
        cache_enabled=False,
        store_timeout_seconds=1.0,
    )


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def buyer() -> User:
    return make_user()


@pytest.fixture
def other_buyer() -> User:
    return make_user()


@pytest.fixture
def admin() -> User:
    return make_user(role=UserRole.ADMIN)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def promo_store() -> FakePromoCodeStore:
    return FakePromoCodeStore()


@pytest.fixture
def order_db() -> FakeOrderDatabase:
    """Committed state shared by every order store in a test."""
    return FakeOrderDatabase()


@pytest.fixture
def order_store(order_db: FakeOrderDatabase) -> FakeOrderStore:
    return FakeOrderStore(order_db)


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def make_service(
    catalog: FakeCatalog,
    promo_store: FakePromoCodeStore,
    order_db: FakeOrderDatabase,
    cache: FakeCache,
    settings: Settings,
    clock: Callable[[], datetime],
) -> Callable[..., OrderService]:
    """
    Factory for services over the shared fakes.

    Each call gets its own FakeOrderStore unless one is passed in, the way
    each request gets its own database session.

    Example:
        def test_two_requests(make_service):
            first, second = make_service(), make_service()
    """

    def _make(orders: FakeOrderStore = None, **overrides) -> OrderService:
        return OrderService(
            catalog=overrides.pop("catalog", catalog),
            promo_codes=overrides.pop("promo_codes", promo_store),
            orders=orders or FakeOrderStore(order_db),
            cache=overrides.pop("cache", cache),
            settings=overrides.pop("settings", settings),
            clock=overrides.pop("clock", clock),
        )

    return _make


@pytest.fixture
def service(make_service, order_store: FakeOrderStore) -> OrderService:
    """OrderService over the default order store fixture."""
    return make_service(order_store)
