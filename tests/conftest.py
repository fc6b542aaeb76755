"""
Shared pytest fixtures for the queryshape library tests.

This module provides:
- Engine fixtures (shaper, mock_tracer, traced_shaper)
- Component fixtures (descriptors, resolver)
- Sample data fixtures (customers, orders, and their queryables)
- SQLite fixtures (sqlite_session, async_sqlite_session)

All fixtures are function scoped; every test gets its own engine and data.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from queryshape import (
    DescriptorRegistry,
    InMemoryQueryable,
    PropertyResolver,
    QueryShaper,
    ShapingConfig,
)
from queryshape.observability import MockTracer
from tests.fixtures import make_customers, make_orders
from tests.fixtures.models import Customer, Order
from tests.fixtures.orm import Base, seed

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    aiosqlite = None  # type: ignore[assignment]


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


# ============================================================================
# Skip Condition
# ============================================================================

skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def shaper() -> QueryShaper:
    """
    Provide a QueryShaper with default configuration and tracing disabled.

    Returns:
        A new QueryShaper with empty registries.
    """
    return QueryShaper(ShapingConfig(enable_tracing=False))


@pytest.fixture
def mock_tracer() -> MockTracer:
    """
    Provide a MockTracer that records spans.

    Returns:
        A new MockTracer with no recorded spans.
    """
    return MockTracer()


@pytest.fixture
def traced_shaper(mock_tracer: MockTracer) -> QueryShaper:
    """
    Provide a QueryShaper wired to the mock_tracer fixture.

    Args:
        mock_tracer: The recording tracer.

    Returns:
        A new QueryShaper whose components record spans on mock_tracer.
    """
    return QueryShaper(tracer=mock_tracer)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def descriptors() -> DescriptorRegistry:
    """Provide an empty DescriptorRegistry."""
    return DescriptorRegistry()


@pytest.fixture
def resolver(descriptors: DescriptorRegistry) -> PropertyResolver:
    """Provide a PropertyResolver with flattening enabled."""
    return PropertyResolver(descriptors)


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def customers() -> list[Customer]:
    """
    Provide five customers.

    Ids 3 and 5 are both named "Alice"; ids 1 and 4 have no address.
    """
    return make_customers()


@pytest.fixture
def orders() -> list[Order]:
    """Provide four orders (ids 100-103) over the customers fixture data."""
    return make_orders()


@pytest.fixture
def customer_query(customers: list[Customer]) -> InMemoryQueryable[Customer]:
    """Provide an in-memory queryable over the customers fixture."""
    return InMemoryQueryable(customers, Customer)


@pytest.fixture
def order_query(orders: list[Order]) -> InMemoryQueryable[Order]:
    """Provide an in-memory queryable over the orders fixture."""
    return InMemoryQueryable(orders, Order)


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest.fixture
def sqlite_session() -> Generator[Session, None, None]:
    """
    Provide a Session on a seeded in-memory SQLite database.

    Contains three customers (1 Alice, 2 Bob, 3 Carol) and four orders
    (ids 10-13), see tests.fixtures.orm.seed.

    Yields:
        An open Session; closed and the engine disposed after the test.
    """
    engine = create_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed(session)
        session.commit()
        yield session
    engine.dispose()


@pytest_asyncio.fixture
async def async_sqlite_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide an AsyncSession on a seeded in-memory SQLite database (aiosqlite).

    Yields:
        An open AsyncSession; closed and the engine disposed after the test.
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSession(engine, expire_on_commit=False) as session:
        seed(session)
        await session.commit()
        yield session

    await engine.dispose()
