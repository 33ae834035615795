"""
Pytest configuration and fixtures.

Tests run against a throwaway SQLite file per test (aiosqlite driver), so
no PostgreSQL server is needed.
"""
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from emi_ledger.api import routes
from emi_ledger.api.main import app
from emi_ledger.config import Settings
from emi_ledger.core.accounts import AccountStore
from emi_ledger.core.payment_processor import PaymentProcessor
from emi_ledger.database.connection import build_session_factory, get_db, init_db
from emi_ledger.database.models import Account


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///./emi_ledger_test.db",
        app_name="emi-ledger-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
        lock_wait_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, Any]:
    """Create a fresh database with the full schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'emi_ledger_test.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def account_store() -> AccountStore:
    return AccountStore()


@pytest.fixture
def processor(account_store: AccountStore) -> PaymentProcessor:
    """A processor with a short lock wait so contention tests stay fast."""
    return PaymentProcessor(account_store=account_store, lock_wait_timeout_seconds=5.0)


@pytest.fixture
def sample_account_data() -> dict[str, Any]:
    """Sample account creation data."""
    return {
        "account_number": "ACC001",
        "customer_name": "Asha Verma",
        "issue_date": date(2024, 1, 15),
        "interest_rate": Decimal("10.50"),
        "tenure": 24,
        "emi_due": Decimal("100.00"),
    }


@pytest_asyncio.fixture
async def sample_account(
    session_factory: async_sessionmaker[AsyncSession],
    account_store: AccountStore,
    sample_account_data: dict[str, Any],
) -> Account:
    """An account with an EMI due of 100.00."""
    async with session_factory() as db:
        return await account_store.create(db, **sample_account_data)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client wired to the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    original_provider = routes.health_check.session_factory_provider
    routes.health_check.session_factory_provider = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    routes.health_check.session_factory_provider = original_provider
    app.dependency_overrides.clear()


@pytest.fixture
def fetch_account(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[Account]]:
    """Read an account in a fresh session, bypassing any cached state."""

    async def _fetch(account_number: str) -> Account:
        async with session_factory() as db:
            return await AccountStore.get_by_account_number(db, account_number)

    return _fetch
