# tests/conftest.py
from __future__ import annotations

import os
import uuid
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable

# Settings are read at import time; keep tests off any real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.security import create_access_token  # noqa: E402
from app.database import Base, get_db, init_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.product import Product  # noqa: E402
from app.models.user import UserRole  # noqa: E402
from app.schemas.stock_reconciliation import Actor, ProductSnapshot  # noqa: E402
from app.services.stock_reconciliation_service import ReconciliationService  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# =========================================
# One in-memory database per test
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        future=True,
    )
    await init_db(engine)
    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


@pytest.fixture
def service(session: AsyncSession) -> ReconciliationService:
    return ReconciliationService(session)


# =========================================
# Actors
# =========================================
@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=uuid.uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def manager() -> Actor:
    return Actor(user_id=uuid.uuid4(), role=UserRole.MANAGER)


@pytest.fixture
def staff() -> Actor:
    return Actor(user_id=uuid.uuid4(), role=UserRole.STAFF)


# =========================================
# Catalog seed data
# =========================================
@pytest.fixture
def make_product(session: AsyncSession) -> Callable[..., Awaitable[ProductSnapshot]]:
    """Insert a product and return its immutable snapshot."""
    counter = {"n": 0}

    async def _make(
        name: str = None,
        sku: str = None,
        stock: int = 10,
        cost: Decimal = Decimal("2.50"),
        is_active: bool = True,
    ) -> ProductSnapshot:
        counter["n"] += 1
        product = Product(
            name=name or f"Product {counter['n']}",
            sku=sku or f"SKU-{counter['n']:04d}",
            stock=stock,
            cost=cost,
            is_active=is_active,
        )
        session.add(product)
        await session.commit()
        return ProductSnapshot.model_validate(product)

    return _make


# =========================================
# HTTP client bound to the test database
# =========================================
@pytest_asyncio.fixture
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def get_db_override() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            try:
                yield sess
                await sess.commit()
            except Exception:
                await sess.rollback()
                raise

    app.dependency_overrides[get_db] = get_db_override
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def auth_headers() -> Callable[[Actor], dict]:
    """Bearer headers for an actor, signed with the service key."""

    def _headers(actor: Actor) -> dict:
        token = create_access_token(actor.user_id, actor.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
