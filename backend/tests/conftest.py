"""
Shared pytest fixtures.

Each test gets its own file-backed SQLite database (via aiosqlite) so that
several sessions can run real, separate transactions against it. The engine
is built with build_engine(), which turns every transaction into
BEGIN IMMEDIATE: a session holds the write lock from its first statement
until it commits or rolls back, so always finish one session's transaction
before expecting another to make progress.

Environment overrides are applied before importing app modules so that
Settings() picks up the test values.
"""
import os
from datetime import datetime

# Set test environment BEFORE importing any app module
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INVOICE_DEFAULT_PREFIX", "FA")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoicing.core.config import get_settings
from invoicing.core.db import build_engine
from invoicing.models.base import Base
from invoicing.models.organization import OrganizationSettings  # noqa: F401 — registers model
from invoicing.models.sequence import InvoiceSequence  # noqa: F401
from invoicing.services.numbering import NumberingService

TEST_ORG_ID = "org-test"


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'numbering.db'}",
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide a session that rolls back whatever is left open after each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_service():
    """
    Build a NumberingService on a session with a frozen clock.

        service = make_service(session, year=2027, numbering_max_attempts=1)
    """

    def _make(session: AsyncSession, year: int = 2026, **overrides) -> NumberingService:
        settings = get_settings().model_copy(update=overrides)
        return NumberingService.for_session(
            session,
            settings=settings,
            clock=lambda: datetime(year, 6, 15, 10, 30),
        )

    return _make


@pytest.fixture
def allocate(session_factory, make_service):
    """Allocate one number in its own committed transaction."""

    async def _allocate(tenant, year: int = 2026) -> str:
        async with session_factory() as session:
            number = await make_service(session, year=year).allocate_next(tenant)
            await session.commit()
        return number

    return _allocate


@pytest_asyncio.fixture
async def client(db_session: AsyncSession):
    """
    AsyncClient for the FastAPI app with the DB dependency overridden to use
    the test session. Requests carry X-Organization-ID: org-test unless a
    test passes its own header.
    """
    from invoicing.main import app
    from invoicing.core.db import get_db

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
        headers={"X-Organization-ID": TEST_ORG_ID},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
