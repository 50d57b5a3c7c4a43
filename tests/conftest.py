"""
Shared test fixtures for the Loadflow test suite.

The API tests run against an in-memory aiosqlite database through
httpx's ASGI transport; the client-core tests use plain in-memory fakes.
"""

import itertools
import os
import sys
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from loadflow.api.v1.deps import get_db
from loadflow.core.lifecycle import LoadStatus
from loadflow.core.security import create_access_token, get_password_hash
from loadflow.db.base import Base
from loadflow.db.session import enable_sqlite_foreign_keys
from loadflow.main import app
from loadflow.models.load import Comment, Load  # noqa: F401
from loadflow.models.user import User
from loadflow.schemas.load import LoadRecord

# One shared in-memory database for the whole test run
test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(test_engine.sync_engine)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture
async def setup_db():
    """Create all tables before usage and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture
async def async_client(setup_db) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(setup_db) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with TestingSessionLocal() as session:
        yield session


# ── Users & auth ────────────────────────────────────────────────────
@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory: ``await make_user("employee", name="Eve")`` persists a user."""
    counter = itertools.count(1)

    async def _make(
        role: str = "employee",
        name: str | None = None,
        email: str | None = None,
        password: str = "secret123",
    ) -> User:
        n = next(counter)
        user = User(
            email=email or f"{role}{n}@example.com",
            hashed_password=get_password_hash(password),
            name=name or f"{role.title()} {n}",
            role=role,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user("admin", name="Ada Admin")


@pytest.fixture
async def supervisor(make_user) -> User:
    return await make_user("supervisor", name="Sam Supervisor")


@pytest.fixture
async def allocator(make_user) -> User:
    return await make_user("allocator", name="Alex Allocator")


@pytest.fixture
async def employee(make_user) -> User:
    return await make_user("employee", name="Erin Employee")


@pytest.fixture
async def other_employee(make_user) -> User:
    return await make_user("employee", name="Omar Employee")


async def create_load_via_api(client: AsyncClient, user: User, **fields) -> dict:
    body = {"client_name": "Acme", "client_number": "123", **fields}
    resp = await client.post("/api/v1/loads", json=body, headers=auth_headers(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Client-core helpers ─────────────────────────────────────────────
T0 = datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc)

_record_ids = itertools.count(1000)


def make_record(
    id: int | None = None,
    status: LoadStatus | str = LoadStatus.PENDING,
    assigned_to: int | None = None,
    updated_at: datetime | None = None,
    created_at: datetime | None = None,
    **fields,
) -> LoadRecord:
    created_at = created_at or T0
    return LoadRecord(
        id=id if id is not None else next(_record_ids),
        client_name=fields.pop("client_name", "Acme"),
        client_number=fields.pop("client_number", "123"),
        status=status,
        employee_count=fields.pop("employee_count", 1),
        assigned_to=assigned_to,
        created_by=fields.pop("created_by", 1),
        created_at=created_at,
        updated_at=updated_at or created_at,
        **fields,
    )


def later(record: LoadRecord, seconds: int = 1, **changes) -> LoadRecord:
    """A copy of *record* as the server would send it after a later write."""
    return record.model_copy(
        update={"updated_at": record.updated_at + timedelta(seconds=seconds), **changes}
    )
