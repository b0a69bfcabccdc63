"""
Pytest configuration and fixtures for the tenancy core tests
"""

import itertools
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import origo.database as database_module
from origo.auth import create_access_token
from origo.database import Base
from origo.exceptions import DnsLookupTimeoutError
from origo.models.user import User
from origo.services import tenant_service


@pytest.fixture
async def engine(tmp_path):
    """A fresh SQLite database per test, with foreign keys enforced."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'origo_test.db'}", echo=False)

    @event.listens_for(test_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory, monkeypatch):
    """The application wired to the per-test database."""
    monkeypatch.setattr(database_module, "AsyncSessionLocal", session_factory)
    from main import create_app

    return create_app()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


# ── Factories ─────────────────────────────────────────────────────────────────


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make_user(email: str | None = None, system_role: str | None = None) -> User:
        n = next(counter)
        user = User(username=f"user{n}", email=email or f"user{n}@example.com", system_role=system_role)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_tenant(db):
    async def _make_tenant(slug: str, owner: User | None = None, plan: str | None = None, subdomain: str | None = None):
        return await tenant_service.create_tenant(
            name=slug.title(),
            slug=slug,
            created_by_id=owner.id if owner else None,
            db=db,
            plan=plan,
            subdomain=subdomain,
        )

    return _make_tenant


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User, **extra: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}
        headers.update(extra)
        return headers

    return _auth_headers


# ── DNS fakes ─────────────────────────────────────────────────────────────────


class FakeTxtResolver:
    """In-memory TXT records; names listed in ``timeouts`` time out."""

    def __init__(self, records: dict[str, list[str]] | None = None, timeouts: set[str] | None = None):
        self.records = records if records is not None else {}
        self.timeouts = timeouts if timeouts is not None else set()
        self.queries: list[str] = []
        self.opened = 0
        self.closed = 0

    async def resolve_txt(self, name: str) -> list[str]:
        self.queries.append(name)
        if name in self.timeouts:
            raise DnsLookupTimeoutError(name, 5.0)
        return list(self.records.get(name, []))

    def factory(self):
        @asynccontextmanager
        async def _open():
            self.opened += 1
            try:
                yield self
            finally:
                self.closed += 1

        return _open


@pytest.fixture
def fake_dns() -> FakeTxtResolver:
    return FakeTxtResolver()
