"""Shared fixtures — in-memory SQLite repository, fake Redis, API client.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - Redis is replaced by an in-process fake installed in redis_client
    - Cleanup tasks scheduled by a test are awaited before its DB is dropped

Design Decisions:
    - StaticPool: all repository sessions share the one in-memory connection
    - Tracing disabled, bcrypt at minimum cost to keep the suite fast
"""

import os
import time

# Must happen before app.config is imported: settings load at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from httpx import ASGITransport, AsyncClient

import app.clients.redis_client as redis_module
from app.clients.redis_client import RedisDenylist
from app.core.accounts import AccountService
from app.core.interactions import InteractionEngine
from app.core.lifecycle import AccountLifecycleManager, drain
from app.core.tokens import TokenService
from app.database import build_engine, build_session_factory, init_db
from app.dependencies import get_repository, get_token_service
from app.main import app
from app.repository.base import EntityKind
from app.repository.sql import SqlFeedRepository

TEST_SECRET = "test-secret"


class FakeRedis:
    """The few redis.asyncio calls the denylist makes, with wall-clock TTLs."""

    def __init__(self):
        self._store: dict[str, tuple[str, float | None]] = {}

    async def ping(self):
        return True

    async def set(self, key, value, ex=None):
        expires = time.monotonic() + ex if ex else None
        self._store[key] = (value, expires)
        return True

    async def exists(self, *keys):
        return sum(1 for key in keys if self._live(key))

    async def aclose(self):
        self._store.clear()

    def _live(self, key):
        entry = self._store.get(key)
        if entry is None:
            return False
        _, expires = entry
        if expires is not None and expires <= time.monotonic():
            del self._store[key]
            return False
        return True


@pytest.fixture
async def db_engine():
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(bind=engine)
    yield engine
    # Cleanup tasks scheduled by the test must not outlive its database
    await drain()
    await engine.dispose()


@pytest.fixture
def repository(db_engine):
    return SqlFeedRepository(build_session_factory(db_engine))


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_module, "_redis", fake)
    return fake


@pytest.fixture
def tokens(fake_redis):
    return TokenService(secret=TEST_SECRET, ttl_seconds=3600, denylist=RedisDenylist())


@pytest.fixture
def interactions(repository):
    return InteractionEngine(repository)


@pytest.fixture
def accounts(repository, tokens):
    return AccountService(repository, tokens, bcrypt_rounds=4)


@pytest.fixture
def lifecycle(repository):
    return AccountLifecycleManager(repository)


@pytest.fixture
def make_user(repository):
    """Insert a user row directly; returns its id."""

    async def _make(username: str) -> str:
        user = await repository.insert(
            EntityKind.USER,
            username=username,
            email=f"{username}@example.com",
            first_name=username.capitalize(),
            last_name="Tester",
            password_hash="not-a-real-hash",
        )
        return user.user_id

    return _make


@pytest.fixture
async def client(repository, tokens):
    """FastAPI test client wired to the test repository and token service."""
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_token_service] = lambda: tokens

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Register and log in through the API; returns (user_id, auth headers)."""

    async def _signup(username: str, password: str = "secret123"):
        res = await client.post(
            "/users/register",
            json={
                "username": username,
                "email": f"{username}@example.com",
                "password": password,
                "first_name": username.capitalize(),
                "last_name": "Tester",
            },
        )
        assert res.status_code == 201, res.text
        user_id = res.json()["user_id"]

        res = await client.post(
            "/users/login",
            json={"email": f"{username}@example.com", "password": password},
        )
        assert res.status_code == 200, res.text
        return user_id, {"Authorization": f"Bearer {res.json()['access_token']}"}

    return _signup
