import uuid
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatcore.database import get_db, make_get_db
from chatcore.main import app
from chatcore.models import Base
from chatcore.models.contact import CONTACT_ACCEPTED
from chatcore.store.sql import SqlRelationshipStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._ops = []

    def zremrangebyscore(self, key, low, high):
        self._ops.append(("zremrangebyscore", key, low, high))

    def zadd(self, key, mapping):
        self._ops.append(("zadd", key, mapping))

    def zcard(self, key):
        self._ops.append(("zcard", key))

    def expire(self, key, seconds):
        self._ops.append(("expire", key, seconds))

    async def execute(self):
        results = []
        for op, key, *args in self._ops:
            zset = self._redis._zsets.setdefault(key, {})
            if op == "zremrangebyscore":
                low, high = args
                stale = [m for m, score in zset.items() if low <= score <= high]
                for member in stale:
                    del zset[member]
                results.append(len(stale))
            elif op == "zadd":
                zset.update(args[0])
                results.append(len(args[0]))
            elif op == "zcard":
                results.append(len(zset))
            else:
                self._redis._ttls[key] = args[0]
                results.append(True)
        self._ops = []
        return results


class FakeRedis:
    """In-memory Redis mock for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._zsets: dict[str, dict] = {}
        self.published: list[tuple[str, str]] = []

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._store[key] = str(value)
        if ex:
            self._ttls[key] = ex

    async def expire(self, key: str, seconds: int) -> None:
        self._ttls[key] = seconds

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


def enable_savepoints(engine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINT rollbacks behave as on Postgres."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> SqlRelationshipStore:
    return SqlRelationshipStore(db_session)


@pytest.fixture
def alice() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def bob() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def carol() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def friends(store: SqlRelationshipStore, alice, bob):
    """alice and bob with an accepted contact pair."""
    await store.upsert_contact_pair(alice, bob, CONTACT_ACCEPTED, can_chat=True)
    await store.db.commit()
    return alice, bob


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def as_user():
    """Request headers identifying the caller."""

    def _headers(user_id: uuid.UUID) -> dict[str, str]:
        return {"X-User-Id": str(user_id)}

    return _headers


@pytest.fixture
async def client(session_factory, fake_redis) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_db] = make_get_db(session_factory)
    app.state.redis = fake_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.redis = None
