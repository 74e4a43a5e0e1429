"""
Test infrastructure for the Publivote API.

Strategy
--------
- SQLite in-memory via aiosqlite, shared through StaticPool so every
  session sees the same database.  Tables are created before and dropped
  after each test.
- ``get_db`` and ``get_services`` are overridden so requests use the test
  session factory and per-test service instances.
- Redis is never connected: a fresh ``CacheManager`` without ``connect()``
  is a no-op cache, so every read hits the database.
- ``MemoryObjectStore`` stands in for the object store; keys listed in
  ``fail_keys`` make ``delete`` raise, to exercise cascade failure paths.
- ``world`` seeds users, a city, a publication type and tags through
  committed transactions; tests never hold two sessions open at once on
  the shared connection.
"""
from dataclasses import dataclass

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from publivote.cache import CacheManager
from publivote.config import Settings
from publivote.database import Base, get_db, transaction
from publivote.dependencies import Services, build_services, get_services
from publivote.exceptions import ObjectStoreFailure
from publivote.main import app
from publivote.middleware import install_query_counter
from publivote.models import City, Publication, PublicationType, Tag, User

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with transaction(async_session_test) as session:
        yield session


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class MemoryObjectStore:
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.delete_calls: list[str] = []
        self.fail_keys: set[str] = set()
        self.fail_uploads = False

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        if self.fail_uploads:
            raise ObjectStoreFailure(f"Upload failed for {key}", [key])
        self.objects[key] = (data, content_type)

    async def get_stream(self, key: str):
        data, _ = self.objects[key]
        yield data

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def get_signed_url(self, key: str, expires_in: int) -> str:
        return f"memory://{key}?expires_in={expires_in}"

    async def delete(self, key: str) -> None:
        self.delete_calls.append(key)
        if key in self.fail_keys:
            raise ObjectStoreFailure(f"Delete failed for {key}", [key])
        self.objects.pop(key, None)


class StatementRecorder:
    """Collects every SQL statement sent through the test engine."""

    def __init__(self) -> None:
        self.statements: list[str] = []

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append(statement)

    def touching(self, table: str) -> list[str]:
        return [s for s in self.statements if table in s]


@dataclass
class World:
    author_id: int
    voter_ids: list[int]
    admin_id: int
    city_id: int
    publication_type_id: int
    other_type_id: int
    tag_ids: dict[str, int]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_test


@pytest.fixture
def object_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def cache() -> CacheManager:
    return CacheManager("redis://unused")


@pytest.fixture
def services(object_store, cache) -> Services:
    return build_services(async_session_test, object_store, cache, Settings(STRICT_OBJECT_DELETE=False))


@pytest.fixture
def statements():
    recorder = StatementRecorder()
    event.listen(engine_test.sync_engine, "before_cursor_execute", recorder)
    yield recorder
    event.remove(engine_test.sync_engine, "before_cursor_execute", recorder)


@pytest_asyncio.fixture
async def world() -> World:
    async with transaction(async_session_test) as db:
        author = User(username="author", email="author@example.com", first_name="Ada")
        voters = [User(username=f"voter{i}", email=f"voter{i}@example.com") for i in range(3)]
        admin = User(username="admin", email="admin@example.com", role_id=2)
        city = City(name="Lima")
        news = PublicationType(name="news", description="News items")
        event_type = PublicationType(name="event")
        tags = [Tag(name=name) for name in ("python", "music", "sports")]
        db.add_all([author, *voters, admin, city, news, event_type, *tags])
        await db.flush()
        return World(
            author_id=author.id,
            voter_ids=[v.id for v in voters],
            admin_id=admin.id,
            city_id=city.id,
            publication_type_id=news.id,
            other_type_id=event_type.id,
            tag_ids={t.name: t.id for t in tags},
        )


@pytest_asyncio.fixture
async def async_client(services) -> AsyncClient:
    app.dependency_overrides[get_services] = lambda: services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_services, None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def count_rows(model_or_table, **where) -> int:
    """Count rows of an ORM model or Core table matching column equality filters."""
    columns = getattr(model_or_table, "c", None)
    async with transaction(async_session_test) as db:
        q = select(func.count()).select_from(model_or_table)
        for name, value in where.items():
            column = columns[name] if columns is not None else getattr(model_or_table, name)
            q = q.where(column == value)
        return (await db.execute(q)).scalar_one()


async def publication_count() -> int:
    return await count_rows(Publication)
