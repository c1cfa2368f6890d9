import os
import tempfile
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Point the app at a throwaway SQLite file before anything imports dormalloc.db
_DB_PATH = os.path.join(tempfile.gettempdir(), f"dormalloc-test-{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

from dormalloc.db import engine, SessionLocal  # noqa: E402
from dormalloc.models import Base  # noqa: E402
from dormalloc.domain.schemas.inventory import RoomIn  # noqa: E402
from dormalloc.domain.schemas.registration import RegistrantIn  # noqa: E402
from dormalloc.services import inventory_import  # noqa: E402


class FakeRedis:
    """Records stream writes so tests can assert on sweep triggers."""

    def __init__(self):
        self.streams: dict[str, list[dict]] = {}

    async def xadd(self, name, fields, **kwargs):
        self.streams.setdefault(name, []).append(dict(fields))
        return f"{len(self.streams[name])}-0"

    def reasons(self, stream):
        return [f.get("reason") for f in self.streams.get(stream, [])]


# Fresh schema per test, on the SAME loop as the test function.
# Dispose the engine afterwards so no pooled connection crosses event loops.
@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def _db_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


# Keep Redis out of the tests: sweep triggers land in a recorder instead.
@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    import dormalloc.services.sweep_queue as sweep_queue

    fake = FakeRedis()
    monkeypatch.setattr(sweep_queue, "redis", fake)
    yield fake


# No real backoff waits in tests.
@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    import dormalloc.services.retry as retry

    recorded: list[float] = []

    async def _fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(retry, "_sleep", _fake_sleep)
    yield recorded


@pytest_asyncio.fixture
async def db():
    async with SessionLocal() as s:
        yield s


@pytest_asyncio.fixture
async def client():
    from dormalloc.main import create_app

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------- helpers ----------
def person(first: str, gender: str = "Male", **kw) -> RegistrantIn:
    data = dict(
        first_name=first,
        surname="Test",
        gender=gender,
        phone="08030000000",
        email=f"{first.lower()}@example.com",
    )
    data.update(kw)
    return RegistrantIn(**data)


async def add_room(db, number: str, *, gender: str = "Male", beds: int = 2, wing: str = "A", **kw) -> uuid.UUID:
    await inventory_import.import_rooms(
        db, [RoomIn(wing=wing, room_number=number, gender=gender, total_beds=beds, **kw)]
    )
    from dormalloc.repos import rooms as rooms_repo

    room = await rooms_repo.get_by_number(db, number)
    await db.commit()
    return room.id


async def add_tags(db, *numbers: str) -> None:
    await inventory_import.import_tags(db, numbers)


async def room_by_number(number: str):
    from dormalloc.repos import rooms as rooms_repo

    # short-lived session: SQLite holds the write lock for the whole transaction
    async with SessionLocal() as s:
        return await rooms_repo.get_by_number(s, number)


async def tag_by_number(number: str):
    from dormalloc.repos import tags as tags_repo

    async with SessionLocal() as s:
        return await tags_repo.get_by_number(s, number)


async def registrant(registrant_id: uuid.UUID):
    from dormalloc.repos import registrants as registrants_repo

    async with SessionLocal() as s:
        return await registrants_repo.get_by_id(s, registrant_id)
