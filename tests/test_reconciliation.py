import pytest
from sqlalchemy import func, select, update

from dormalloc.db import SessionLocal
from dormalloc.models import EventsOutbox, Registrant
from dormalloc.redis_client import SWEEP_STREAM
from dormalloc.services import reconciliation
from dormalloc.services.reconciliation import run_sweep, sweep_pending_rooms, sweep_pending_tags
from dormalloc.services.retry import allocate
from tests.conftest import add_room, add_tags, person, registrant, room_by_number

pytestmark = pytest.mark.asyncio


async def _outbox_count() -> int:
    async with SessionLocal() as s:
        return (await s.execute(select(func.count(EventsOutbox.id)))).scalar_one()


async def test_import_enqueues_sweep(db, fake_redis):
    await add_room(db, "A", beds=1)
    await add_tags(db, "1")
    assert fake_redis.reasons(SWEEP_STREAM) == ["rooms_imported", "tags_imported"]


async def test_oldest_pending_served_first(db):
    older = await allocate(person("Older"))
    newer = await allocate(person("Newer"))
    await add_room(db, "A", beds=1)

    report = await sweep_pending_rooms("Male")

    assert report.rooms_assigned == 1
    assert report.still_pending_rooms["Male"] == 1
    assert (await registrant(older.registrant.id)).room_status == "assigned"
    assert (await registrant(newer.registrant.id)).room_status == "pending"


async def test_sweep_stays_within_gender(db):
    pending = await allocate(person("Her", gender="Female"))
    await add_room(db, "M", beds=2)

    report = await run_sweep()

    assert report.rooms_assigned == 0
    assert (await registrant(pending.registrant.id)).room_status == "pending"
    assert (await room_by_number("M")).available_beds == 2


async def test_sweep_never_puts_regular_registrant_in_vip_room(db):
    regular = await allocate(person("Regular"))
    vip = await allocate(person("Boss", is_vip=True))
    await add_room(db, "V", beds=2, reserved=True)

    await sweep_pending_rooms("Male")

    assert (await registrant(regular.registrant.id)).room_status == "pending"
    assert (await registrant(vip.registrant.id)).room_number == "V"


async def test_pending_tags_follow_numeric_order(db):
    a = await allocate(person("A1"))
    b = await allocate(person("B1"))
    await add_tags(db, "10", "9")

    report = await sweep_pending_tags()

    assert report.tags_assigned == 2
    assert (await registrant(a.registrant.id)).tag_number == "9"
    assert (await registrant(b.registrant.id)).tag_number == "10"


async def test_second_sweep_writes_nothing(db):
    await allocate(person("P1"))
    await allocate(person("P2"))
    await allocate(person("P3"))
    await add_room(db, "A", beds=2)
    await add_tags(db, "1")

    first = await run_sweep()
    before = await _outbox_count()
    second = await run_sweep()

    assert first.writes == 3
    assert second.writes == 0
    assert await _outbox_count() == before


async def test_sweep_with_nothing_pending_is_a_noop(db):
    await add_room(db, "A", beds=2)
    before = await _outbox_count()
    report = await run_sweep()
    assert report.writes == 0 and report.skipped == 0
    assert await _outbox_count() == before


async def test_registrant_changing_gender_mid_sweep_keeps_room_on_offer(db, monkeypatch):
    moved = await allocate(person("Moved"))
    stayed = await allocate(person("Stayed"))
    await add_room(db, "A", beds=2)

    real_assign = reconciliation._assign_room

    async def assign_after_gender_change(session, registrant_id, room_id):
        if registrant_id == moved.registrant.id:
            async with SessionLocal() as s:
                await s.execute(update(Registrant).where(Registrant.id == registrant_id).values(gender="Female"))
                await s.commit()
        return await real_assign(session, registrant_id, room_id)

    monkeypatch.setattr(reconciliation, "_assign_room", assign_after_gender_change)

    report = await sweep_pending_rooms("Male")

    assert report.rooms_assigned == 1
    assert report.skipped == 0
    assert (await registrant(moved.registrant.id)).room_status == "pending"
    assert (await registrant(stayed.registrant.id)).room_number == "A"
    assert (await room_by_number("A")).available_beds == 1
