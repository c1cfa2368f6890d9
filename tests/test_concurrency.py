import asyncio

import pytest
from sqlalchemy import select

from dormalloc.db import SessionLocal
from dormalloc.models import Registrant, Room, Tag
from dormalloc.services.retry import allocate
from dormalloc.services.release import release
from tests.conftest import add_room, add_tags, person

pytestmark = pytest.mark.asyncio


async def _invariants():
    async with SessionLocal() as s:
        rooms = (await s.execute(select(Room))).scalars().all()
        tags = (await s.execute(select(Tag))).scalars().all()
        regs = (await s.execute(select(Registrant))).scalars().all()

    for room in rooms:
        assert 0 <= room.available_beds <= room.total_beds
        occupants = [r for r in regs if r.room_number == room.room_number]
        assert room.total_beds - room.available_beds == len(occupants)
        labels = [r.bed_number for r in occupants]
        assert len(labels) == len(set(labels))

    held = {r.tag_number for r in regs if r.tag_number}
    for tag in tags:
        assert tag.is_assigned == (tag.tag_number in held)


async def test_many_contenders_for_one_bed(db):
    await add_room(db, "A", beds=1)
    await add_tags(db, *[str(i) for i in range(1, 9)])

    outs = await asyncio.gather(*[allocate(person(f"U{i}")) for i in range(8)])

    assert all(o.success for o in outs)
    winners = [o for o in outs if o.room_assignment]
    assert len(winners) == 1
    assert sum(o.pending_room for o in outs) == 7
    # every contender still got a distinct tag
    assert len({o.tag_assignment.tag_number for o in outs}) == 8
    await _invariants()


async def test_concurrent_allocations_fill_rooms_exactly(db):
    await add_room(db, "A", beds=3)
    await add_room(db, "B", beds=2)
    await add_tags(db, "1", "2", "3")

    outs = await asyncio.gather(*[allocate(person(f"U{i}")) for i in range(7)])

    assert sum(1 for o in outs if o.room_assignment) == 5
    assert sum(1 for o in outs if o.tag_assignment) == 3
    await _invariants()


async def test_interleaved_allocate_and_release_keep_counters_consistent(db):
    await add_room(db, "A", beds=4)
    await add_tags(db, "1", "2", "3", "4")
    first = await asyncio.gather(*[allocate(person(f"U{i}")) for i in range(4)])

    await asyncio.gather(
        release(first[0].registrant.id),
        release(first[1].registrant.id),
        allocate(person("Late1")),
        allocate(person("Late2")),
    )
    await _invariants()
