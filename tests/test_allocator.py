import pytest
from sqlalchemy import select

from dormalloc.db import SessionLocal
from dormalloc.models import EventsOutbox
from dormalloc.services.allocator import AllocationOptions
from dormalloc.services.release import release
from dormalloc.services.reconciliation import run_sweep
from dormalloc.services.retry import allocate
from tests.conftest import add_room, add_tags, person, room_by_number, tag_by_number, registrant

pytestmark = pytest.mark.asyncio


async def test_room_a_then_pending_then_room_b_then_release(db):
    await add_room(db, "A", beds=2, bed_numbers=["001", "002"])
    await add_tags(db, "1", "2", "3")

    x = await allocate(person("X"))
    y = await allocate(person("Y"))
    z = await allocate(person("Z"))

    assert x.success and (x.room_assignment.room_number, x.room_assignment.bed_number) == ("A", "001")
    assert y.success and (y.room_assignment.room_number, y.room_assignment.bed_number) == ("A", "002")
    assert z.success and z.pending_room and not z.pending_tag
    assert z.room_assignment is None
    assert [x.tag_assignment.tag_number, y.tag_assignment.tag_number, z.tag_assignment.tag_number] == ["1", "2", "3"]
    assert (await room_by_number("A")).available_beds == 0

    # new inventory, then the sweeper places Z
    await add_room(db, "B", beds=1, wing="B")
    report = await run_sweep()
    assert report.rooms_assigned == 1
    z_row = await registrant(z.registrant.id)
    assert (z_row.room_number, z_row.bed_number, z_row.room_status) == ("B", "001", "assigned")
    assert (await room_by_number("B")).available_beds == 0

    out = await release(x.registrant.id)
    assert out.success
    assert out.freed_room_number == "A" and out.freed_tag_number == "1"
    assert (await room_by_number("A")).available_beds == 1
    tag = await tag_by_number("1")
    assert tag.is_assigned is False and tag.assigned_user_id is None
    assert await registrant(x.registrant.id) is None


async def test_tags_assigned_in_numeric_order(db):
    await add_room(db, "A", beds=3)
    await add_tags(db, "3", "10", "2")

    got = [(await allocate(person(n))).tag_assignment.tag_number for n in ("P", "Q", "R")]
    assert got == ["2", "3", "10"]


async def test_no_inventory_means_pending_not_error():
    out = await allocate(person("Solo"))
    assert out.success
    assert out.pending_room and out.pending_tag
    row = await registrant(out.registrant.id)
    assert (row.room_status, row.tag_status) == ("pending", "pending")


async def test_allow_pending_false_reports_exhaustion(db):
    await add_tags(db, "1")
    out = await allocate(person("Strict"), options=AllocationOptions(allow_pending=False))
    assert not out.success
    assert out.reason == "exhausted"
    assert "room" in out.error
    assert (await tag_by_number("1")).is_assigned is False


async def test_without_bed_labels(db):
    await add_room(db, "A", beds=2)
    out = await allocate(person("NoBed"), options=AllocationOptions(assign_bed_labels=False))
    assert out.room_assignment.room_number == "A"
    assert out.room_assignment.bed_number is None


async def test_room_of_other_gender_is_never_used(db):
    await add_room(db, "F", gender="Female", beds=2)
    out = await allocate(person("Him"))
    assert out.success and out.pending_room


async def test_cross_gender_flag_widens_male_pool(db):
    await add_room(db, "F", gender="Female", beds=2)
    out = await allocate(person("Him", allow_cross_gender=True))
    assert out.room_assignment.room_number == "F"


async def test_cross_gender_pool_prefers_fuller_room_of_either_gender(db):
    await add_room(db, "F1", gender="Female", beds=3)
    await add_room(db, "M1", beds=3)
    await allocate(person("Ada", gender="Female"))
    await allocate(person("Bola", gender="Female"))
    out = await allocate(person("Mx", allow_cross_gender=True))
    assert out.room_assignment.room_number == "F1"


async def test_fills_most_occupied_room_first(db):
    await add_room(db, "A", beds=3)
    await add_room(db, "B", beds=3)
    first = await allocate(person("One"))
    second = await allocate(person("Two"))
    assert first.room_assignment.room_number == "A"
    # A now has an occupant, so it keeps filling before B opens
    assert second.room_assignment.room_number == "A"


async def test_preselected_room_and_tag(db):
    await add_room(db, "A", beds=2)
    room_b = await add_room(db, "B", beds=2)
    await add_tags(db, "1", "7")
    tag7 = await tag_by_number("7")

    out = await allocate(person("Picky", selected_room_id=room_b, selected_tag_id=tag7.id))
    assert out.room_assignment.room_number == "B"
    assert out.tag_assignment.tag_number == "7"


async def test_preselected_full_room_is_unavailable(db):
    room = await add_room(db, "A", beds=1)
    await allocate(person("First"))
    out = await allocate(person("Second", selected_room_id=room))
    assert not out.success
    assert out.reason == "unavailable"


async def test_preselected_vip_room_rejected_for_regular_registrant(db):
    vip = await add_room(db, "V", beds=2, reserved=True)
    out = await allocate(person("Regular", selected_room_id=vip))
    assert not out.success
    assert out.reason == "selection_invalid"


async def test_vip_registrant_gets_vip_bed_label(db):
    await add_room(db, "A", beds=2)
    await add_room(db, "V", beds=2, reserved=True)
    out = await allocate(person("Boss", is_vip=True))
    assert (out.room_assignment.room_number, out.room_assignment.bed_number) == ("V", "VIP001")


async def test_assignment_writes_inventory_events(db):
    await add_room(db, "A", beds=1)
    await add_tags(db, "1")
    await allocate(person("Evt"))
    async with SessionLocal() as s:
        types = [e.payload["type"] for e in (await s.execute(select(EventsOutbox))).scalars().all()]
    assert "room_assigned" in types and "tag_assigned" in types
