import asyncio
import json

import pytest

import dormalloc.services.availability as availability
from dormalloc.domain.schemas.inventory import RoomIn
from dormalloc.services.inventory_import import default_bed_numbers, import_rooms, import_tags
from dormalloc.services.retry import allocate
from tests.conftest import add_room, add_tags, person, room_by_number

pytestmark = pytest.mark.asyncio


def test_room_input_normalizes_and_checks_beds():
    room = RoomIn(wing=" East ", room_number=101, gender="male", total_beds=2)
    assert (room.wing, room.room_number, room.gender) == ("East", "101", "Male")
    with pytest.raises(ValueError):
        RoomIn(wing="E", room_number="1", gender="Male", total_beds=2, bed_numbers=["a"])
    with pytest.raises(ValueError):
        RoomIn(wing="E", room_number="1", gender="Male", total_beds=2, bed_numbers=["a", "a"])


def test_default_bed_numbers():
    assert default_bed_numbers(3) == ["001", "002", "003"]
    assert default_bed_numbers(2, vip=True) == ["VIP001", "VIP002"]


async def test_room_import_skips_duplicates(db):
    first = await import_rooms(db, [RoomIn(wing="A", room_number="1", gender="Male", total_beds=2)])
    second = await import_rooms(
        db,
        [
            RoomIn(wing="A", room_number="1", gender="Male", total_beds=4),
            RoomIn(wing="A", room_number="2", gender="Female", total_beds=3),
            RoomIn(wing="A", room_number="2", gender="Female", total_beds=3),
        ],
    )
    assert first.created == 1
    assert (second.created, second.skipped) == (1, ["1", "2"])
    room = await room_by_number("2")
    assert room.available_beds == room.total_beds == 3
    assert room.bed_numbers == ["001", "002", "003"]
    # the duplicate did not overwrite the first import
    assert (await room_by_number("1")).total_beds == 2


async def test_tag_import_skips_duplicates(db):
    await import_tags(db, ["1", "2"])
    report = await import_tags(db, ["2", "3", "3", " "])
    assert (report.created, report.skipped) == (1, ["2", "3"])


async def test_availability_summary_and_stats(db):
    await add_room(db, "M1", beds=2)
    await add_room(db, "F1", gender="Female", beds=3)
    await add_tags(db, "1", "2")
    await allocate(person("One"))
    await allocate(person("Two"))
    await allocate(person("Three"))  # room-pending and tag-pending

    async with availability.SessionLocal() as s:
        male = await availability.availability_summary(s, "Male")
        female = await availability.availability_summary(s, "Female")
        cross = await availability.availability_summary(s, "Male", allow_cross_gender=True)
        stats = await availability.registration_stats(s)

    assert (male.available_bed_count, male.has_available_rooms, male.available_tag_count) == (0, False, 0)
    assert female.available_bed_count == 3 and [r.room_number for r in female.rooms] == ["F1"]
    assert cross.available_bed_count == 3
    assert stats.total_registrants == 3 and stats.male_registrants == 3
    assert (stats.total_beds, stats.available_beds, stats.occupied_beds) == (5, 3, 2)
    assert (stats.total_tags, stats.assigned_tags, stats.available_tags) == (2, 2, 0)
    assert (stats.pending_rooms, stats.pending_tags) == (1, 1)
    assert (stats.male_rooms, stats.female_rooms) == (1, 1)


class FakePubSub:
    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.subscribed = set()
        self.closed = False

    async def subscribe(self, channel):
        self.subscribed.add(channel)

    async def unsubscribe(self, channel):
        self.subscribed.discard(channel)

    async def get_message(self, ignore_subscribe_messages=True, timeout=1.0):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=0.05)
        except asyncio.TimeoutError:
            return None

    async def aclose(self):
        self.closed = True


class FakePubSubRedis:
    def __init__(self):
        self.ps = FakePubSub()

    def pubsub(self):
        return self.ps


async def test_subscribe_pushes_snapshot_then_updates(db, monkeypatch):
    fake = FakePubSubRedis()
    monkeypatch.setattr(availability, "redis", fake)
    await add_room(db, "A", beds=1)
    await add_tags(db, "5")

    rooms_seen, tags_seen = [], []
    got_update = asyncio.Event()

    async def on_rooms(rooms):
        rooms_seen.append([r.room_number for r in rooms])
        if len(rooms_seen) > 1:
            got_update.set()

    unsubscribe = await availability.subscribe_availability(
        "Male", on_rooms, lambda tags: tags_seen.append([t.tag_number for t in tags])
    )
    assert rooms_seen == [["A"]] and tags_seen == [["5"]]
    assert "inventory" in fake.ps.subscribed

    await allocate(person("Taker"))
    await fake.ps.queue.put({"type": "message", "data": json.dumps({"type": "room_assigned", "resources": ["rooms"]})})
    await asyncio.wait_for(got_update.wait(), timeout=2)

    assert rooms_seen[-1] == []
    assert tags_seen == [["5"]]  # a rooms-only event leaves tags alone

    await unsubscribe()
    assert fake.ps.closed and not fake.ps.subscribed


async def test_subscribe_closes_pubsub_when_first_snapshot_fails(db, monkeypatch):
    fake = FakePubSubRedis()
    monkeypatch.setattr(availability, "redis", fake)

    def on_rooms(rooms):
        raise RuntimeError("form went away")

    with pytest.raises(RuntimeError):
        await availability.subscribe_availability("Male", on_rooms, lambda tags: None)

    assert fake.ps.closed and not fake.ps.subscribed
