from __future__ import annotations
import asyncio
import inspect
import json
import logging
from typing import Awaitable, Callable, List, Union

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db import SessionLocal
from ..domain.schemas.inventory import AvailabilityOut, RoomOut, StatsOut, TagOut
from ..models import Registrant, Room, Tag
from ..redis_client import redis, INVENTORY_CHANNEL
from ..repos import rooms as rooms_repo
from ..repos import tags as tags_repo
from .selection import gender_pool

log = logging.getLogger("dormalloc.availability")

Callback = Callable[[list], Union[None, Awaitable[None]]]


async def load_available_rooms(db: AsyncSession, gender: str, *, allow_cross_gender: bool = False) -> List[RoomOut]:
    # same filter the allocator uses: gender pool and at least one free bed
    rooms = await rooms_repo.list_available(db, genders=gender_pool(gender, allow_cross_gender))
    rooms.sort(key=lambda r: r.room_number)
    return [RoomOut.model_validate(r) for r in rooms]


async def load_available_tags(db: AsyncSession) -> List[TagOut]:
    return [TagOut(id=tag_id, tag_number=number) for tag_id, number in await tags_repo.list_unassigned(db)]


async def availability_summary(db: AsyncSession, gender: str, *, allow_cross_gender: bool = False) -> AvailabilityOut:
    rooms = await load_available_rooms(db, gender, allow_cross_gender=allow_cross_gender)
    tags = await load_available_tags(db)
    beds = sum(r.available_beds for r in rooms)
    return AvailabilityOut(
        gender=gender,
        has_available_rooms=beds > 0,
        has_available_tags=bool(tags),
        available_bed_count=beds,
        available_tag_count=len(tags),
        rooms=rooms,
        tags=tags,
    )


async def registration_stats(db: AsyncSession) -> StatsOut:
    room_row = (
        await db.execute(
            select(
                sa.func.count(Room.id),
                sa.func.coalesce(sa.func.sum(Room.total_beds), 0),
                sa.func.coalesce(sa.func.sum(Room.available_beds), 0),
                sa.func.count(Room.id).filter(Room.gender == "Male"),
                sa.func.count(Room.id).filter(Room.gender == "Female"),
            )
        )
    ).one()
    tag_row = (
        await db.execute(
            select(
                sa.func.count(Tag.id),
                sa.func.count(Tag.id).filter(Tag.is_assigned.is_(True)),
            )
        )
    ).one()
    reg_row = (
        await db.execute(
            select(
                sa.func.count(Registrant.id),
                sa.func.count(Registrant.id).filter(Registrant.gender == "Male"),
                sa.func.count(Registrant.id).filter(Registrant.gender == "Female"),
                sa.func.count(Registrant.id).filter(Registrant.room_status == "pending"),
                sa.func.count(Registrant.id).filter(Registrant.tag_status == "pending"),
            )
        )
    ).one()

    total_rooms, total_beds, available_beds, male_rooms, female_rooms = (int(x) for x in room_row)
    total_tags, assigned_tags = (int(x) for x in tag_row)
    total_regs, male_regs, female_regs, pending_rooms, pending_tags = (int(x) for x in reg_row)
    return StatsOut(
        total_registrants=total_regs,
        total_rooms=total_rooms,
        total_tags=total_tags,
        total_beds=total_beds,
        available_beds=available_beds,
        occupied_beds=total_beds - available_beds,
        available_tags=total_tags - assigned_tags,
        assigned_tags=assigned_tags,
        male_rooms=male_rooms,
        female_rooms=female_rooms,
        male_registrants=male_regs,
        female_registrants=female_regs,
        pending_rooms=pending_rooms,
        pending_tags=pending_tags,
    )


async def _call(cb: Callback, value: list) -> None:
    res = cb(value)
    if inspect.isawaitable(res):
        await res


def _resources(raw) -> set:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", "ignore")
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        # unknown payload: refresh everything
        return {"rooms", "tags"}
    return set(payload.get("resources") or ("rooms", "tags"))


async def subscribe_availability(
    gender: str,
    on_rooms_changed: Callback,
    on_tags_changed: Callback,
    *,
    allow_cross_gender: bool = False,
    session_factory: async_sessionmaker = SessionLocal,
    poll_timeout: float = 1.0,
) -> Callable[[], Awaitable[None]]:
    """
    Live availability feed for a registration form.

    Pushes the current rooms/tags snapshot, then re-queries whenever an
    inventory event arrives on the pub/sub channel. Returns an awaitable
    `unsubscribe()` that stops the feed.
    """
    async def push(which: set) -> None:
        async with session_factory() as db:
            if "rooms" in which:
                await _call(on_rooms_changed, await load_available_rooms(db, gender, allow_cross_gender=allow_cross_gender))
            if "tags" in which:
                await _call(on_tags_changed, await load_available_tags(db))

    pubsub = redis.pubsub()
    await pubsub.subscribe(INVENTORY_CHANNEL)
    try:
        await push({"rooms", "tags"})
    except Exception:
        await pubsub.unsubscribe(INVENTORY_CHANNEL)
        await pubsub.aclose()
        raise

    async def listen() -> None:
        while True:
            msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=poll_timeout)
            if not msg or msg.get("type") != "message":
                await asyncio.sleep(0)
                continue
            try:
                await push(_resources(msg["data"]))
            except Exception:
                log.exception("availability refresh failed for %s", gender)

    task = asyncio.create_task(listen())

    async def unsubscribe() -> None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await pubsub.unsubscribe(INVENTORY_CHANNEL)
        await pubsub.aclose()

    return unsubscribe
