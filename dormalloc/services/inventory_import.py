from __future__ import annotations
import logging
from typing import Iterable, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.schemas.inventory import ImportReportOut, RoomIn
from ..models import Room, Tag
from ..repos import rooms as rooms_repo
from ..repos import tags as tags_repo
from ..repos.outbox import add_inventory_event
from .sweep_queue import request_sweep

log = logging.getLogger("dormalloc.import")


def default_bed_numbers(total_beds: int, *, vip: bool = False) -> List[str]:
    prefix = "VIP" if vip else ""
    return [f"{prefix}{i:03d}" for i in range(1, total_beds + 1)]


async def import_rooms(db: AsyncSession, rooms: Sequence[RoomIn]) -> ImportReportOut:
    """
    Insert new rooms with every bed free. Room numbers already in the store,
    or repeated within the batch, are skipped and reported.
    """
    existing = await rooms_repo.existing_numbers(db, (r.room_number for r in rooms))
    seen: set[str] = set()
    skipped: list[str] = []
    created: list[Room] = []

    for item in rooms:
        if item.room_number in existing or item.room_number in seen:
            skipped.append(item.room_number)
            continue
        seen.add(item.room_number)
        room = Room(
            wing=item.wing,
            room_number=item.room_number,
            gender=item.gender,
            total_beds=item.total_beds,
            available_beds=item.total_beds,
            bed_numbers=item.bed_numbers or default_bed_numbers(item.total_beds, vip=item.reserved),
            is_vip_room=item.reserved,
        )
        db.add(room)
        created.append(room)

    if created:
        await db.flush()
        await add_inventory_event(
            db, "rooms_imported", resources=["rooms"],
            room_numbers=[r.room_number for r in created],
        )
    await db.commit()

    if skipped:
        log.info("room import skipped %d duplicates: %s", len(skipped), ", ".join(skipped))
    if created:
        await request_sweep("rooms_imported")
    return ImportReportOut(created=len(created), skipped=skipped)


async def import_tags(db: AsyncSession, tag_numbers: Iterable[str]) -> ImportReportOut:
    numbers = [str(n).strip() for n in tag_numbers if str(n).strip()]
    existing = await tags_repo.existing_numbers(db, numbers)
    seen: set[str] = set()
    skipped: list[str] = []
    created = 0

    for number in numbers:
        if number in existing or number in seen:
            skipped.append(number)
            continue
        seen.add(number)
        db.add(Tag(tag_number=number, is_assigned=False))
        created += 1

    if created:
        await db.flush()
        await add_inventory_event(db, "tags_imported", resources=["tags"], count=created)
    await db.commit()

    if skipped:
        log.info("tag import skipped %d duplicates: %s", len(skipped), ", ".join(skipped))
    if created:
        await request_sweep("tags_imported")
    return ImportReportOut(created=created, skipped=skipped)
