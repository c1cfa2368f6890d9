from __future__ import annotations
import uuid
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Room, Registrant


async def get_for_update(db: AsyncSession, room_id: uuid.UUID) -> Optional[Room]:
    # populate_existing: a row read earlier in this session must be re-read, not served from the identity map
    res = await db.execute(
        select(Room)
        .where(Room.id == room_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_by_number(db: AsyncSession, room_number: str, *, for_update: bool = False) -> Optional[Room]:
    q = select(Room).where(Room.room_number == room_number)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def list_available(db: AsyncSession, *, genders: Sequence[str]) -> list[Room]:
    """Rooms of the given genders with at least one free bed (unordered; callers rank)."""
    res = await db.execute(
        select(Room).where(Room.gender.in_(list(genders)), Room.available_beds > 0)
    )
    return list(res.scalars().all())


async def existing_numbers(db: AsyncSession, numbers: Iterable[str]) -> set[str]:
    numbers = list(numbers)
    if not numbers:
        return set()
    res = await db.execute(select(Room.room_number).where(Room.room_number.in_(numbers)))
    return set(res.scalars().all())


async def occupied_bed_labels(db: AsyncSession, room_number: str) -> set[str]:
    res = await db.execute(
        select(Registrant.bed_number).where(
            Registrant.room_number == room_number,
            Registrant.bed_number.is_not(None),
        )
    )
    return set(res.scalars().all())


async def take_bed(db: AsyncSession, room_id: uuid.UUID, *, now: datetime) -> bool:
    """Compare-and-swap decrement. False when the room has no free bed left."""
    res = await db.execute(
        update(Room)
        .where(Room.id == room_id, Room.available_beds > 0)
        .values(available_beds=Room.available_beds - 1, last_assigned_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def return_bed(db: AsyncSession, room_id: uuid.UUID) -> bool:
    """Guarded increment. False when the counter is already at total_beds."""
    res = await db.execute(
        update(Room)
        .where(Room.id == room_id, Room.available_beds < Room.total_beds)
        .values(available_beds=Room.available_beds + 1)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
