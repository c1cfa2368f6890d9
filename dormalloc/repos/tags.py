from __future__ import annotations
import re
import uuid
from datetime import datetime
from typing import Iterable, Optional, Tuple, Union

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Tag

_DIGIT_RUNS = re.compile(r"(\d+)")


def tag_sort_key(tag_number: str) -> Tuple[Union[int, str], ...]:
    """Natural order: each digit run compares as a number ("2" < "10", "1-20" < "2-1").

    re.split keeps text at even positions and digit runs at odd ones, so
    two keys never compare an int against a str.
    """
    return tuple(int(p) if i % 2 else p for i, p in enumerate(_DIGIT_RUNS.split(tag_number)))


async def get_for_update(db: AsyncSession, tag_id: uuid.UUID) -> Optional[Tag]:
    res = await db.execute(
        select(Tag)
        .where(Tag.id == tag_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_by_number(db: AsyncSession, tag_number: str, *, for_update: bool = False) -> Optional[Tag]:
    q = select(Tag).where(Tag.tag_number == tag_number)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def list_unassigned(db: AsyncSession) -> list[Tuple[uuid.UUID, str]]:
    """(id, tag_number) of every free tag, lowest tag number first."""
    res = await db.execute(select(Tag.id, Tag.tag_number).where(Tag.is_assigned.is_(False)))
    rows = [(r[0], r[1]) for r in res.all()]
    rows.sort(key=lambda r: tag_sort_key(r[1]))
    return rows


async def existing_numbers(db: AsyncSession, numbers: Iterable[str]) -> set[str]:
    numbers = list(numbers)
    if not numbers:
        return set()
    res = await db.execute(select(Tag.tag_number).where(Tag.tag_number.in_(numbers)))
    return set(res.scalars().all())


async def claim(db: AsyncSession, tag_id: uuid.UUID, *, user_id: uuid.UUID, now: datetime) -> bool:
    """Compare-and-swap: mark the tag assigned only if it is still free."""
    res = await db.execute(
        update(Tag)
        .where(Tag.id == tag_id, Tag.is_assigned.is_(False))
        .values(is_assigned=True, assigned_user_id=user_id, assigned_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def unclaim(db: AsyncSession, tag_id: uuid.UUID, *, user_id: uuid.UUID) -> bool:
    # never free a tag that another registrant holds
    res = await db.execute(
        update(Tag)
        .where(
            Tag.id == tag_id,
            Tag.is_assigned.is_(True),
            or_(Tag.assigned_user_id == user_id, Tag.assigned_user_id.is_(None)),
        )
        .values(is_assigned=False, assigned_user_id=None, assigned_at=None)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
