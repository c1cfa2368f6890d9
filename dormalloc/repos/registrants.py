from __future__ import annotations
import uuid
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ..models import Registrant


async def get_by_id(db: AsyncSession, registrant_id: uuid.UUID, *, for_update: bool = False) -> Optional[Registrant]:
    q = select(Registrant).where(Registrant.id == registrant_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def list_room_pending(db: AsyncSession, *, gender: str) -> list[Registrant]:
    # oldest pending first
    res = await db.execute(
        select(Registrant)
        .where(Registrant.room_status == "pending", Registrant.gender == gender)
        .order_by(Registrant.created_at.asc(), Registrant.id.asc())
    )
    return list(res.scalars().all())


async def list_tag_pending(db: AsyncSession) -> list[Registrant]:
    res = await db.execute(
        select(Registrant)
        .where(Registrant.tag_status == "pending")
        .order_by(Registrant.created_at.asc(), Registrant.id.asc())
    )
    return list(res.scalars().all())
