from __future__ import annotations
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from ...db import get_db
from ...domain.schemas.inventory import (
    AvailabilityOut,
    ImportReportOut,
    RoomsImportIn,
    StatsOut,
    TagsImportIn,
)
from ...domain.schemas.registration import SweepRequestOut
from ...services.availability import availability_summary, registration_stats
from ...services.inventory_import import import_rooms, import_tags
from ...services.sweep_queue import enqueue_sweep

router = APIRouter(tags=["inventory"])


@router.post("/admin/rooms/import", response_model=ImportReportOut)
async def rooms_import(payload: RoomsImportIn, db: AsyncSession = Depends(get_db)):
    return await import_rooms(db, payload.rooms)


@router.post("/admin/tags/import", response_model=ImportReportOut)
async def tags_import(payload: TagsImportIn, db: AsyncSession = Depends(get_db)):
    return await import_tags(db, payload.tag_numbers)


@router.post("/admin/sweep", response_model=SweepRequestOut, status_code=status.HTTP_202_ACCEPTED)
async def request_sweep(reason: str = Query(default="manual", max_length=120)):
    try:
        await enqueue_sweep(reason)
    except RedisError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"sweep queue unavailable: {e}")
    return SweepRequestOut(enqueued=True, reason=reason)


@router.get("/availability", response_model=AvailabilityOut)
async def availability(
    gender: Literal["Male", "Female"],
    allow_cross_gender: bool = False,
    db: AsyncSession = Depends(get_db),
):
    return await availability_summary(db, gender, allow_cross_gender=allow_cross_gender)


@router.get("/stats", response_model=StatsOut)
async def stats(db: AsyncSession = Depends(get_db)):
    return await registration_stats(db)
