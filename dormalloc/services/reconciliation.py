from __future__ import annotations
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db import SessionLocal
from ..domain.errors import AllocationConflict, is_contention_error
from ..models import GENDERS
from ..observability.metrics import PENDING_GAUGE, PENDING_RESOLVED, SWEEP_DURATION
from ..repos import registrants as registrants_repo
from ..repos import rooms as rooms_repo
from ..repos import tags as tags_repo
from .allocator import take_room, take_tag
from .selection import rank_rooms, vip_allows
from .tx import begin_serializable_tx

log = logging.getLogger("dormalloc.sweep")


@dataclass
class SweepReport:
    rooms_assigned: int = 0
    tags_assigned: int = 0
    skipped: int = 0
    still_pending_rooms: dict = field(default_factory=dict)  # gender -> count
    still_pending_tags: int = 0

    @property
    def writes(self) -> int:
        return self.rooms_assigned + self.tags_assigned


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def _assign_room(db: AsyncSession, registrant_id: uuid.UUID, room_id: uuid.UUID) -> Optional[bool]:
    """One pairing, re-validated under lock.

    False when the room lost its free beds, None when the registrant is gone,
    no longer pending, or no longer fits the room (gender or VIP changed).
    """
    await begin_serializable_tx(db)
    try:
        reg = await registrants_repo.get_by_id(db, registrant_id, for_update=True)
        if reg is None or reg.room_status != "pending":
            await db.rollback()
            return None
        room = await rooms_repo.get_for_update(db, room_id)
        if room is None:
            await db.rollback()
            return False
        if room.gender != reg.gender or not vip_allows(room, reg.is_vip):
            await db.rollback()
            return None
        if room.available_beds <= 0:
            await db.rollback()
            return False
        await take_room(db, reg, room, now=_now_utc())
        await db.commit()
        return True
    except Exception:
        await db.rollback()
        raise


async def _assign_tag(db: AsyncSession, registrant_id: uuid.UUID, tag_id: uuid.UUID) -> Optional[bool]:
    await begin_serializable_tx(db)
    try:
        reg = await registrants_repo.get_by_id(db, registrant_id, for_update=True)
        if reg is None or reg.tag_status != "pending":
            await db.rollback()
            return None
        tag = await tags_repo.get_for_update(db, tag_id)
        if tag is None or tag.is_assigned:
            await db.rollback()
            return False
        await take_tag(db, reg, tag, now=_now_utc())
        await db.commit()
        return True
    except Exception:
        await db.rollback()
        raise


async def _try_pairing(label: str, pairing, session_factory: async_sessionmaker) -> Optional[bool]:
    """Run one pairing in its own session. Contention counts as a lost resource."""
    try:
        async with session_factory() as db:
            return await pairing(db)
    except AllocationConflict as e:
        log.info("%s skipped: %s", label, e)
        return False
    except Exception as e:
        if not is_contention_error(e):
            raise
        log.info("%s skipped on contention: %s", label, e)
        return False


async def sweep_pending_rooms(
    gender: str,
    *,
    session_factory: async_sessionmaker = SessionLocal,
    report: Optional[SweepReport] = None,
) -> SweepReport:
    """
    Give free beds of `gender` rooms to that gender's pending registrants,
    oldest first, most-occupied room first. Stays inside one gender pool.
    """
    report = report or SweepReport()

    async with session_factory() as db:
        pending = await registrants_repo.list_room_pending(db, gender=gender)
        if not pending:
            report.still_pending_rooms[gender] = 0
            return report
        rooms = await rooms_repo.list_available(db, genders=(gender,))
        # snapshot what we need; the pairing transactions re-read under lock
        waiting = [(r.id, r.is_vip) for r in pending]
        ranked = rank_rooms(rooms, is_vip=True)
        local = [(room.id, room.room_number, room.is_vip_room, room.available_beds) for room in ranked]

    free = {room_id: beds for room_id, _, _, beds in local}
    left = 0
    for reg_id, is_vip in waiting:
        choice = None
        for room_id, room_number, is_vip_room, _ in _candidates(local, is_vip):
            if free[room_id] > 0:
                choice = (room_id, room_number)
                break
        if choice is None:
            left += 1
            continue

        room_id, room_number = choice
        ok = await _try_pairing(
            f"room {room_number} -> {reg_id}",
            lambda db: _assign_room(db, reg_id, room_id),
            session_factory,
        )
        if ok is None:
            continue
        if ok:
            free[room_id] -= 1
            report.rooms_assigned += 1
            PENDING_RESOLVED.labels(resource="room").inc()
        else:
            # counter changed underneath; stop offering this room this pass
            free[room_id] = 0
            report.skipped += 1
            left += 1

    report.still_pending_rooms[gender] = left
    PENDING_GAUGE.labels(resource=f"room_{gender.lower()}").set(left)
    return report


def _candidates(local, is_vip: bool):
    # VIPs see reserved rooms first; everyone else never sees them
    if is_vip:
        return sorted(local, key=lambda r: not r[2])
    return [r for r in local if not r[2]]


async def sweep_pending_tags(
    *,
    session_factory: async_sessionmaker = SessionLocal,
    report: Optional[SweepReport] = None,
) -> SweepReport:
    """Pair tag-pending registrants (oldest first) 1:1 with free tags in numeric order."""
    report = report or SweepReport()

    async with session_factory() as db:
        pending = [r.id for r in await registrants_repo.list_tag_pending(db)]
        free = await tags_repo.list_unassigned(db) if pending else []

    next_free = 0
    left = 0
    for reg_id in pending:
        if next_free >= len(free):
            left += 1
            continue
        tag_id, tag_number = free[next_free]
        ok = await _try_pairing(
            f"tag {tag_number} -> {reg_id}",
            lambda db: _assign_tag(db, reg_id, tag_id),
            session_factory,
        )
        if ok is None:
            # registrant moved on; offer the same tag to the next one
            continue
        next_free += 1
        if ok:
            report.tags_assigned += 1
            PENDING_RESOLVED.labels(resource="tag").inc()
        else:
            report.skipped += 1
            left += 1

    report.still_pending_tags = left
    PENDING_GAUGE.labels(resource="tag").set(left)
    return report


async def run_sweep(*, session_factory: async_sessionmaker = SessionLocal) -> SweepReport:
    """One full reconciliation pass: rooms per gender, then tags."""
    t0 = time.perf_counter()
    report = SweepReport()
    for gender in GENDERS:
        await sweep_pending_rooms(gender, session_factory=session_factory, report=report)
    await sweep_pending_tags(session_factory=session_factory, report=report)
    SWEEP_DURATION.observe(time.perf_counter() - t0)

    log.info(
        "sweep done: rooms=%d tags=%d skipped=%d pending_rooms=%s pending_tags=%d",
        report.rooms_assigned, report.tags_assigned, report.skipped,
        report.still_pending_rooms, report.still_pending_tags,
    )
    return report
