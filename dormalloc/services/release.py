from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db import SessionLocal
from ..domain.errors import AllocationError, RegistrantNotFound
from ..models import Registrant
from ..observability.metrics import RELEASES
from ..repos import registrants as registrants_repo
from ..repos import rooms as rooms_repo
from ..repos import tags as tags_repo
from ..repos.outbox import add_inventory_event
from .retry import RetriesExhausted, run_with_retry
from .sweep_queue import request_sweep
from .tx import begin_serializable_tx

log = logging.getLogger("dormalloc.release")


@dataclass
class ReleaseOutcome:
    success: bool
    registrant_id: uuid.UUID
    freed_room_number: Optional[str] = None
    freed_tag_number: Optional[str] = None
    error: Optional[str] = None


async def give_back_room(db: AsyncSession, reg: Registrant) -> Optional[str]:
    """Return the registrant's bed to its room. Returns the room number when a bed was freed."""
    if not reg.room_number:
        return None
    room = await rooms_repo.get_by_number(db, reg.room_number, for_update=True)
    if room is None:
        log.warning("release %s: room %s no longer exists, skipping bed return", reg.id, reg.room_number)
        return None
    if not await rooms_repo.return_bed(db, room.id):
        log.warning(
            "release %s: room %s already has %d/%d beds free, skipping bed return",
            reg.id, room.room_number, room.available_beds, room.total_beds,
        )
        return None
    await db.refresh(room)
    await add_inventory_event(
        db, "bed_released", resources=["rooms"],
        room_id=room.id, room_number=room.room_number, available_beds=room.available_beds,
    )
    return room.room_number


async def give_back_tag(db: AsyncSession, reg: Registrant) -> Optional[str]:
    if not reg.tag_number:
        return None
    tag = await tags_repo.get_by_number(db, reg.tag_number, for_update=True)
    if tag is None:
        log.warning("release %s: tag %s no longer exists, skipping", reg.id, reg.tag_number)
        return None
    if not await tags_repo.unclaim(db, tag.id, user_id=reg.id):
        log.warning("release %s: tag %s is not held by this registrant, skipping", reg.id, tag.tag_number)
        return None
    await add_inventory_event(db, "tag_released", resources=["tags"], tag_id=tag.id, tag_number=tag.tag_number)
    return tag.tag_number


async def release_once(db: AsyncSession, registrant_id: uuid.UUID) -> ReleaseOutcome:
    """
    Delete a registrant and hand their bed and tag back, in one transaction.
    A half that points at missing inventory is logged and skipped.
    """
    await begin_serializable_tx(db)
    try:
        reg = await registrants_repo.get_by_id(db, registrant_id, for_update=True)
        if reg is None:
            raise RegistrantNotFound("registrant not found")

        freed_room = await give_back_room(db, reg)
        freed_tag = await give_back_tag(db, reg)

        await db.delete(reg)
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return ReleaseOutcome(
        success=True,
        registrant_id=registrant_id,
        freed_room_number=freed_room,
        freed_tag_number=freed_tag,
    )


async def release(
    registrant_id: uuid.UUID,
    *,
    session_factory: async_sessionmaker = SessionLocal,
) -> ReleaseOutcome:
    """Release with contention retries; never raises."""
    try:
        outcome = await run_with_retry(
            lambda db: release_once(db, registrant_id),
            label="release",
            session_factory=session_factory,
        )
    except AllocationError as e:
        return ReleaseOutcome(success=False, registrant_id=registrant_id, error=str(e))
    except RetriesExhausted as e:
        return ReleaseOutcome(success=False, registrant_id=registrant_id, error=str(e.last))
    except Exception as e:
        log.exception("release failed for %s", registrant_id)
        return ReleaseOutcome(success=False, registrant_id=registrant_id, error=f"Release failed: {e}")

    RELEASES.inc()
    await request_sweep("registrant_released")
    return outcome
