from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db import SessionLocal
from ..domain.errors import AllocationError, RegistrantInvalid, RegistrantNotFound
from ..domain.schemas.registration import RegistrantEditIn
from ..models import Registrant
from ..repos import registrants as registrants_repo
from .allocator import pick_room, take_room
from .release import give_back_room
from .retry import RetriesExhausted, run_with_retry
from .selection import gender_pool
from .sweep_queue import request_sweep
from .tx import begin_serializable_tx

log = logging.getLogger("dormalloc.edit")

_IDENTITY_FIELDS = ("first_name", "surname", "middle_name", "phone", "email")


@dataclass
class EditOutcome:
    success: bool
    registrant: Optional[Registrant] = None
    room_changed: bool = False
    freed_room_number: Optional[str] = None
    error: Optional[str] = None


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def edit_once(db: AsyncSession, registrant_id: uuid.UUID, changes: RegistrantEditIn) -> EditOutcome:
    """
    Apply identity changes. A gender change moves the registrant out of their
    room and into the best room of the new gender (or room-pending); the tag
    stays where it is.
    """
    updates = changes.model_dump(exclude_unset=True, exclude_none=True)

    await begin_serializable_tx(db)
    try:
        reg = await registrants_repo.get_by_id(db, registrant_id, for_update=True)
        if reg is None:
            raise RegistrantNotFound("registrant not found")

        now = _now_utc()
        for name in _IDENTITY_FIELDS:
            if name in updates:
                value = updates[name].strip()
                if name != "middle_name" and not value:
                    raise RegistrantInvalid(f"Invalid user data: {name} cannot be blank")
                setattr(reg, name, value)

        room_changed = False
        freed = None
        new_gender = updates.get("gender")
        if new_gender and new_gender != reg.gender:
            freed = await give_back_room(db, reg)
            reg.gender = new_gender
            reg.room_number = None
            reg.wing = None
            reg.bed_number = None
            reg.room_status = "pending"
            await db.flush()

            room = await pick_room(db, pool=gender_pool(new_gender), is_vip=reg.is_vip)
            if room is not None:
                await take_room(db, reg, room, now=now)
            room_changed = True

        reg.updated_at = now
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return EditOutcome(success=True, registrant=reg, room_changed=room_changed, freed_room_number=freed)


async def edit(
    registrant_id: uuid.UUID,
    changes: RegistrantEditIn,
    *,
    session_factory: async_sessionmaker = SessionLocal,
) -> EditOutcome:
    try:
        outcome = await run_with_retry(
            lambda db: edit_once(db, registrant_id, changes),
            label="edit",
            session_factory=session_factory,
        )
    except AllocationError as e:
        return EditOutcome(success=False, error=str(e))
    except RetriesExhausted as e:
        return EditOutcome(success=False, error=str(e.last))
    except Exception as e:
        log.exception("edit failed for %s", registrant_id)
        return EditOutcome(success=False, error=f"Edit failed: {e}")

    if outcome.freed_room_number:
        await request_sweep("registrant_gender_changed")
    return outcome
