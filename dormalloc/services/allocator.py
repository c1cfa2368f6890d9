# dormalloc/services/allocator.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import (
    AllocationConflict,
    RegistrantInvalid,
    SelectionInvalid,
    SelectionUnavailable,
    InventoryExhausted,
)
from ..domain.schemas.registration import RegistrantIn
from ..models import GENDERS, Registrant, Room, Tag
from ..repos import rooms as rooms_repo
from ..repos import tags as tags_repo
from ..repos.outbox import add_inventory_event
from .selection import gender_pool, next_bed_label, rank_rooms, vip_allows
from .tx import begin_serializable_tx

_REQUIRED_FIELDS = ("first_name", "surname", "email", "phone")


@dataclass
class RoomAssignment:
    room_id: uuid.UUID
    room_number: str
    wing: str
    bed_number: Optional[str]


@dataclass
class TagAssignment:
    tag_id: uuid.UUID
    tag_number: str


@dataclass
class AllocationOptions:
    """Per-call allocation behavior.

    allow_pending=False turns "nothing free" into InventoryExhausted instead of
    a pending registration; assign_bed_labels=False hands out rooms without a
    specific bed.
    """
    allow_pending: bool = True
    assign_bed_labels: bool = True


@dataclass
class AllocationOutcome:
    success: bool
    registrant: Optional[Registrant] = None
    room_assignment: Optional[RoomAssignment] = None
    tag_assignment: Optional[TagAssignment] = None
    pending_room: bool = False
    pending_tag: bool = False
    error: Optional[str] = None
    # invalid | selection_invalid | unavailable | exhausted | conflict | error
    reason: Optional[str] = None

    @classmethod
    def failed(cls, error: str, reason: str) -> "AllocationOutcome":
        return cls(success=False, error=error, reason=reason)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def validate_registrant(registrant: RegistrantIn) -> None:
    missing = [f for f in _REQUIRED_FIELDS if not (getattr(registrant, f, None) or "").strip()]
    if missing:
        raise RegistrantInvalid(f"Invalid user data: missing required fields: {', '.join(missing)}")
    if registrant.gender not in GENDERS:
        raise RegistrantInvalid(f"Invalid user data: unknown gender {registrant.gender!r}")
    if "@" not in registrant.email:
        raise RegistrantInvalid("Invalid user data: malformed email")


async def take_room(
    db: AsyncSession,
    reg: Registrant,
    room: Room,
    *,
    now: datetime,
    label_beds: bool = True,
) -> RoomAssignment:
    """Consume one bed of a locked, freshly read room for `reg`.

    Raises AllocationConflict when the counter was consumed underneath us.
    """
    if room.available_beds <= 0:
        raise AllocationConflict(f"room {room.room_number} just became full")

    bed = None
    if label_beds:
        occupied = await rooms_repo.occupied_bed_labels(db, room.room_number)
        bed = next_bed_label(room, occupied)

    if not await rooms_repo.take_bed(db, room.id, now=now):
        raise AllocationConflict(f"room {room.room_number} just became full")
    await db.refresh(room)

    reg.room_number = room.room_number
    reg.wing = room.wing
    reg.bed_number = bed
    reg.room_status = "assigned"
    reg.updated_at = now

    await add_inventory_event(
        db, "room_assigned", resources=["rooms"],
        room_id=room.id, room_number=room.room_number, registrant_id=reg.id, available_beds=room.available_beds,
    )
    return RoomAssignment(room_id=room.id, room_number=room.room_number, wing=room.wing, bed_number=bed)


async def take_tag(db: AsyncSession, reg: Registrant, tag: Tag, *, now: datetime) -> TagAssignment:
    """Claim a locked, freshly read tag for `reg` (compare-and-swap on is_assigned)."""
    if tag.is_assigned or not await tags_repo.claim(db, tag.id, user_id=reg.id, now=now):
        raise AllocationConflict(f"tag {tag.tag_number} was just assigned")

    reg.tag_number = tag.tag_number
    reg.tag_status = "assigned"
    reg.updated_at = now

    await add_inventory_event(
        db, "tag_assigned", resources=["tags"],
        tag_id=tag.id, tag_number=tag.tag_number, registrant_id=reg.id,
    )
    return TagAssignment(tag_id=tag.id, tag_number=tag.tag_number)


async def pick_room(
    db: AsyncSession,
    *,
    pool: tuple[str, ...],
    is_vip: bool,
) -> Optional[Room]:
    """Best room by completion priority, re-read under lock. None => pending."""
    candidates = await rooms_repo.list_available(db, genders=pool)
    ranked = rank_rooms(candidates, is_vip=is_vip)
    if not ranked:
        return None
    hint = ranked[0]
    # the ranked list is only a hint; the locked re-read decides
    room = await rooms_repo.get_for_update(db, hint.id)
    if room is None or room.available_beds <= 0:
        raise AllocationConflict(f"room {hint.room_number} was taken by a concurrent registration")
    return room


async def _resolve_room(db: AsyncSession, registrant: RegistrantIn) -> Optional[Room]:
    pool = gender_pool(registrant.gender, registrant.allow_cross_gender)

    if registrant.selected_room_id is None:
        return await pick_room(db, pool=pool, is_vip=registrant.is_vip)

    room = await rooms_repo.get_for_update(db, registrant.selected_room_id)
    if room is None:
        raise SelectionInvalid("selected room does not exist")
    if room.gender not in pool:
        raise SelectionInvalid(f"selected room {room.room_number} is reserved for {room.gender} registrants")
    if not vip_allows(room, registrant.is_vip):
        raise SelectionInvalid(f"selected room {room.room_number} is reserved for VIP registrants")
    if room.available_beds <= 0:
        raise SelectionUnavailable(f"selected room {room.room_number} is full")
    return room


async def _resolve_tag(db: AsyncSession, registrant: RegistrantIn) -> Optional[Tag]:
    if registrant.selected_tag_id is not None:
        tag = await tags_repo.get_for_update(db, registrant.selected_tag_id)
        if tag is None:
            raise SelectionInvalid("selected tag does not exist")
        if tag.is_assigned:
            raise SelectionUnavailable(f"selected tag {tag.tag_number} is already assigned")
        return tag

    free = await tags_repo.list_unassigned(db)
    if not free:
        return None
    tag_id, tag_number = free[0]
    tag = await tags_repo.get_for_update(db, tag_id)
    if tag is None or tag.is_assigned:
        raise AllocationConflict(f"tag {tag_number} was taken by a concurrent registration")
    return tag


async def allocate_once(
    db: AsyncSession,
    registrant: RegistrantIn,
    *,
    options: Optional[AllocationOptions] = None,
) -> AllocationOutcome:
    """
    One allocation attempt: reserve a bed and a tag for a new registrant.

    Steps, all inside one SERIALIZABLE transaction (see begin_serializable_tx):
      1) validate registrant fields (before touching inventory)
      2) room: explicit pick, or highest-occupancy room of the gender pool; none -> pending
      3) tag: explicit pick, or lowest numeric tag number; none -> pending
      4) re-read both under lock and consume them with compare-and-swap updates
      5) insert the registrant with whatever was assigned

    Raises AllocationConflict (retryable) when a candidate is consumed by a
    concurrent transaction; nothing is written in that case.
    """
    options = options or AllocationOptions()
    validate_registrant(registrant)

    await begin_serializable_tx(db)
    try:
        now = _now_utc()
        room = await _resolve_room(db, registrant)
        tag = await _resolve_tag(db, registrant)

        if not options.allow_pending and (room is None or tag is None):
            what = " and ".join(x for x, v in (("room", room), ("tag", tag)) if v is None)
            raise InventoryExhausted(f"No available {what} for {registrant.gender} registrants")

        reg = Registrant(
            first_name=registrant.first_name.strip(),
            surname=registrant.surname.strip(),
            middle_name=registrant.middle_name.strip(),
            dob=registrant.dob,
            gender=registrant.gender,
            phone=registrant.phone.strip(),
            email=registrant.email.strip(),
            nin=registrant.nin,
            state_of_origin=registrant.state_of_origin.strip(),
            lga=registrant.lga.strip(),
            is_vip=registrant.is_vip,
            room_status="pending",
            tag_status="pending",
            created_at=now,
            updated_at=now,
        )
        db.add(reg)
        await db.flush()  # need reg.id for tag.assigned_user_id

        room_assignment = None
        if room is not None:
            room_assignment = await take_room(db, reg, room, now=now, label_beds=options.assign_bed_labels)

        tag_assignment = None
        if tag is not None:
            tag_assignment = await take_tag(db, reg, tag, now=now)

        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return AllocationOutcome(
        success=True,
        registrant=reg,
        room_assignment=room_assignment,
        tag_assignment=tag_assignment,
        pending_room=room_assignment is None,
        pending_tag=tag_assignment is None,
    )
