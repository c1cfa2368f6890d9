from __future__ import annotations
import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...db import get_db
from ...domain.schemas.registration import (
    AllocationOut,
    EditOut,
    RegistrantEditIn,
    RegistrantIn,
    RegistrantOut,
    ReleaseOut,
    RoomAssignmentOut,
    TagAssignmentOut,
)
from ...repos import registrants as registrants_repo
from ...services.allocator import AllocationOutcome
from ...services.registrant_edit import edit
from ...services.release import release
from ...services.retry import allocate

router = APIRouter(tags=["registrations"])

# failure reason -> HTTP status
_ALLOC_STATUS = {
    "invalid": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "selection_invalid": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "unavailable": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "exhausted": status.HTTP_409_CONFLICT,
}


def _allocation_out(o: AllocationOutcome) -> AllocationOut:
    return AllocationOut(
        success=o.success,
        registrant=RegistrantOut.model_validate(o.registrant) if o.registrant else None,
        room_assignment=RoomAssignmentOut(**asdict(o.room_assignment)) if o.room_assignment else None,
        tag_assignment=TagAssignmentOut(**asdict(o.tag_assignment)) if o.tag_assignment else None,
        pending_room=o.pending_room,
        pending_tag=o.pending_tag,
        error=o.error,
    )


@router.post("/registrations", response_model=AllocationOut, status_code=status.HTTP_201_CREATED)
async def register(payload: RegistrantIn):
    outcome = await allocate(payload)
    if not outcome.success:
        code = _ALLOC_STATUS.get(outcome.reason, status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=code, detail=outcome.error)
    return _allocation_out(outcome)


@router.get("/registrants/{registrant_id}", response_model=RegistrantOut)
async def get_registrant(registrant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    reg = await registrants_repo.get_by_id(db, registrant_id)
    if reg is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="registrant not found")
    return RegistrantOut.model_validate(reg)


@router.delete("/registrants/{registrant_id}", response_model=ReleaseOut)
async def delete_registrant(registrant_id: uuid.UUID):
    outcome = await release(registrant_id)
    if not outcome.success:
        code = status.HTTP_404_NOT_FOUND if outcome.error == "registrant not found" else status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=outcome.error)
    return ReleaseOut(**asdict(outcome))


@router.patch("/registrants/{registrant_id}", response_model=EditOut)
async def edit_registrant(registrant_id: uuid.UUID, payload: RegistrantEditIn):
    outcome = await edit(registrant_id, payload)
    if not outcome.success:
        if outcome.error == "registrant not found":
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=outcome.error)
        if outcome.error and outcome.error.startswith("Invalid user data"):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=outcome.error)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=outcome.error)
    return EditOut(
        success=True,
        registrant=RegistrantOut.model_validate(outcome.registrant),
        room_changed=outcome.room_changed,
    )
