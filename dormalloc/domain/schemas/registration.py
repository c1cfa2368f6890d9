import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Literal, Annotated

Gender = Literal["Male", "Female"]


class RegistrantIn(BaseModel):
    first_name: str
    surname: str
    middle_name: str = ""
    dob: str = ""
    gender: Gender
    phone: str
    email: str
    nin: str = ""
    state_of_origin: str = ""
    lga: str = ""
    is_vip: bool = False

    # optional picks made in the registration UI
    selected_room_id: Optional[uuid.UUID] = None
    selected_tag_id: Optional[uuid.UUID] = None
    allow_cross_gender: bool = False

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, v):
        # accept 'male' / 'FEMALE' from imports and forms
        if isinstance(v, str):
            return v.strip().capitalize()
        return v

    @field_validator("nin")
    @classmethod
    def nin_digits(cls, v: str):
        v = v.strip()
        if v and (len(v) != 11 or not v.isdigit()):
            raise ValueError("nin must be exactly 11 digits")
        return v


class RegistrantEditIn(BaseModel):
    first_name: Optional[str] = None
    surname: Optional[str] = None
    middle_name: Optional[str] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, v):
        if isinstance(v, str):
            return v.strip().capitalize()
        return v


class RegistrantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    surname: str
    middle_name: str
    gender: str
    phone: str
    email: str
    is_vip: bool
    room_number: Optional[str] = None
    bed_number: Optional[str] = None
    wing: Optional[str] = None
    room_status: Literal["assigned", "pending"]
    tag_number: Optional[str] = None
    tag_status: Literal["assigned", "pending"]
    created_at: Optional[datetime] = None


class RoomAssignmentOut(BaseModel):
    room_id: uuid.UUID
    room_number: str
    wing: str
    bed_number: Optional[str] = None


class TagAssignmentOut(BaseModel):
    tag_id: uuid.UUID
    tag_number: str


class AllocationOut(BaseModel):
    success: bool
    registrant: Optional[RegistrantOut] = None
    room_assignment: Optional[RoomAssignmentOut] = None
    tag_assignment: Optional[TagAssignmentOut] = None
    pending_room: bool = False
    pending_tag: bool = False
    error: Optional[str] = None


class ReleaseOut(BaseModel):
    success: bool
    registrant_id: uuid.UUID
    freed_room_number: Optional[str] = None
    freed_tag_number: Optional[str] = None
    error: Optional[str] = None


class EditOut(BaseModel):
    success: bool
    registrant: Optional[RegistrantOut] = None
    room_changed: bool = False
    error: Optional[str] = None


class SweepRequestOut(BaseModel):
    enqueued: bool
    reason: Annotated[str, Field(max_length=120)]
