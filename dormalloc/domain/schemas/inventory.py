import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Literal, Annotated


class RoomIn(BaseModel):
    wing: Annotated[str, Field(min_length=1)]
    room_number: Annotated[str, Field(min_length=1)]
    gender: Literal["Male", "Female"]
    total_beds: Annotated[int, Field(gt=0)]
    bed_numbers: Optional[List[str]] = None
    reserved: bool = False  # VIP room

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, v):
        if isinstance(v, str):
            return v.strip().capitalize()
        return v

    @field_validator("wing", "room_number", mode="before")
    @classmethod
    def strip_text(cls, v):
        # spreadsheets hand room numbers over as ints
        if isinstance(v, (int, float)):
            v = str(int(v))
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def beds_match_total(self):
        if self.bed_numbers is not None:
            labels = [b.strip() for b in self.bed_numbers if b and b.strip()]
            if len(labels) != self.total_beds:
                raise ValueError("bed_numbers must have exactly total_beds entries")
            if len(set(labels)) != len(labels):
                raise ValueError("bed_numbers must be unique within a room")
            self.bed_numbers = labels
        return self


class RoomsImportIn(BaseModel):
    rooms: List[RoomIn]


class TagsImportIn(BaseModel):
    tag_numbers: List[Annotated[str, Field(min_length=1)]]


class ImportReportOut(BaseModel):
    created: int
    skipped: List[str] = Field(default_factory=list)


class RoomOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    wing: str
    room_number: str
    gender: str
    total_beds: int
    available_beds: int
    is_vip_room: bool


class TagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tag_number: str


class AvailabilityOut(BaseModel):
    gender: str
    has_available_rooms: bool
    has_available_tags: bool
    available_bed_count: int
    available_tag_count: int
    rooms: List[RoomOut]
    tags: List[TagOut]


class StatsOut(BaseModel):
    total_registrants: int
    total_rooms: int
    total_tags: int
    total_beds: int
    available_beds: int
    occupied_beds: int
    available_tags: int
    assigned_tags: int
    male_rooms: int
    female_rooms: int
    male_registrants: int
    female_registrants: int
    pending_rooms: int
    pending_tags: int
