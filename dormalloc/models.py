from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


GENDERS = ("Male", "Female")
ASSIGNMENT_STATES = ("assigned", "pending")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Base & naming ----------
class Base(DeclarativeBase):
    # Keep index/constraint names stable for cleaner migrations
    metadata = sa.MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


# ---------- ROOMS ----------
class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    wing: Mapped[str] = mapped_column(sa.Text, nullable=False)
    room_number: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    gender: Mapped[str] = mapped_column(sa.Text, nullable=False)  # 'Male' | 'Female'

    total_beds: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # mutable counter; only touched by allocator / sweeper / edit / release transactions
    available_beds: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # ordered bed labels, len == total_beds when present
    bed_numbers: Mapped[Optional[List[str]]] = mapped_column(sa.JSON, nullable=True)
    is_vip_room: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())

    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()
    )

    __table_args__ = (
        CheckConstraint("total_beds > 0", name="rooms_total_beds_pos"),
        CheckConstraint("available_beds >= 0 AND available_beds <= total_beds", name="rooms_available_range"),
        CheckConstraint("gender in ('Male','Female')", name="rooms_gender"),
        Index("ix_rooms_gender_available", "gender", "available_beds"),
    )

    @property
    def occupied_beds(self) -> int:
        return self.total_beds - self.available_beds


# ---------- TAGS ----------
class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    tag_number: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    is_assigned: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())
    assigned_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid, nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )

    __table_args__ = (
        Index("ix_tags_is_assigned", "is_assigned"),
    )


# ---------- REGISTRANTS ----------
class Registrant(Base):
    __tablename__ = "registrants"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    first_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    surname: Mapped[str] = mapped_column(sa.Text, nullable=False)
    middle_name: Mapped[str] = mapped_column(sa.Text, nullable=False, default="", server_default="")
    dob: Mapped[str] = mapped_column(sa.Text, nullable=False, default="", server_default="")
    gender: Mapped[str] = mapped_column(sa.Text, nullable=False)
    phone: Mapped[str] = mapped_column(sa.Text, nullable=False)
    email: Mapped[str] = mapped_column(sa.Text, nullable=False)
    nin: Mapped[str] = mapped_column(sa.Text, nullable=False, default="", server_default="")
    state_of_origin: Mapped[str] = mapped_column(sa.Text, nullable=False, default="", server_default="")
    lga: Mapped[str] = mapped_column(sa.Text, nullable=False, default="", server_default="")
    is_vip: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())

    # null room fields => pending
    room_number: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    bed_number: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    wing: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    room_status: Mapped[str] = mapped_column(
        sa.Text,
        nullable=False,
        default="pending",
        server_default=sa.text("'pending'"),
    )  # 'assigned' | 'pending'

    tag_number: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True, unique=True)
    tag_status: Mapped[str] = mapped_column(
        sa.Text,
        nullable=False,
        default="pending",
        server_default=sa.text("'pending'"),
    )  # 'assigned' | 'pending'

    # python-side default keeps sub-second ordering for "oldest pending first"
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, server_default=sa.func.now(), onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("gender in ('Male','Female')", name="registrants_gender"),
        CheckConstraint("room_status in ('assigned','pending')", name="registrants_room_status"),
        CheckConstraint("tag_status in ('assigned','pending')", name="registrants_tag_status"),
        Index("ix_registrants_room_pending", "room_status", "gender", "created_at"),
        Index("ix_registrants_tag_pending", "tag_status", "created_at"),
        Index("ix_registrants_room_number", "room_number"),
    )


# ---------- EVENTS OUTBOX ----------
class EventsOutbox(Base):
    __tablename__ = "events_outbox"

    id: Mapped[int] = mapped_column(sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True)
    channel: Mapped[str] = mapped_column(sa.Text, nullable=False)
    payload: Mapped[dict] = mapped_column(sa.JSON, nullable=False)
    available_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    sent_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default=sa.text("0"))
    error: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())

    __table_args__ = (
        # fast scan of unsent, ready events
        Index("ix_outbox_ready", "available_at", "id", postgresql_where=sa.text("sent_at IS NULL")),
    )
