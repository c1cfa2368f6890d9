"""rooms, tags, registrants, events_outbox

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "rooms",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("wing", sa.Text(), nullable=False),
        sa.Column("room_number", sa.Text(), nullable=False),
        sa.Column("gender", sa.Text(), nullable=False),
        sa.Column("total_beds", sa.Integer(), nullable=False),
        sa.Column("available_beds", sa.Integer(), nullable=False),
        sa.Column("bed_numbers", sa.JSON(), nullable=True),
        sa.Column("is_vip_room", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_rooms"),
        sa.UniqueConstraint("room_number", name="uq_rooms_room_number"),
        sa.CheckConstraint("total_beds > 0", name="ck_rooms_rooms_total_beds_pos"),
        sa.CheckConstraint(
            "available_beds >= 0 AND available_beds <= total_beds", name="ck_rooms_rooms_available_range"
        ),
        sa.CheckConstraint("gender in ('Male','Female')", name="ck_rooms_rooms_gender"),
    )
    op.create_index("ix_rooms_gender_available", "rooms", ["gender", "available_beds"])

    op.create_table(
        "tags",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tag_number", sa.Text(), nullable=False),
        sa.Column("is_assigned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("assigned_user_id", sa.Uuid(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_tags"),
        sa.UniqueConstraint("tag_number", name="uq_tags_tag_number"),
    )
    op.create_index("ix_tags_is_assigned", "tags", ["is_assigned"])

    op.create_table(
        "registrants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("surname", sa.Text(), nullable=False),
        sa.Column("middle_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("dob", sa.Text(), nullable=False, server_default=""),
        sa.Column("gender", sa.Text(), nullable=False),
        sa.Column("phone", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("nin", sa.Text(), nullable=False, server_default=""),
        sa.Column("state_of_origin", sa.Text(), nullable=False, server_default=""),
        sa.Column("lga", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_vip", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("room_number", sa.Text(), nullable=True),
        sa.Column("bed_number", sa.Text(), nullable=True),
        sa.Column("wing", sa.Text(), nullable=True),
        sa.Column("room_status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("tag_number", sa.Text(), nullable=True),
        sa.Column("tag_status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_registrants"),
        sa.UniqueConstraint("tag_number", name="uq_registrants_tag_number"),
        sa.CheckConstraint("gender in ('Male','Female')", name="ck_registrants_registrants_gender"),
        sa.CheckConstraint("room_status in ('assigned','pending')", name="ck_registrants_registrants_room_status"),
        sa.CheckConstraint("tag_status in ('assigned','pending')", name="ck_registrants_registrants_tag_status"),
    )
    # oldest-pending-first scans by the sweeper
    op.create_index("ix_registrants_room_pending", "registrants", ["room_status", "gender", "created_at"])
    op.create_index("ix_registrants_tag_pending", "registrants", ["tag_status", "created_at"])
    op.create_index("ix_registrants_room_number", "registrants", ["room_number"])

    op.create_table(
        "events_outbox",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("channel", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_events_outbox"),
    )
    # Fast scan of unsent, ready events
    op.create_index(
        "ix_outbox_ready",
        "events_outbox",
        ["available_at", "id"],
        unique=False,
        postgresql_where=sa.text("sent_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("ix_outbox_ready", table_name="events_outbox")
    op.drop_table("events_outbox")
    op.drop_index("ix_registrants_room_number", table_name="registrants")
    op.drop_index("ix_registrants_tag_pending", table_name="registrants")
    op.drop_index("ix_registrants_room_pending", table_name="registrants")
    op.drop_table("registrants")
    op.drop_index("ix_tags_is_assigned", table_name="tags")
    op.drop_table("tags")
    op.drop_index("ix_rooms_gender_available", table_name="rooms")
    op.drop_table("rooms")
