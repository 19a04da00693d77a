"""Session core schema"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_session_core"
down_revision = None
branch_labels = None
depends_on = None


ACTIVE = "status IN ('SCHEDULED', 'IN_PROGRESS')"
TEACHER_SLOT = f"{ACTIVE} AND mode <> 'ONLINE'"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    ]


def upgrade() -> None:
    op.create_table(
        "subject",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "teacher",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255)),
        *_timestamps(),
    )

    op.create_table(
        "room",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("capacity", sa.Integer()),
        sa.Column("is_virtual", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "class_group",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("subject_id", sa.Integer(), sa.ForeignKey("subject.id")),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("teacher.id")),
        *_timestamps(),
    )

    op.create_table(
        "schedule_pattern",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("class_group.id"), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("room.id")),
        sa.Column("remote_meeting_id", sa.String(length=100)),
        *_timestamps(),
        sa.CheckConstraint("end_time > start_time", name="chk_pattern_time_order"),
        sa.CheckConstraint("weekday >= 0 AND weekday <= 6", name="chk_pattern_weekday_range"),
    )
    op.create_index("ix_schedule_pattern_group_id", "schedule_pattern", ["group_id"])

    op.create_table(
        "session",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("class_group.id")),
        sa.Column("subject_id", sa.Integer(), sa.ForeignKey("subject.id")),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("teacher.id")),
        sa.Column("origin_pattern_id", sa.Integer()),
        sa.Column("origin_date", sa.Date()),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("actual_start", sa.DateTime()),
        sa.Column("actual_end", sa.DateTime()),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("room.id")),
        sa.Column("remote_meeting_id", sa.String(length=100)),
        sa.Column("original_session_id", sa.Integer()),
        sa.Column("recovery_for_session_id", sa.Integer()),
        sa.Column("cancellation_reason", sa.String(length=500)),
        sa.Column("postponement_reason", sa.String(length=500)),
        sa.Column("notes", sa.Text()),
        sa.Column("topics_covered", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("scheduled_end > scheduled_start", name="chk_session_time_order"),
        sa.UniqueConstraint(
            "origin_pattern_id", "origin_date", name="uq_session_pattern_occurrence"
        ),
    )
    for column in (
        "group_id",
        "subject_id",
        "teacher_id",
        "origin_pattern_id",
        "status",
        "scheduled_start",
        "room_id",
        "original_session_id",
        "recovery_for_session_id",
    ):
        op.create_index(f"ix_session_{column}", "session", [column])

    bind = op.get_bind()
    if bind.dialect.name not in ("sqlite", "postgresql"):
        return

    op.create_index(
        "uq_session_room_start_active",
        "session",
        ["room_id", "scheduled_start"],
        unique=True,
        sqlite_where=sa.text(ACTIVE),
        postgresql_where=sa.text(ACTIVE),
    )
    op.create_index(
        "uq_session_teacher_start_active",
        "session",
        ["teacher_id", "scheduled_start"],
        unique=True,
        sqlite_where=sa.text(TEACHER_SLOT),
        postgresql_where=sa.text(TEACHER_SLOT),
    )

    if bind.dialect.name == "postgresql":
        # Overlapping active bookings of one room or one teacher are rejected by
        # the database itself, whatever the application did before committing.
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE session ADD CONSTRAINT ex_session_room_overlap "
            "EXCLUDE USING gist (room_id WITH =, "
            "tsrange(scheduled_start, scheduled_end) WITH &&) "
            f"WHERE (room_id IS NOT NULL AND {ACTIVE})"
        )
        # Two online sessions of one subject share a key and may overlap for
        # the same teacher; every other pair gets distinct keys.
        op.execute(
            "ALTER TABLE session ADD CONSTRAINT ex_session_teacher_overlap "
            "EXCLUDE USING gist (teacher_id WITH =, "
            "tsrange(scheduled_start, scheduled_end) WITH &&, "
            "(CASE WHEN mode = 'ONLINE' AND subject_id IS NOT NULL "
            "THEN 'subject:' || subject_id::text "
            "ELSE 'session:' || id::text END) WITH <>) "
            f"WHERE (teacher_id IS NOT NULL AND {ACTIVE})"
        )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("ALTER TABLE session DROP CONSTRAINT IF EXISTS ex_session_teacher_overlap")
        op.execute("ALTER TABLE session DROP CONSTRAINT IF EXISTS ex_session_room_overlap")
    op.drop_table("session")
    op.drop_table("schedule_pattern")
    op.drop_table("class_group")
    op.drop_table("room")
    op.drop_table("teacher")
    op.drop_table("subject")
