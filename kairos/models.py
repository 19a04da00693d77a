from __future__ import annotations

import enum
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, Session as OrmSession, mapped_column, relationship, validates

from .errors import InvalidTransition, MissingRequiredField, ValidationError
from .extensions import db


WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class SessionType(str, enum.Enum):
    REGULAR = "REGULAR"
    RECOVERY = "RECOVERY"
    EXTRA = "EXTRA"


class SessionMode(str, enum.Enum):
    IN_PERSON = "IN_PERSON"
    DUAL = "DUAL"
    ONLINE = "ONLINE"

    @property
    def requires_physical_room(self) -> bool:
        return self in (SessionMode.IN_PERSON, SessionMode.DUAL)

    @property
    def requires_remote_meeting(self) -> bool:
        return self in (SessionMode.ONLINE, SessionMode.DUAL)


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    POSTPONED = "POSTPONED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.POSTPONED, SessionStatus.CANCELLED}
)
# Statuses that occupy a room or a teacher.
ACTIVE_STATUSES = frozenset({SessionStatus.SCHEDULED, SessionStatus.IN_PROGRESS})
RECOVERABLE_STATUSES = frozenset({SessionStatus.POSTPONED, SessionStatus.CANCELLED})


def coerce_enum(enum_type, value, field: str):
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown {field} {value!r}", field=field) from exc


_ACTIVE_SQL = "status IN ('SCHEDULED', 'IN_PROGRESS')"
# Online sessions are left to the availability checks: a teacher may stream
# several online sessions of one subject at once.
_TEACHER_SLOT_SQL = f"{_ACTIVE_SQL} AND mode <> 'ONLINE'"


class TimeStampedModel:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now
    )


class Subject(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)

    groups: Mapped[List["ClassGroup"]] = relationship(back_populates="subject")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Subject<{self.id} {self.name}>"


class Teacher(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(255))

    groups: Mapped[List["ClassGroup"]] = relationship(back_populates="teacher")
    sessions: Mapped[List["Session"]] = relationship(back_populates="teacher")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Teacher<{self.id} {self.name}>"


class Room(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=20)
    is_virtual: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    sessions: Mapped[List["Session"]] = relationship(back_populates="room")

    @property
    def is_physical(self) -> bool:
        return not self.is_virtual

    def __repr__(self) -> str:  # pragma: no cover
        return f"Room<{self.id} {self.name}>"


class ClassGroup(db.Model, TimeStampedModel):
    __tablename__ = "class_group"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    subject_id: Mapped[Optional[int]] = mapped_column(ForeignKey("subject.id"))
    teacher_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teacher.id"))

    subject: Mapped[Optional[Subject]] = relationship(back_populates="groups")
    teacher: Mapped[Optional[Teacher]] = relationship(back_populates="groups")
    patterns: Mapped[List["SchedulePattern"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="SchedulePattern.weekday",
    )
    sessions: Mapped[List["Session"]] = relationship(back_populates="group")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"ClassGroup<{self.id} {self.name}>"


class SchedulePattern(db.Model, TimeStampedModel):
    """Recurring weekly slot of a class group.

    Patterns are owned by the scheduling catalogue; the session core only reads
    them. ``weekday`` follows :meth:`datetime.date.weekday` (0 = Monday).
    """

    __tablename__ = "schedule_pattern"

    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("class_group.id"), nullable=False, index=True)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    room_id: Mapped[Optional[int]] = mapped_column(ForeignKey("room.id"))
    remote_meeting_id: Mapped[Optional[str]] = mapped_column(String(100))

    group: Mapped[ClassGroup] = relationship(back_populates="patterns")
    room: Mapped[Optional[Room]] = relationship()

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="chk_pattern_time_order"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="chk_pattern_weekday_range"),
    )

    @property
    def delivery_mode(self) -> SessionMode:
        if self.room is None or self.room.is_virtual:
            return SessionMode.ONLINE
        if self.remote_meeting_id:
            return SessionMode.DUAL
        return SessionMode.IN_PERSON

    def occurrence_on(self, day: date) -> tuple[datetime, datetime]:
        return datetime.combine(day, self.start_time), datetime.combine(day, self.end_time)

    @property
    def label(self) -> str:
        return (
            f"{WEEKDAY_NAMES[self.weekday]} "
            f"{self.start_time:%H:%M}-{self.end_time:%H:%M}"
        )

    def __repr__(self) -> str:  # pragma: no cover
        return f"SchedulePattern<{self.id} group {self.group_id} {self.label}>"


class Session(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[Optional[int]] = mapped_column(ForeignKey("class_group.id"), index=True)
    subject_id: Mapped[Optional[int]] = mapped_column(ForeignKey("subject.id"), index=True)
    teacher_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teacher.id"), index=True)
    # Logical link only: patterns may be edited or removed after generation.
    origin_pattern_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    # Pattern occurrence the session was generated for; rescheduling never moves it.
    origin_date: Mapped[Optional[date]] = mapped_column(Date)

    type: Mapped[SessionType] = mapped_column(
        Enum(SessionType, native_enum=False, length=20),
        nullable=False,
        default=SessionType.REGULAR,
    )
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, native_enum=False, length=20),
        nullable=False,
        default=SessionStatus.SCHEDULED,
        index=True,
    )
    mode: Mapped[SessionMode] = mapped_column(
        Enum(SessionMode, native_enum=False, length=20),
        nullable=False,
        default=SessionMode.IN_PERSON,
    )

    scheduled_start: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    actual_start: Mapped[Optional[datetime]] = mapped_column(DateTime)
    actual_end: Mapped[Optional[datetime]] = mapped_column(DateTime)

    room_id: Mapped[Optional[int]] = mapped_column(ForeignKey("room.id"), index=True)
    remote_meeting_id: Mapped[Optional[str]] = mapped_column(String(100))

    original_session_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    recovery_for_session_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500))
    postponement_reason: Mapped[Optional[str]] = mapped_column(String(500))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    topics_covered: Mapped[Optional[str]] = mapped_column(Text)

    group: Mapped[Optional[ClassGroup]] = relationship(back_populates="sessions")
    subject: Mapped[Optional[Subject]] = relationship()
    teacher: Mapped[Optional[Teacher]] = relationship(back_populates="sessions")
    room: Mapped[Optional[Room]] = relationship(back_populates="sessions")

    __table_args__ = (
        CheckConstraint("scheduled_end > scheduled_start", name="chk_session_time_order"),
        UniqueConstraint(
            "origin_pattern_id", "origin_date", name="uq_session_pattern_occurrence"
        ),
        Index(
            "uq_session_room_start_active",
            "room_id",
            "scheduled_start",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ).ddl_if(dialect=("sqlite", "postgresql")),
        Index(
            "uq_session_teacher_start_active",
            "teacher_id",
            "scheduled_start",
            unique=True,
            sqlite_where=text(_TEACHER_SLOT_SQL),
            postgresql_where=text(_TEACHER_SLOT_SQL),
        ).ddl_if(dialect=("sqlite", "postgresql")),
    )

    # Columns that may still be written once the session is terminal.
    NARRATIVE_FIELDS = frozenset(
        {"notes", "topics_covered", "cancellation_reason", "postponement_reason", "updated_at"}
    )

    @validates("scheduled_start")
    def _sync_session_date(self, key: str, value: datetime | None) -> datetime | None:
        self.session_date = value.date() if value is not None else None
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def duration(self) -> timedelta:
        return self.scheduled_end - self.scheduled_start

    @property
    def duration_minutes(self) -> int:
        return int(self.duration.total_seconds() // 60)

    @property
    def actual_duration_minutes(self) -> int | None:
        if self.actual_start is None or self.actual_end is None:
            return None
        return int((self.actual_end - self.actual_start).total_seconds() // 60)

    def validate_time_range(self, min_duration: timedelta) -> None:
        if self.scheduled_start is None or self.scheduled_end is None:
            raise MissingRequiredField(
                "Scheduled start and end are required", field="scheduled_start"
            )
        if self.scheduled_end <= self.scheduled_start:
            raise ValidationError(
                "Scheduled end must be after scheduled start",
                field="scheduled_end",
                scheduled_start=self.scheduled_start,
                scheduled_end=self.scheduled_end,
            )
        if self.duration < min_duration:
            raise ValidationError(
                f"Session must last at least {int(min_duration.total_seconds() // 60)} minutes",
                field="scheduled_end",
                duration_minutes=self.duration_minutes,
            )

    def validate_delivery(self) -> None:
        mode = SessionMode(self.mode)
        if mode.requires_physical_room and self.room_id is None:
            raise MissingRequiredField(
                f"A physical room is required for {mode.value} sessions", field="room_id"
            )
        if mode.requires_remote_meeting and not (self.remote_meeting_id or "").strip():
            raise MissingRequiredField(
                f"A remote meeting id is required for {mode.value} sessions",
                field="remote_meeting_id",
            )
        if not mode.requires_physical_room and self.room_id is not None:
            raise ValidationError(
                "Online sessions cannot hold a physical room", field="room_id"
            )

    def validate_origin(self) -> None:
        session_type = SessionType(self.type)
        if session_type is SessionType.REGULAR and self.origin_pattern_id is None:
            raise MissingRequiredField(
                "Regular sessions must reference their origin pattern",
                field="origin_pattern_id",
            )
        if session_type is SessionType.RECOVERY and self.recovery_for_session_id is None:
            raise MissingRequiredField(
                "Recovery sessions must reference the session they recover",
                field="recovery_for_session_id",
            )
        if self.group_id is None and self.subject_id is None:
            raise MissingRequiredField(
                "A session belongs to a group or, for extra sessions, to a subject",
                field="group_id",
            )
        if self.group_id is None and session_type is not SessionType.EXTRA:
            raise MissingRequiredField(
                f"{session_type.value} sessions require a group", field="group_id"
            )

    def append_note(self, note: str | None) -> None:
        if not note or not note.strip():
            return
        existing = f"{self.notes}\n" if self.notes else ""
        self.notes = existing + note.strip()

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        start = f"{self.scheduled_start:%Y-%m-%d %H:%M}" if self.scheduled_start else "?"
        return f"<Session {self.id} {self.type} {self.status} {start}>"


@event.listens_for(OrmSession, "before_flush")
def _freeze_terminal_sessions(session: OrmSession, flush_context, instances) -> None:
    for instance in session.dirty:
        if not isinstance(instance, Session):
            continue
        state = inspect(instance)
        status_history = state.attrs.status.history
        committed = status_history.deleted[0] if status_history.deleted else instance.status
        if committed not in TERMINAL_STATUSES:
            continue
        changed = [
            attr.key
            for attr in state.mapper.column_attrs
            if attr.key not in Session.NARRATIVE_FIELDS
            and state.attrs[attr.key].history.has_changes()
        ]
        if changed:
            raise InvalidTransition(
                "modify",
                committed,
                message=(
                    f"Session {instance.id} is {SessionStatus(committed).value} and can no "
                    f"longer change {', '.join(sorted(changed))}"
                ),
            )
