"""Read-side helpers over sessions and the scheduling catalogue."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import aliased

from .errors import NotFound, ValidationError
from .extensions import db
from .models import (
    ACTIVE_STATUSES,
    RECOVERABLE_STATUSES,
    ClassGroup,
    SchedulePattern,
    Session,
    SessionMode,
    SessionStatus,
    SessionType,
)


MAX_PAGE_SIZE = 200


def get_session(session_id: int) -> Session:
    session = db.session.get(Session, session_id)
    if session is None:
        raise NotFound("Session", session_id)
    return session


def get_group(group_id: int) -> ClassGroup:
    group = db.session.get(ClassGroup, group_id)
    if group is None:
        raise NotFound("Group", group_id)
    return group


def get_pattern(pattern_id: int) -> SchedulePattern:
    pattern = db.session.get(SchedulePattern, pattern_id)
    if pattern is None:
        raise NotFound("Pattern", pattern_id)
    return pattern


@dataclass
class SessionFilters:
    group_id: Optional[int] = None
    teacher_id: Optional[int] = None
    subject_id: Optional[int] = None
    room_id: Optional[int] = None
    origin_pattern_id: Optional[int] = None
    type: Optional[SessionType] = None
    status: Optional[SessionStatus] = None
    mode: Optional[SessionMode] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = 1
    per_page: int = 50

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= self.per_page <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"per_page must be between 1 and {MAX_PAGE_SIZE}", field="per_page"
            )
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("date_from must not be after date_to", field="date_from")


@dataclass
class SessionPage:
    items: list[Session]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.per_page))


def list_sessions(filters: SessionFilters) -> SessionPage:
    conditions = []
    for column, value in (
        (Session.group_id, filters.group_id),
        (Session.teacher_id, filters.teacher_id),
        (Session.subject_id, filters.subject_id),
        (Session.room_id, filters.room_id),
        (Session.origin_pattern_id, filters.origin_pattern_id),
        (Session.type, filters.type),
        (Session.status, filters.status),
        (Session.mode, filters.mode),
    ):
        if value is not None:
            conditions.append(column == value)
    if filters.date_from is not None:
        conditions.append(Session.scheduled_start >= datetime.combine(filters.date_from, time.min))
    if filters.date_to is not None:
        conditions.append(
            Session.scheduled_start < datetime.combine(filters.date_to + timedelta(days=1), time.min)
        )

    total = db.session.scalar(select(func.count(Session.id)).where(*conditions)) or 0
    items = db.session.scalars(
        select(Session)
        .where(*conditions)
        .order_by(Session.scheduled_start, Session.id)
        .offset((filters.page - 1) * filters.per_page)
        .limit(filters.per_page)
    ).all()
    return SessionPage(list(items), total, filters.page, filters.per_page)


def upcoming_sessions(now: datetime, limit: int = 20, group_id: int | None = None) -> list[Session]:
    query = select(Session).where(
        Session.status == SessionStatus.SCHEDULED,
        Session.scheduled_start >= now,
    )
    if group_id is not None:
        query = query.where(Session.group_id == group_id)
    return list(
        db.session.scalars(query.order_by(Session.scheduled_start, Session.id).limit(limit))
    )


def sessions_requiring_action() -> list[Session]:
    """Postponed or cancelled sessions that no active or completed recovery covers."""

    recovery = aliased(Session)
    covered = (
        select(recovery.id)
        .where(
            recovery.recovery_for_session_id == Session.id,
            recovery.status.in_(list(ACTIVE_STATUSES | {SessionStatus.COMPLETED})),
        )
        .exists()
    )
    query = (
        select(Session)
        .where(and_(Session.status.in_(list(RECOVERABLE_STATUSES)), ~covered))
        .order_by(Session.scheduled_start, Session.id)
    )
    return list(db.session.scalars(query))


def overdue_sessions(now: datetime) -> list[Session]:
    """Sessions still scheduled although their slot has already ended."""

    query = (
        select(Session)
        .where(Session.status == SessionStatus.SCHEDULED, Session.scheduled_end < now)
        .order_by(Session.scheduled_start, Session.id)
    )
    return list(db.session.scalars(query))


def recovery_chain(session_id: int) -> list[Session]:
    """Return the chain root followed by every session recovering part of it."""

    session = get_session(session_id)
    root_id = session.original_session_id or session.id
    root = get_session(root_id)
    recoveries = db.session.scalars(
        select(Session)
        .where(Session.original_session_id == root_id)
        .order_by(Session.scheduled_start, Session.id)
    ).all()
    return [root, *recoveries]
