"""Validation and staging of new sessions (manual, recovery or extra)."""
from __future__ import annotations

from flask import current_app

from .conflicts import ConflictValidator
from .errors import NotFound, ValidationError
from .extensions import db
from .models import (
    RECOVERABLE_STATUSES,
    ClassGroup,
    Room,
    SchedulePattern,
    Session,
    SessionMode,
    SessionType,
    Subject,
    Teacher,
)
from .policy import SessionPolicy


class SessionBooker:
    """Checks a candidate session against every booking rule before it is added.

    Candidates are built with foreign key ids only so that validation queries
    never autoflush them into the database.
    """

    def __init__(self, policy: SessionPolicy, validator: ConflictValidator) -> None:
        self.policy = policy
        self.validator = validator

    def book(self, session: Session) -> Session:
        self.validate(session)
        db.session.add(session)
        db.session.flush()
        current_app.logger.info(
            "Booked %s session %s for %s-%s",
            SessionType(session.type).value,
            session.id,
            session.scheduled_start,
            session.scheduled_end,
        )
        return session

    def validate(self, session: Session, vacating: Session | None = None) -> None:
        """Run every rule for ``session``.

        ``vacating`` is a session released in the same transaction (the one being
        postponed): it does not block the new slot and it is accepted as a
        recovery target even though its status has not changed yet.
        """

        self._resolve_references(session)
        session.validate_origin()
        session.validate_delivery()
        self._check_recovery_target(session, vacating)
        self.validate_slot(session, vacating)

    def validate_slot(self, session: Session, vacating: Session | None = None) -> None:
        """Check the time range, room and availability of ``session``'s slot."""

        session.validate_time_range(self.policy.min_duration)
        self._check_room(session)

        if session.duration > self.policy.long_duration_warning:
            current_app.logger.warning(
                "Session of group %s lasts %s minutes",
                session.group_id,
                session.duration_minutes,
            )

        physical = SessionMode(session.mode).requires_physical_room
        self.validator.ensure_available(
            start=session.scheduled_start,
            end=session.scheduled_end,
            room_id=session.room_id if physical else None,
            teacher_id=session.teacher_id,
            exclude_session_id=vacating.id if vacating is not None else None,
            mode=SessionMode(session.mode),
            subject_id=session.subject_id,
        )
        current_app.logger.debug(
            "Candidate session %s-%s passed validation",
            session.scheduled_start,
            session.scheduled_end,
        )

    def _resolve_references(self, session: Session) -> None:
        if session.group_id is not None:
            group = db.session.get(ClassGroup, session.group_id)
            if group is None:
                raise NotFound("Group", session.group_id)
            if session.subject_id is None:
                session.subject_id = group.subject_id
            if session.teacher_id is None:
                session.teacher_id = group.teacher_id
        if session.subject_id is not None and db.session.get(Subject, session.subject_id) is None:
            raise NotFound("Subject", session.subject_id)
        if session.teacher_id is not None and db.session.get(Teacher, session.teacher_id) is None:
            raise NotFound("Teacher", session.teacher_id)
        if session.origin_pattern_id is not None:
            pattern = db.session.get(SchedulePattern, session.origin_pattern_id)
            if pattern is None:
                raise NotFound("Pattern", session.origin_pattern_id)
            if pattern.group_id != session.group_id:
                raise ValidationError(
                    f"Pattern {pattern.id} does not belong to group {session.group_id}",
                    field="origin_pattern_id",
                )

    def _check_room(self, session: Session) -> None:
        if session.room_id is None:
            return
        room = db.session.get(Room, session.room_id)
        if room is None:
            raise NotFound("Room", session.room_id)
        if room.is_virtual:
            raise ValidationError(
                f"Room {room.name} is virtual and cannot host a "
                f"{SessionMode(session.mode).value} session",
                field="room_id",
            )

    def _check_recovery_target(self, session: Session, vacating: Session | None) -> None:
        target_id = session.recovery_for_session_id
        if target_id is None:
            return
        target = db.session.get(Session, target_id)
        if target is None:
            raise NotFound("Session", target_id)
        vacated = vacating is not None and vacating.id == target.id
        if not vacated and target.status not in RECOVERABLE_STATUSES:
            raise ValidationError(
                f"Session {target.id} is {target.status.value}; only postponed or "
                "cancelled sessions can be recovered",
                field="recovery_for_session_id",
                target_status=target.status,
            )

        seen = {target.id}
        current = target
        while current.recovery_for_session_id is not None:
            if current.recovery_for_session_id in seen:
                raise ValidationError(
                    f"Recovery chain of session {target.id} loops back on session "
                    f"{current.recovery_for_session_id}",
                    field="recovery_for_session_id",
                )
            seen.add(current.recovery_for_session_id)
            current = db.session.get(Session, current.recovery_for_session_id)
            if current is None:
                break
