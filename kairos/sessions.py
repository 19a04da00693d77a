"""Transactional entry points of the session core.

Every mutating method runs in :func:`kairos.database.transaction`; a failed
operation leaves no partial state behind.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional

from flask import current_app

from . import queries
from .booking import SessionBooker
from .conflicts import ConflictValidator
from .database import transaction
from .errors import InvalidTransition
from .generation import SessionGenerator
from .lifecycle import SessionLifecycle
from .models import Session, SessionMode, SessionStatus, SessionType, coerce_enum
from .policy import SessionPolicy
from .postponement import PostponementCoordinator, RescheduleRequest
from .queries import SessionFilters, SessionPage


class SessionService:
    def __init__(
        self,
        policy: Optional[SessionPolicy] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.policy = policy or SessionPolicy.from_config(current_app.config)
        self.clock = clock
        self.validator = ConflictValidator()
        self.booker = SessionBooker(self.policy, self.validator)
        self.lifecycle = SessionLifecycle(self.policy, self.validator, clock)
        self.generator = SessionGenerator(self.policy)
        self.coordinator = PostponementCoordinator(self.lifecycle, self.booker)

    # Creation

    def create_session(
        self,
        *,
        type: SessionType | str,
        scheduled_start: datetime,
        scheduled_end: datetime,
        mode: SessionMode | str = SessionMode.IN_PERSON,
        group_id: int | None = None,
        subject_id: int | None = None,
        teacher_id: int | None = None,
        room_id: int | None = None,
        remote_meeting_id: str | None = None,
        origin_pattern_id: int | None = None,
        recovery_for_session_id: int | None = None,
        notes: str | None = None,
    ) -> Session:
        """Book a recovery, extra or manual regular session."""

        session_type = coerce_enum(SessionType, type, "type")
        session_mode = coerce_enum(SessionMode, mode, "mode")
        original_session_id = None
        if recovery_for_session_id is not None:
            target = queries.get_session(recovery_for_session_id)
            original_session_id = target.original_session_id or target.id

        session = Session(
            type=session_type,
            status=SessionStatus.SCHEDULED,
            mode=session_mode,
            scheduled_start=scheduled_start,
            scheduled_end=scheduled_end,
            group_id=group_id,
            subject_id=subject_id,
            teacher_id=teacher_id,
            room_id=room_id,
            remote_meeting_id=(remote_meeting_id or "").strip() or None,
            origin_pattern_id=origin_pattern_id,
            origin_date=(
                scheduled_start.date()
                if origin_pattern_id is not None and scheduled_start is not None
                else None
            ),
            recovery_for_session_id=recovery_for_session_id,
            original_session_id=original_session_id,
            notes=notes,
        )
        with transaction():
            return self.booker.book(session)

    def generate_sessions(self, group_id: int, date_from: date, date_to: date) -> list[Session]:
        with transaction():
            return self.generator.generate(group_id, date_from, date_to)

    def preview_sessions(self, group_id: int, date_from: date, date_to: date) -> list[Session]:
        return self.generator.preview(group_id, date_from, date_to)

    # Lifecycle

    def start_session(self, session_id: int, notes: str | None = None) -> Session:
        with transaction():
            return self.lifecycle.start(queries.get_session(session_id), notes)

    def complete_session(
        self, session_id: int, topics_covered: str | None, notes: str | None = None
    ) -> Session:
        with transaction():
            return self.lifecycle.complete(queries.get_session(session_id), topics_covered, notes)

    def cancel_session(self, session_id: int, reason: str | None) -> Session:
        with transaction():
            return self.lifecycle.cancel(queries.get_session(session_id), reason)

    def postpone_session(
        self,
        session_id: int,
        reason: str | None,
        reschedule: RescheduleRequest | None = None,
    ) -> Session:
        """Postpone a session; with ``reschedule`` the recovery session is returned."""

        with transaction():
            if reschedule is None:
                return self.coordinator.postpone(session_id, reason)
            return self.coordinator.postpone_and_reschedule(
                session_id,
                reason,
                reschedule.start,
                reschedule.end,
                new_mode=reschedule.mode,
                new_room_id=reschedule.room_id,
                new_meeting_id=reschedule.remote_meeting_id,
                teacher_id=reschedule.teacher_id,
            )

    def change_session_mode(
        self,
        session_id: int,
        mode: SessionMode | str | None,
        room_id: int | None = None,
        remote_meeting_id: str | None = None,
        reason: str | None = None,
    ) -> Session:
        with transaction():
            return self.lifecycle.change_mode(
                queries.get_session(session_id), mode, room_id, remote_meeting_id, reason
            )

    def reschedule_session(
        self,
        session_id: int,
        new_start: datetime,
        new_end: datetime,
        room_id: int | None = None,
    ) -> Session:
        """Move a scheduled session to another slot, keeping its identity."""

        with transaction():
            session = queries.get_session(session_id)
            if session.status != SessionStatus.SCHEDULED:
                raise InvalidTransition(
                    "reschedule", session.status, {SessionStatus.SCHEDULED}
                )
            mode = SessionMode(session.mode)
            target_room = room_id if room_id is not None else session.room_id
            if not mode.requires_physical_room:
                target_room = None
            candidate = Session(
                mode=mode,
                scheduled_start=new_start,
                scheduled_end=new_end,
                group_id=session.group_id,
                subject_id=session.subject_id,
                teacher_id=session.teacher_id,
                room_id=target_room,
            )
            self.booker.validate_slot(candidate, vacating=session)

            previous = session.scheduled_start
            session.scheduled_start = new_start
            session.scheduled_end = new_end
            session.room_id = target_room
            current_app.logger.info(
                "Session %s rescheduled from %s to %s", session.id, previous, new_start
            )
            return session

    # Queries

    def get_session(self, session_id: int) -> Session:
        return queries.get_session(session_id)

    def list_sessions(self, filters: SessionFilters | None = None) -> SessionPage:
        return queries.list_sessions(filters or SessionFilters())

    def upcoming_sessions(self, limit: int = 20, group_id: int | None = None) -> list[Session]:
        return queries.upcoming_sessions(self.clock(), limit, group_id)

    def sessions_requiring_action(self) -> list[Session]:
        return queries.sessions_requiring_action()

    def overdue_sessions(self) -> list[Session]:
        return queries.overdue_sessions(self.clock())

    def recovery_chain(self, session_id: int) -> list[Session]:
        return queries.recovery_chain(session_id)
