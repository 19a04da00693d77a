"""Postponement workflow.

Postponing and booking the recovery slot happen in one unit of work: every
check runs before anything is touched, so a conflict on the new slot leaves
the original session scheduled.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app

from .booking import SessionBooker
from .extensions import db
from .lifecycle import Operation, SessionLifecycle
from .models import Session, SessionMode, SessionStatus, SessionType, coerce_enum
from .queries import get_session


@dataclass
class RescheduleRequest:
    start: datetime
    end: datetime
    mode: Optional[SessionMode | str] = None
    room_id: Optional[int] = None
    remote_meeting_id: Optional[str] = None
    teacher_id: Optional[int] = None


class PostponementCoordinator:
    def __init__(self, lifecycle: SessionLifecycle, booker: SessionBooker) -> None:
        self.lifecycle = lifecycle
        self.booker = booker

    def postpone(self, session_id: int, reason: str | None) -> Session:
        return self.lifecycle.postpone(get_session(session_id), reason)

    def postpone_and_reschedule(
        self,
        session_id: int,
        reason: str | None,
        new_start: datetime,
        new_end: datetime,
        new_mode: SessionMode | str | None = None,
        new_room_id: int | None = None,
        new_meeting_id: str | None = None,
        teacher_id: int | None = None,
    ) -> Session:
        """Postpone ``session_id`` and book its recovery; return the recovery session."""

        original = get_session(session_id)
        self.lifecycle.check(Operation.POSTPONE, original, reason=reason)

        recovery = self.build_recovery(
            original,
            RescheduleRequest(
                start=new_start,
                end=new_end,
                mode=new_mode,
                room_id=new_room_id,
                remote_meeting_id=new_meeting_id,
                teacher_id=teacher_id,
            ),
            reason,
        )
        self.booker.validate(recovery, vacating=original)

        self.lifecycle.postpone(original, reason)
        db.session.add(recovery)
        db.session.flush()
        current_app.logger.info(
            "Session %s postponed to %s as recovery session %s",
            original.id,
            recovery.scheduled_start,
            recovery.id,
        )
        return recovery

    def build_recovery(
        self, original: Session, request: RescheduleRequest, reason: str | None
    ) -> Session:
        mode = coerce_enum(SessionMode, request.mode or original.mode, "mode")
        room_id = None
        if mode.requires_physical_room:
            room_id = request.room_id if request.room_id is not None else original.room_id
        meeting_id = None
        if mode.requires_remote_meeting:
            meeting_id = request.remote_meeting_id or original.remote_meeting_id

        return Session(
            group_id=original.group_id,
            subject_id=original.subject_id,
            teacher_id=request.teacher_id or original.teacher_id,
            type=SessionType.RECOVERY,
            status=SessionStatus.SCHEDULED,
            mode=mode,
            scheduled_start=request.start,
            scheduled_end=request.end,
            room_id=room_id,
            remote_meeting_id=meeting_id,
            recovery_for_session_id=original.id,
            original_session_id=original.original_session_id or original.id,
            notes=(
                f"Recovery for session {original.id} scheduled "
                f"{original.scheduled_start:%Y-%m-%d %H:%M}: {(reason or '').strip()}"
            ),
        )
