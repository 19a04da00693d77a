"""Session state machine.

All legal moves live in :data:`TRANSITIONS`: one row per operation naming the
statuses it may start from, the status it leads to, its timing guard, the
input it requires and the effect it has on the session. Adding a state or an
operation means adding or editing one row.

::

    SCHEDULED --start--> IN_PROGRESS --complete--> COMPLETED
        |--cancel--> CANCELLED
        '--postpone--> POSTPONED
    change_mode keeps the status (SCHEDULED or IN_PROGRESS)
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from flask import current_app

from .conflicts import ConflictValidator
from .errors import (
    InvalidTransition,
    MissingRequiredField,
    NotFound,
    TimingWindowViolation,
    ValidationError,
)
from .extensions import db
from .models import Room, Session, SessionMode, SessionStatus
from .policy import SessionPolicy


class Operation(str, enum.Enum):
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    POSTPONE = "postpone"
    CHANGE_MODE = "change_mode"


Guard = Callable[["SessionLifecycle", Session, datetime], None]
Prepare = Callable[["SessionLifecycle", Session, dict[str, Any]], dict[str, Any]]
Effect = Callable[["SessionLifecycle", Session, datetime, dict[str, Any]], None]


@dataclass(frozen=True)
class Transition:
    operation: Operation
    sources: frozenset[SessionStatus]
    target: Optional[SessionStatus]
    guard: Optional[Guard]
    prepare: Prepare
    effect: Effect


# Guards


def _not_before_early_start(lifecycle: "SessionLifecycle", session: Session, now: datetime) -> None:
    earliest = session.scheduled_start - lifecycle.policy.early_start
    if now < earliest:
        raise TimingWindowViolation(
            Operation.START.value,
            f"Session {session.id} can only be started from {earliest:%Y-%m-%d %H:%M}",
            earliest=earliest,
            now=now,
        )


def _before_cutoff(operation: Operation, cutoff: str) -> Guard:
    def guard(lifecycle: "SessionLifecycle", session: Session, now: datetime) -> None:
        deadline = session.scheduled_start - getattr(lifecycle.policy, cutoff)
        if now >= deadline:
            raise TimingWindowViolation(
                operation.value,
                f"Too late to {operation.value.replace('_', ' ')} session {session.id}: "
                f"the deadline was {deadline:%Y-%m-%d %H:%M}",
                deadline=deadline,
                now=now,
            )

    return guard


# Input preparation


def _optional_notes(lifecycle: "SessionLifecycle", session: Session, params: dict[str, Any]) -> dict[str, Any]:
    return {"notes": params.get("notes")}


def _topics_required(lifecycle: "SessionLifecycle", session: Session, params: dict[str, Any]) -> dict[str, Any]:
    return {
        "topics_covered": lifecycle.require_text(
            params.get("topics_covered"), "topics_covered"
        ),
        "notes": params.get("notes"),
    }


def _reason_required(lifecycle: "SessionLifecycle", session: Session, params: dict[str, Any]) -> dict[str, Any]:
    return {"reason": lifecycle.require_text(params.get("reason"), "reason")}


def _delivery_for_mode(lifecycle: "SessionLifecycle", session: Session, params: dict[str, Any]) -> dict[str, Any]:
    raw_mode = params.get("mode")
    if raw_mode is None:
        raise MissingRequiredField("A new mode is required", field="mode")
    try:
        mode = SessionMode(raw_mode)
    except ValueError as exc:
        raise ValidationError(f"Unknown session mode {raw_mode!r}", field="mode") from exc

    room_id = params.get("room_id")
    meeting_id = params.get("remote_meeting_id")
    if mode.requires_physical_room:
        room_id = room_id if room_id is not None else session.room_id
        if room_id is None:
            raise MissingRequiredField(
                f"A physical room is required for {mode.value} sessions", field="room_id"
            )
        room = db.session.get(Room, room_id)
        if room is None:
            raise NotFound("Room", room_id)
        if room.is_virtual:
            raise ValidationError(
                f"Room {room.name} is virtual and cannot host a {mode.value} session",
                field="room_id",
            )
        lifecycle.validator.ensure_available(
            start=session.scheduled_start,
            end=session.scheduled_end,
            room_id=room_id,
            teacher_id=session.teacher_id,
            exclude_session_id=session.id,
            mode=mode,
            subject_id=session.subject_id,
        )
    else:
        room_id = None

    if mode.requires_remote_meeting:
        meeting_id = (meeting_id or session.remote_meeting_id or "").strip()
        if not meeting_id:
            raise MissingRequiredField(
                f"A remote meeting id is required for {mode.value} sessions",
                field="remote_meeting_id",
            )
    else:
        meeting_id = None

    return {
        "mode": mode,
        "room_id": room_id,
        "remote_meeting_id": meeting_id,
        "reason": params.get("reason"),
    }


# Effects


def _mark_started(lifecycle: "SessionLifecycle", session: Session, now: datetime, params: dict[str, Any]) -> None:
    session.actual_start = now
    session.append_note(params.get("notes"))
    if now > session.scheduled_start + lifecycle.policy.late_start_warning:
        current_app.logger.warning(
            "Session %s started late: scheduled %s, started %s",
            session.id,
            session.scheduled_start,
            now,
        )


def _mark_completed(lifecycle: "SessionLifecycle", session: Session, now: datetime, params: dict[str, Any]) -> None:
    session.actual_end = now
    session.topics_covered = params["topics_covered"]
    session.append_note(params.get("notes"))


def _record_cancellation(lifecycle: "SessionLifecycle", session: Session, now: datetime, params: dict[str, Any]) -> None:
    session.cancellation_reason = params["reason"]


def _record_postponement(lifecycle: "SessionLifecycle", session: Session, now: datetime, params: dict[str, Any]) -> None:
    session.postponement_reason = params["reason"]


def _switch_mode(lifecycle: "SessionLifecycle", session: Session, now: datetime, params: dict[str, Any]) -> None:
    previous = SessionMode(session.mode)
    session.mode = params["mode"]
    session.room_id = params["room_id"]
    session.remote_meeting_id = params["remote_meeting_id"]
    if params.get("reason"):
        session.append_note(
            f"[Mode change] {previous.value} -> {params['mode'].value}: {params['reason']}"
        )
    session.validate_delivery()


TRANSITIONS: dict[Operation, Transition] = {
    Operation.START: Transition(
        Operation.START,
        frozenset({SessionStatus.SCHEDULED}),
        SessionStatus.IN_PROGRESS,
        _not_before_early_start,
        _optional_notes,
        _mark_started,
    ),
    Operation.COMPLETE: Transition(
        Operation.COMPLETE,
        frozenset({SessionStatus.IN_PROGRESS}),
        SessionStatus.COMPLETED,
        None,
        _topics_required,
        _mark_completed,
    ),
    Operation.CANCEL: Transition(
        Operation.CANCEL,
        frozenset({SessionStatus.SCHEDULED}),
        SessionStatus.CANCELLED,
        None,
        _reason_required,
        _record_cancellation,
    ),
    Operation.POSTPONE: Transition(
        Operation.POSTPONE,
        frozenset({SessionStatus.SCHEDULED}),
        SessionStatus.POSTPONED,
        _before_cutoff(Operation.POSTPONE, "postpone_cutoff"),
        _reason_required,
        _record_postponement,
    ),
    Operation.CHANGE_MODE: Transition(
        Operation.CHANGE_MODE,
        frozenset({SessionStatus.SCHEDULED, SessionStatus.IN_PROGRESS}),
        None,
        _before_cutoff(Operation.CHANGE_MODE, "mode_change_cutoff"),
        _delivery_for_mode,
        _switch_mode,
    ),
}


class SessionLifecycle:
    """Applies :data:`TRANSITIONS` to sessions.

    The lifecycle mutates the session in the current database session but never
    commits; the caller owns the transaction.
    """

    def __init__(
        self,
        policy: SessionPolicy,
        validator: ConflictValidator,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.policy = policy
        self.validator = validator
        self.clock = clock

    def allowed_operations(self, session: Session) -> list[Operation]:
        return [
            operation
            for operation, transition in TRANSITIONS.items()
            if session.status in transition.sources
        ]

    def check(self, operation: Operation, session: Session, **params: Any) -> dict[str, Any]:
        """Run the state, timing and input checks of ``operation`` without applying it."""

        transition = TRANSITIONS[operation]
        if session.status not in transition.sources:
            raise InvalidTransition(operation.value, session.status, transition.sources)
        now = self.clock()
        if transition.guard is not None:
            transition.guard(self, session, now)
        prepared = transition.prepare(self, session, params)
        prepared["now"] = now
        return prepared

    def apply(self, operation: Operation, session: Session, **params: Any) -> Session:
        prepared = self.check(operation, session, **params)
        transition = TRANSITIONS[operation]
        previous = session.status
        transition.effect(self, session, prepared.pop("now"), prepared)
        if transition.target is not None:
            session.status = transition.target
        current_app.logger.info(
            "Session %s: %s (%s -> %s)",
            session.id,
            operation.value,
            SessionStatus(previous).value,
            SessionStatus(session.status).value,
        )
        return session

    def start(self, session: Session, notes: str | None = None) -> Session:
        return self.apply(Operation.START, session, notes=notes)

    def complete(self, session: Session, topics_covered: str | None, notes: str | None = None) -> Session:
        return self.apply(Operation.COMPLETE, session, topics_covered=topics_covered, notes=notes)

    def cancel(self, session: Session, reason: str | None) -> Session:
        return self.apply(Operation.CANCEL, session, reason=reason)

    def postpone(self, session: Session, reason: str | None) -> Session:
        return self.apply(Operation.POSTPONE, session, reason=reason)

    def change_mode(
        self,
        session: Session,
        mode: SessionMode | str | None,
        room_id: int | None = None,
        remote_meeting_id: str | None = None,
        reason: str | None = None,
    ) -> Session:
        return self.apply(
            Operation.CHANGE_MODE,
            session,
            mode=mode,
            room_id=room_id,
            remote_meeting_id=remote_meeting_id,
            reason=reason,
        )

    def require_text(self, value: str | None, field: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise MissingRequiredField(f"{field} is required", field=field)
        if len(cleaned) < self.policy.min_reason_length:
            raise ValidationError(
                f"{field} must be at least {self.policy.min_reason_length} characters",
                field=field,
                length=len(cleaned),
                min_length=self.policy.min_reason_length,
            )
        return cleaned
