"""Room and teacher availability checks.

Two bookings ``[s1, e1)`` and ``[s2, e2)`` overlap iff ``s1 < e2 and s2 < e1``;
back-to-back sessions (one ending exactly when the other starts) never clash.
Only sessions that still occupy their slot (scheduled or in progress) count.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import and_, or_, select

from .errors import ConflictError, NotFound
from .extensions import db
from .models import ACTIVE_STATUSES, Room, Session, SessionMode, Teacher


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class Conflict:
    resource: str
    resource_id: int
    session_id: int
    start: datetime
    end: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource,
            "resource_id": self.resource_id,
            "session_id": self.session_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


class ConflictValidator:
    def check_room_available(
        self,
        room_id: int | None,
        start: datetime,
        end: datetime,
        exclude_session_id: int | None = None,
    ) -> Conflict | None:
        if room_id is None:
            return None
        room = db.session.get(Room, room_id)
        if room is None:
            raise NotFound("Room", room_id)
        if room.is_virtual:
            current_app.logger.debug("Skipping availability check for virtual room %s", room.name)
            return None
        clash = self._first_overlap(Session.room_id == room_id, start, end, exclude_session_id)
        if clash is None:
            return None
        return Conflict("room", room_id, clash.id, clash.scheduled_start, clash.scheduled_end)

    def check_teacher_available(
        self,
        teacher_id: int | None,
        start: datetime,
        end: datetime,
        exclude_session_id: int | None = None,
        mode: SessionMode | None = None,
        subject_id: int | None = None,
    ) -> Conflict | None:
        """Find a session holding ``teacher_id`` during ``[start, end)``.

        A teacher may stream several online sessions of the same subject at
        once, so when ``mode`` is ONLINE those sessions are not counted.
        """

        if teacher_id is None:
            return None
        if db.session.get(Teacher, teacher_id) is None:
            raise NotFound("Teacher", teacher_id)
        clause = Session.teacher_id == teacher_id
        streaming = mode is not None and SessionMode(mode) is SessionMode.ONLINE
        if streaming and subject_id is not None:
            clause = and_(
                clause,
                or_(
                    Session.mode != SessionMode.ONLINE,
                    Session.subject_id.is_(None),
                    Session.subject_id != subject_id,
                ),
            )
        clash = self._first_overlap(clause, start, end, exclude_session_id)
        if clash is None:
            return None
        return Conflict(
            "teacher", teacher_id, clash.id, clash.scheduled_start, clash.scheduled_end
        )

    def ensure_available(
        self,
        *,
        start: datetime,
        end: datetime,
        room_id: int | None = None,
        teacher_id: int | None = None,
        exclude_session_id: int | None = None,
        mode: SessionMode | None = None,
        subject_id: int | None = None,
    ) -> None:
        """Raise :class:`ConflictError` for the first room or teacher clash."""

        self.lock(room_id=room_id, teacher_id=teacher_id)
        for conflict in (
            self.check_room_available(room_id, start, end, exclude_session_id),
            self.check_teacher_available(
                teacher_id, start, end, exclude_session_id, mode, subject_id
            ),
        ):
            if conflict is not None:
                current_app.logger.info(
                    "Booking %s-%s rejected: %s %s held by session %s",
                    start,
                    end,
                    conflict.resource,
                    conflict.resource_id,
                    conflict.session_id,
                )
                raise ConflictError.from_conflict(conflict)

    def lock(self, *, room_id: int | None = None, teacher_id: int | None = None) -> None:
        """Hold row locks on the booked resources until the transaction ends.

        Concurrent writers targeting the same room or teacher queue behind the
        lock instead of both passing the availability check. SQLite ignores
        ``FOR UPDATE``; there every transaction opens with ``BEGIN IMMEDIATE``
        (see :func:`kairos.database.configure_engine`) and already holds the
        database write lock by the time the availability queries run.
        """

        if room_id is not None:
            db.session.execute(select(Room.id).where(Room.id == room_id).with_for_update())
        if teacher_id is not None:
            db.session.execute(
                select(Teacher.id).where(Teacher.id == teacher_id).with_for_update()
            )

    def _first_overlap(
        self,
        resource_clause,
        start: datetime,
        end: datetime,
        exclude_session_id: int | None,
    ) -> Session | None:
        query = select(Session).where(
            resource_clause,
            Session.status.in_(list(ACTIVE_STATUSES)),
            Session.scheduled_start < end,
            Session.scheduled_end > start,
        )
        if exclude_session_id is not None:
            query = query.where(Session.id != exclude_session_id)
        query = query.order_by(Session.scheduled_start, Session.id).limit(1)
        return db.session.scalars(query).first()
