"""Materialise concrete sessions from a group's weekly patterns."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from flask import current_app
from sqlalchemy import select

from .errors import ValidationError
from .extensions import db
from .models import SchedulePattern, Session, SessionStatus, SessionType
from .policy import SessionPolicy
from .queries import get_group


def daterange(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class SessionGenerator:
    """Builds REGULAR sessions for every pattern occurrence in a date range.

    Patterns are validated by the catalogue when they are saved, so generated
    sessions skip the room and teacher availability checks. Running the same
    range twice never duplicates a ``(pattern, origin_date)`` occurrence, even
    after an occurrence was rescheduled to another day.
    """

    def __init__(self, policy: SessionPolicy) -> None:
        self.policy = policy

    def generate(self, group_id: int, date_from: date, date_to: date) -> list[Session]:
        sessions = self._build(group_id, date_from, date_to)
        db.session.add_all(sessions)
        db.session.flush()
        current_app.logger.info(
            "Generated %s session(s) for group %s between %s and %s",
            len(sessions),
            group_id,
            date_from,
            date_to,
        )
        return sessions

    def preview(self, group_id: int, date_from: date, date_to: date) -> list[Session]:
        """Same computation as :meth:`generate`; nothing is added to the database session."""

        sessions = self._build(group_id, date_from, date_to)
        current_app.logger.debug(
            "Previewed %s session(s) for group %s between %s and %s",
            len(sessions),
            group_id,
            date_from,
            date_to,
        )
        return sessions

    def _build(self, group_id: int, date_from: date, date_to: date) -> list[Session]:
        self._check_range(date_from, date_to)
        group = get_group(group_id)
        patterns = list(group.patterns)
        if not patterns:
            return []
        by_weekday: dict[int, list[SchedulePattern]] = {}
        for pattern in patterns:
            self._check_pattern(pattern)
            by_weekday.setdefault(pattern.weekday, []).append(pattern)

        existing = self._existing_occurrences([p.id for p in patterns], date_from, date_to)
        sessions: list[Session] = []
        for day in daterange(date_from, date_to):
            for pattern in by_weekday.get(day.weekday(), []):
                if (pattern.id, day) in existing:
                    continue
                start, end = pattern.occurrence_on(day)
                mode = pattern.delivery_mode
                sessions.append(
                    Session(
                        group_id=group.id,
                        subject_id=group.subject_id,
                        teacher_id=group.teacher_id,
                        origin_pattern_id=pattern.id,
                        origin_date=day,
                        type=SessionType.REGULAR,
                        status=SessionStatus.SCHEDULED,
                        mode=mode,
                        scheduled_start=start,
                        scheduled_end=end,
                        room_id=pattern.room_id if mode.requires_physical_room else None,
                        remote_meeting_id=(
                            pattern.remote_meeting_id if mode.requires_remote_meeting else None
                        ),
                    )
                )
        return sessions

    def _check_range(self, date_from: date, date_to: date) -> None:
        if date_from > date_to:
            raise ValidationError(
                "date_from must not be after date_to",
                field="date_from",
                date_from=date_from.isoformat(),
                date_to=date_to.isoformat(),
            )
        days = (date_to - date_from).days + 1
        if days > self.policy.generation_max_days:
            raise ValidationError(
                f"Cannot generate more than {self.policy.generation_max_days} days at once",
                field="date_to",
                days=days,
            )

    def _check_pattern(self, pattern: SchedulePattern) -> None:
        mode = pattern.delivery_mode
        if mode.requires_remote_meeting and not (pattern.remote_meeting_id or "").strip():
            raise ValidationError(
                f"Pattern {pattern.id} ({pattern.label}) is online but has no remote meeting id",
                field="remote_meeting_id",
                pattern_id=pattern.id,
            )

    def _existing_occurrences(
        self, pattern_ids: list[int], date_from: date, date_to: date
    ) -> set[tuple[int, date]]:
        rows = db.session.execute(
            select(Session.origin_pattern_id, Session.origin_date).where(
                Session.origin_pattern_id.in_(pattern_ids),
                Session.origin_date >= date_from,
                Session.origin_date <= date_to,
            )
        )
        return {(pattern_id, origin_date) for pattern_id, origin_date in rows}
