from datetime import date, time

from kairos.errors import NotFound, ValidationError
from kairos.extensions import db
from kairos.generation import daterange
from kairos.models import (
    ClassGroup,
    SchedulePattern,
    Session,
    SessionMode,
    SessionStatus,
    SessionType,
)

from tests.base import CatalogueTestCase, at


FIRST_MONDAY = date(2025, 3, 3)
SECOND_SUNDAY = date(2025, 3, 16)


class DaterangeTestCase(CatalogueTestCase):
    def test_range_is_inclusive(self) -> None:
        days = list(daterange(date(2025, 3, 1), date(2025, 3, 3)))
        self.assertEqual(days, [date(2025, 3, 1), date(2025, 3, 2), date(2025, 3, 3)])


class GenerateSessionsTestCase(CatalogueTestCase):
    def test_one_session_per_matching_weekday(self) -> None:
        sessions = self.service.generate_sessions(self.group.id, FIRST_MONDAY, SECOND_SUNDAY)

        self.assertEqual(len(sessions), 2)
        first = sessions[0]
        self.assertEqual(first.type, SessionType.REGULAR)
        self.assertEqual(first.status, SessionStatus.SCHEDULED)
        self.assertEqual(first.mode, SessionMode.IN_PERSON)
        self.assertEqual(first.scheduled_start, at(10))
        self.assertEqual(first.scheduled_end, at(12))
        self.assertEqual(first.room_id, self.room.id)
        self.assertEqual(first.teacher_id, self.alice.id)
        self.assertEqual(first.subject_id, self.subject.id)
        self.assertEqual(first.origin_pattern_id, self.pattern.id)
        self.assertEqual(first.origin_date, FIRST_MONDAY)
        self.assertEqual(sessions[1].scheduled_start, at(10, days=7))

    def test_generation_is_idempotent(self) -> None:
        self.service.generate_sessions(self.group.id, FIRST_MONDAY, SECOND_SUNDAY)
        again = self.service.generate_sessions(self.group.id, FIRST_MONDAY, SECOND_SUNDAY)

        self.assertEqual(again, [])
        self.assertEqual(db.session.query(Session).count(), 2)

    def test_overlapping_ranges_only_add_missing_occurrences(self) -> None:
        self.service.generate_sessions(self.group.id, FIRST_MONDAY, date(2025, 3, 9))
        added = self.service.generate_sessions(self.group.id, FIRST_MONDAY, SECOND_SUNDAY)
        self.assertEqual([s.session_date for s in added], [date(2025, 3, 10)])

    def test_rescheduled_occurrence_is_not_regenerated(self) -> None:
        sessions = self.service.generate_sessions(self.group.id, FIRST_MONDAY, FIRST_MONDAY)
        moved = self.service.reschedule_session(sessions[0].id, at(10, days=1), at(12, days=1))
        self.assertEqual(moved.session_date, date(2025, 3, 4))
        self.assertEqual(moved.origin_date, FIRST_MONDAY)

        added = self.service.generate_sessions(self.group.id, FIRST_MONDAY, SECOND_SUNDAY)
        self.assertEqual([s.origin_date for s in added], [date(2025, 3, 10)])
        self.assertEqual(db.session.query(Session).count(), 2)

    def test_postponed_occurrence_is_not_regenerated(self) -> None:
        sessions = self.service.generate_sessions(self.group.id, FIRST_MONDAY, FIRST_MONDAY)
        self.service.postpone_session(sessions[0].id, "Public holiday moved")
        self.assertEqual(
            self.service.generate_sessions(self.group.id, FIRST_MONDAY, FIRST_MONDAY), []
        )

    def test_preview_does_not_persist(self) -> None:
        preview = self.service.preview_sessions(self.group.id, FIRST_MONDAY, SECOND_SUNDAY)
        self.assertEqual(len(preview), 2)
        self.assertTrue(all(session.id is None for session in preview))
        db.session.commit()
        self.assertEqual(db.session.query(Session).count(), 0)

    def test_group_without_patterns_yields_nothing(self) -> None:
        empty = ClassGroup(name="INFO2", subject=self.subject, teacher=self.bruno)
        db.session.add(empty)
        db.session.commit()
        self.assertEqual(self.service.generate_sessions(empty.id, FIRST_MONDAY, SECOND_SUNDAY), [])

    def test_unknown_group(self) -> None:
        with self.assertRaises(NotFound):
            self.service.generate_sessions(9999, FIRST_MONDAY, SECOND_SUNDAY)

    def test_reversed_range_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.generate_sessions(self.group.id, SECOND_SUNDAY, FIRST_MONDAY)

    def test_range_longer_than_policy_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.service.preview_sessions(self.group.id, date(2025, 1, 1), date(2026, 1, 2))
        self.assertEqual(ctx.exception.field, "date_to")


class GeneratedModeTestCase(CatalogueTestCase):
    def _add_pattern(self, **params) -> SchedulePattern:
        pattern = SchedulePattern(
            group_id=self.group.id,
            weekday=2,
            start_time=time(14),
            end_time=time(16),
            **params,
        )
        db.session.add(pattern)
        db.session.commit()
        return pattern

    def _wednesday_session(self) -> Session:
        sessions = self.service.generate_sessions(self.group.id, FIRST_MONDAY, date(2025, 3, 9))
        return next(s for s in sessions if s.session_date == date(2025, 3, 5))

    def test_virtual_room_pattern_generates_online_sessions(self) -> None:
        self._add_pattern(room_id=self.virtual_room.id, remote_meeting_id="meet-9")
        session = self._wednesday_session()
        self.assertEqual(session.mode, SessionMode.ONLINE)
        self.assertIsNone(session.room_id)
        self.assertEqual(session.remote_meeting_id, "meet-9")

    def test_physical_room_with_meeting_generates_dual_sessions(self) -> None:
        self._add_pattern(room_id=self.other_room.id, remote_meeting_id="meet-9")
        session = self._wednesday_session()
        self.assertEqual(session.mode, SessionMode.DUAL)
        self.assertEqual(session.room_id, self.other_room.id)

    def test_online_pattern_without_meeting_is_rejected(self) -> None:
        pattern = self._add_pattern(room_id=None)
        with self.assertRaises(ValidationError) as ctx:
            self.service.generate_sessions(self.group.id, FIRST_MONDAY, SECOND_SUNDAY)
        self.assertEqual(ctx.exception.details["pattern_id"], pattern.id)
        self.assertEqual(db.session.query(Session).count(), 0)
