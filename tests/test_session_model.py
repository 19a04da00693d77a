from datetime import time, timedelta

from kairos.errors import InvalidTransition, MissingRequiredField, ValidationError
from kairos.extensions import db
from kairos.models import (
    SchedulePattern,
    Session,
    SessionMode,
    SessionStatus,
    SessionType,
)

from tests.base import CatalogueTestCase, at


class SessionEntityTestCase(CatalogueTestCase):
    def _session(self, **overrides) -> Session:
        params = {
            "type": SessionType.EXTRA,
            "mode": SessionMode.IN_PERSON,
            "group_id": self.group.id,
            "scheduled_start": at(10),
            "scheduled_end": at(12),
            "room_id": self.room.id,
        }
        params.update(overrides)
        return Session(**params)

    def test_session_date_follows_scheduled_start(self) -> None:
        session = self._session()
        self.assertEqual(session.session_date, at(10).date())
        session.scheduled_start = at(10, days=1)
        self.assertEqual(session.session_date, at(10, days=1).date())

    def test_minimum_duration_is_thirty_minutes(self) -> None:
        minimum = timedelta(minutes=30)
        with self.assertRaises(ValidationError):
            self._session(scheduled_end=at(10, 29)).validate_time_range(minimum)
        self._session(scheduled_end=at(10, 30)).validate_time_range(minimum)

    def test_end_before_start_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._session(scheduled_end=at(9)).validate_time_range(timedelta(minutes=30))
        self.assertEqual(ctx.exception.field, "scheduled_end")

    def test_dual_mode_needs_room_and_meeting(self) -> None:
        with self.assertRaises(MissingRequiredField) as ctx:
            self._session(mode=SessionMode.DUAL).validate_delivery()
        self.assertEqual(ctx.exception.field, "remote_meeting_id")

        with self.assertRaises(MissingRequiredField) as ctx:
            self._session(
                mode=SessionMode.DUAL, room_id=None, remote_meeting_id="abc"
            ).validate_delivery()
        self.assertEqual(ctx.exception.field, "room_id")

        self._session(mode=SessionMode.DUAL, remote_meeting_id="abc").validate_delivery()

    def test_online_session_cannot_hold_a_room(self) -> None:
        with self.assertRaises(ValidationError):
            self._session(mode=SessionMode.ONLINE, remote_meeting_id="abc").validate_delivery()
        self._session(
            mode=SessionMode.ONLINE, room_id=None, remote_meeting_id="abc"
        ).validate_delivery()

    def test_blank_meeting_id_counts_as_missing(self) -> None:
        with self.assertRaises(MissingRequiredField):
            self._session(
                mode=SessionMode.ONLINE, room_id=None, remote_meeting_id="   "
            ).validate_delivery()

    def test_origin_rules_per_type(self) -> None:
        with self.assertRaises(MissingRequiredField):
            self._session(type=SessionType.REGULAR).validate_origin()
        with self.assertRaises(MissingRequiredField):
            self._session(type=SessionType.RECOVERY).validate_origin()
        with self.assertRaises(MissingRequiredField):
            self._session(group_id=None).validate_origin()
        self._session(group_id=None, subject_id=self.subject.id).validate_origin()
        self._session(type=SessionType.REGULAR, origin_pattern_id=self.pattern.id).validate_origin()

    def test_append_note_keeps_previous_notes(self) -> None:
        session = self._session(notes="Bring laptops")
        session.append_note("  ")
        session.append_note("Room changed")
        self.assertEqual(session.notes, "Bring laptops\nRoom changed")


class PatternDeliveryModeTestCase(CatalogueTestCase):
    def _pattern(self, **overrides) -> SchedulePattern:
        params = {"group": self.group, "weekday": 2, "start_time": time(8), "end_time": time(10)}
        params.update(overrides)
        pattern = SchedulePattern(**params)
        db.session.add(pattern)
        db.session.flush()
        return pattern

    def test_physical_room_alone_is_in_person(self) -> None:
        self.assertEqual(self.pattern.delivery_mode, SessionMode.IN_PERSON)

    def test_physical_room_with_meeting_is_dual(self) -> None:
        pattern = self._pattern(room=self.room, remote_meeting_id="meet-1")
        self.assertEqual(pattern.delivery_mode, SessionMode.DUAL)

    def test_virtual_or_missing_room_is_online(self) -> None:
        self.assertEqual(
            self._pattern(room=self.virtual_room, remote_meeting_id="m").delivery_mode,
            SessionMode.ONLINE,
        )
        self.assertEqual(
            self._pattern(room=None, remote_meeting_id="m", weekday=3).delivery_mode,
            SessionMode.ONLINE,
        )

    def test_label(self) -> None:
        self.assertEqual(self.pattern.label, "Monday 10:00-12:00")


class TerminalImmutabilityTestCase(CatalogueTestCase):
    def test_cancelled_session_rejects_slot_changes(self) -> None:
        session = self.book(at(14), at(16))
        self.service.cancel_session(session.id, "Teacher is ill today")

        cancelled = db.session.get(Session, session.id)
        cancelled.room_id = self.other_room.id
        with self.assertRaises(InvalidTransition):
            db.session.commit()
        db.session.rollback()

        self.assertEqual(db.session.get(Session, session.id).room_id, self.room.id)

    def test_cancelled_session_accepts_narrative_changes(self) -> None:
        session = self.book(at(14), at(16))
        self.service.cancel_session(session.id, "Teacher is ill today")

        cancelled = db.session.get(Session, session.id)
        cancelled.append_note("Students were notified by email")
        db.session.commit()

        self.assertIn("notified", db.session.get(Session, session.id).notes)
        self.assertEqual(
            db.session.get(Session, session.id).status, SessionStatus.CANCELLED
        )
