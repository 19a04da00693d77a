from __future__ import annotations

import unittest
from datetime import datetime, time, timedelta

from kairos import create_app
from kairos.config import TestConfig
from kairos.extensions import db
from kairos.models import ClassGroup, Room, SchedulePattern, SessionType, Subject, Teacher
from kairos.sessions import SessionService


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# Monday
DAY = datetime(2025, 3, 3)


def at(hour: int, minute: int = 0, days: int = 0) -> datetime:
    return DAY + timedelta(days=days, hours=hour, minutes=minute)


class DatabaseTestCase(unittest.TestCase):
    config_class = TestConfig

    def setUp(self) -> None:
        self.app = create_app(self.config_class)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.create_all()

    def tearDown(self) -> None:
        db.session.remove()
        db.drop_all()
        self.app_context.pop()


class CatalogueTestCase(DatabaseTestCase):
    """Database with one group taught by Alice, a free teacher and three rooms."""

    def setUp(self) -> None:
        super().setUp()
        self.subject = Subject(name="Algebra")
        self.alice = Teacher(name="Alice", email="alice@example.com")
        self.bruno = Teacher(name="Bruno", email="bruno@example.com")
        self.room = Room(name="B101", capacity=30)
        self.other_room = Room(name="B102", capacity=30)
        self.virtual_room = Room(name="Online", capacity=300, is_virtual=True)
        self.group = ClassGroup(name="INFO1", subject=self.subject, teacher=self.alice)
        self.pattern = SchedulePattern(
            group=self.group,
            weekday=0,
            start_time=time(10, 0),
            end_time=time(12, 0),
            room=self.room,
        )
        db.session.add_all(
            [
                self.subject,
                self.alice,
                self.bruno,
                self.room,
                self.other_room,
                self.virtual_room,
                self.group,
                self.pattern,
            ]
        )
        db.session.commit()

        self.clock = FixedClock(at(7))
        self.service = SessionService(clock=self.clock)

    def book(self, start: datetime, end: datetime, **overrides):
        params = {
            "type": SessionType.EXTRA,
            "scheduled_start": start,
            "scheduled_end": end,
            "group_id": self.group.id,
            "room_id": self.room.id,
        }
        params.update(overrides)
        return self.service.create_session(**params)
