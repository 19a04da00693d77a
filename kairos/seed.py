from datetime import date, time, timedelta

from .extensions import db
from .models import ClassGroup, Room, SchedulePattern, Subject, Teacher


def seed_data() -> None:
    if Teacher.query.count():
        return

    algebra = Subject(name="Linear Algebra")
    networks = Subject(name="Computer Networks")

    alice = Teacher(name="Alice Martin", email="alice@example.com")
    bruno = Teacher(name="Bruno Costa", email="bruno@example.com")

    room_101 = Room(name="Room 101", capacity=24)
    lab_2 = Room(name="Lab 2", capacity=18)
    virtual = Room(name="Virtual Room", capacity=200, is_virtual=True)

    group_a = ClassGroup(name="L1 Group A", subject=algebra, teacher=alice)
    group_b = ClassGroup(name="L2 Networks", subject=networks, teacher=bruno)

    group_a.patterns.extend(
        [
            SchedulePattern(weekday=0, start_time=time(8, 0), end_time=time(10, 0), room=room_101),
            SchedulePattern(
                weekday=2,
                start_time=time(10, 15),
                end_time=time(12, 15),
                room=room_101,
                remote_meeting_id="alg-dual-001",
            ),
        ]
    )
    group_b.patterns.extend(
        [
            SchedulePattern(weekday=1, start_time=time(13, 30), end_time=time(15, 30), room=lab_2),
            SchedulePattern(
                weekday=3,
                start_time=time(15, 45),
                end_time=time(17, 45),
                room=virtual,
                remote_meeting_id="net-online-042",
            ),
        ]
    )

    db.session.add_all([algebra, networks, alice, bruno, room_101, lab_2, virtual, group_a, group_b])
    db.session.commit()


def default_generation_window(today: date | None = None) -> tuple[date, date]:
    """Monday of the current week to the Sunday four weeks later."""

    today = today or date.today()
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(weeks=4, days=-1)
