from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from flask import current_app
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import scoped_session

from .errors import ConflictError
from .extensions import db


# PostgreSQL SQLSTATEs for serialization failure and deadlock.
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def configure_engine(engine: Engine) -> None:
    """Make every SQLite transaction take the database write lock up front.

    pysqlite only issues ``BEGIN`` before the first write, so two writers can
    both read a free slot and then both insert. With ``BEGIN IMMEDIATE`` the
    second writer waits until the first one commits and then sees its booking.
    """

    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


@contextmanager
def transaction() -> Iterator[scoped_session]:
    """Run one core operation as a single all-or-nothing unit of work.

    Storage-level rejections (unique index, exclusion constraint, serialization
    failure) are surfaced as :class:`ConflictError` so that the second of two
    racing writers gets a typed conflict instead of a generic fault.
    """

    session = db.session
    try:
        yield session
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        current_app.logger.warning("Write rejected by a storage constraint: %s", exc.orig)
        raise ConflictError.concurrent_write(str(exc.orig)) from exc
    except OperationalError as exc:
        session.rollback()
        if getattr(exc.orig, "pgcode", None) in RETRYABLE_SQLSTATES:
            current_app.logger.warning("Serialization failure: %s", exc.orig)
            raise ConflictError.concurrent_write(str(exc.orig)) from exc
        raise
    except Exception:
        session.rollback()
        raise
