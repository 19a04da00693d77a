"""Typed failures raised by the session core.

Every error carries a machine readable ``error`` kind, an HTTP-equivalent
``status_code`` and a ``details`` mapping with enough structure for a caller to
render an actionable message (which field failed, which transition was
attempted, which session is in the way).
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any


class SessionError(Exception):
    """Base class for expected, typed failures of the session core."""

    status_code = 400
    error = "session_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {key: _jsonable(value) for key, value in details.items()}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message, "details": self.details}


class NotFound(SessionError):
    status_code = 404
    error = "not_found"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} does not exist", entity=entity, id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(SessionError):
    error = "invalid_transition"

    def __init__(
        self,
        operation: str,
        current_status: Any,
        allowed_from: Any = (),
        message: str | None = None,
    ) -> None:
        allowed = sorted(_jsonable(status) for status in allowed_from)
        super().__init__(
            message
            or f"Cannot {operation} a session in status {_jsonable(current_status)}",
            operation=operation,
            current_status=current_status,
            allowed_from=allowed,
        )
        self.operation = operation
        self.current_status = current_status


class TimingWindowViolation(SessionError):
    error = "timing_window_violation"

    def __init__(self, operation: str, message: str, **details: Any) -> None:
        super().__init__(message, operation=operation, **details)
        self.operation = operation


class ValidationError(SessionError):
    error = "validation_error"

    def __init__(self, message: str, field: str | None = None, **details: Any) -> None:
        super().__init__(message, field=field, **details)
        self.field = field


class MissingRequiredField(ValidationError):
    error = "missing_required_field"


class ConflictError(SessionError):
    status_code = 409
    error = "conflict"

    def __init__(self, message: str, conflict: Any = None, **details: Any) -> None:
        if conflict is not None:
            details = {**conflict.as_dict(), **details}
        super().__init__(message, **details)
        self.conflict = conflict

    @classmethod
    def from_conflict(cls, conflict: Any) -> "ConflictError":
        return cls(
            f"{conflict.resource.capitalize()} {conflict.resource_id} is already booked by "
            f"session {conflict.session_id} from {conflict.start:%Y-%m-%d %H:%M} "
            f"to {conflict.end:%Y-%m-%d %H:%M}",
            conflict=conflict,
        )

    @classmethod
    def concurrent_write(cls, reason: str) -> "ConflictError":
        return cls(
            "The booking was rejected by the database because a concurrent write "
            "claimed the same slot",
            kind="concurrent_write",
            reason=reason,
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value
