"""Session endpoints: booking, generation, lifecycle and follow-up queries."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from flask import current_app, request
from flask_restx import Namespace, Resource, fields

from ..errors import SessionError, ValidationError
from ..models import Session, SessionMode, SessionStatus, SessionType
from ..postponement import RescheduleRequest
from ..queries import SessionFilters
from ..sessions import SessionService


ns = Namespace("sessions", description="Concrete class sessions and their lifecycle")

session_model = ns.model(
    "Session",
    {
        "id": fields.Integer(readonly=True),
        "group_id": fields.Integer,
        "subject_id": fields.Integer,
        "teacher_id": fields.Integer,
        "origin_pattern_id": fields.Integer,
        "origin_date": fields.String(description="Pattern occurrence, YYYY-MM-DD"),
        "type": fields.String(enum=[t.value for t in SessionType]),
        "status": fields.String(enum=[s.value for s in SessionStatus]),
        "mode": fields.String(enum=[m.value for m in SessionMode]),
        "scheduled_start": fields.String(description="ISO 8601 datetime"),
        "scheduled_end": fields.String(description="ISO 8601 datetime"),
        "session_date": fields.String(description="YYYY-MM-DD"),
        "actual_start": fields.String,
        "actual_end": fields.String,
        "duration_minutes": fields.Integer,
        "room_id": fields.Integer,
        "remote_meeting_id": fields.String,
        "original_session_id": fields.Integer,
        "recovery_for_session_id": fields.Integer,
        "cancellation_reason": fields.String,
        "postponement_reason": fields.String,
        "notes": fields.String,
        "topics_covered": fields.String,
    },
)

session_page_model = ns.model(
    "SessionPage",
    {
        "items": fields.List(fields.Nested(session_model)),
        "total": fields.Integer,
        "page": fields.Integer,
        "per_page": fields.Integer,
        "pages": fields.Integer,
    },
)

create_model = ns.model(
    "SessionCreate",
    {
        "type": fields.String(required=True, enum=[t.value for t in SessionType]),
        "mode": fields.String(enum=[m.value for m in SessionMode], default="IN_PERSON"),
        "scheduled_start": fields.String(required=True, description="ISO 8601 datetime"),
        "scheduled_end": fields.String(required=True, description="ISO 8601 datetime"),
        "group_id": fields.Integer,
        "subject_id": fields.Integer,
        "teacher_id": fields.Integer,
        "room_id": fields.Integer,
        "remote_meeting_id": fields.String,
        "origin_pattern_id": fields.Integer,
        "recovery_for_session_id": fields.Integer,
        "notes": fields.String,
    },
)

generate_model = ns.model(
    "SessionGeneration",
    {
        "group_id": fields.Integer(required=True),
        "date_from": fields.String(required=True, description="YYYY-MM-DD"),
        "date_to": fields.String(required=True, description="YYYY-MM-DD"),
    },
)

notes_model = ns.model("SessionStart", {"notes": fields.String})

complete_model = ns.model(
    "SessionComplete",
    {
        "topics_covered": fields.String(required=True),
        "notes": fields.String,
    },
)

reason_model = ns.model("SessionCancel", {"reason": fields.String(required=True)})

reschedule_model = ns.model(
    "SessionSlot",
    {
        "start": fields.String(required=True, description="ISO 8601 datetime"),
        "end": fields.String(required=True, description="ISO 8601 datetime"),
        "mode": fields.String(enum=[m.value for m in SessionMode]),
        "room_id": fields.Integer,
        "remote_meeting_id": fields.String,
        "teacher_id": fields.Integer,
    },
)

postpone_model = ns.model(
    "SessionPostpone",
    {
        "reason": fields.String(required=True),
        "reschedule": fields.Nested(reschedule_model, allow_null=True),
    },
)

mode_model = ns.model(
    "SessionModeChange",
    {
        "mode": fields.String(required=True, enum=[m.value for m in SessionMode]),
        "room_id": fields.Integer,
        "remote_meeting_id": fields.String,
        "reason": fields.String,
    },
)

move_model = ns.model(
    "SessionReschedule",
    {
        "scheduled_start": fields.String(required=True, description="ISO 8601 datetime"),
        "scheduled_end": fields.String(required=True, description="ISO 8601 datetime"),
        "room_id": fields.Integer,
    },
)


def _isoformat(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_session(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "group_id": session.group_id,
        "subject_id": session.subject_id,
        "teacher_id": session.teacher_id,
        "origin_pattern_id": session.origin_pattern_id,
        "origin_date": _isoformat(session.origin_date),
        "type": SessionType(session.type).value,
        "status": SessionStatus(session.status).value,
        "mode": SessionMode(session.mode).value,
        "scheduled_start": _isoformat(session.scheduled_start),
        "scheduled_end": _isoformat(session.scheduled_end),
        "session_date": _isoformat(session.session_date),
        "actual_start": _isoformat(session.actual_start),
        "actual_end": _isoformat(session.actual_end),
        "duration_minutes": session.duration_minutes,
        "room_id": session.room_id,
        "remote_meeting_id": session.remote_meeting_id,
        "original_session_id": session.original_session_id,
        "recovery_for_session_id": session.recovery_for_session_id,
        "cancellation_reason": session.cancellation_reason,
        "postponement_reason": session.postponement_reason,
        "notes": session.notes,
        "topics_covered": session.topics_covered,
    }


def _service() -> SessionService:
    return SessionService(clock=current_app.config.get("SESSION_CLOCK") or datetime.now)


def _parse_datetime(value: str | None, field: str) -> datetime:
    if not value:
        raise ValidationError(f"{field} is required", field=field)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO 8601 datetime", field=field) from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _parse_date(value: str | None, field: str) -> date | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError(f"{field} must be formatted YYYY-MM-DD", field=field) from exc


def _int_arg(name: str, default: int | None = None) -> int | None:
    value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", field=name) from exc


def _enum_arg(enum_type, name: str):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return enum_type(value.upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown {name} {value!r}", field=name) from exc


@ns.errorhandler(SessionError)
def handle_session_error(error: SessionError) -> tuple[dict[str, Any], int]:
    current_app.logger.info("%s: %s", error.error, error.message)
    return error.to_dict(), error.status_code


@ns.route("")
class SessionList(Resource):
    @ns.param("group_id", "Filter by class group")
    @ns.param("teacher_id", "Filter by teacher")
    @ns.param("subject_id", "Filter by subject")
    @ns.param("room_id", "Filter by room")
    @ns.param("pattern_id", "Filter by origin pattern")
    @ns.param("type", "REGULAR|RECOVERY|EXTRA")
    @ns.param("status", "SCHEDULED|IN_PROGRESS|COMPLETED|POSTPONED|CANCELLED")
    @ns.param("mode", "IN_PERSON|DUAL|ONLINE")
    @ns.param("date_from", "YYYY-MM-DD")
    @ns.param("date_to", "YYYY-MM-DD")
    @ns.param("page", "Page number, starting at 1")
    @ns.param("per_page", "Page size")
    @ns.marshal_with(session_page_model)
    def get(self) -> dict[str, Any]:
        filters = SessionFilters(
            group_id=_int_arg("group_id"),
            teacher_id=_int_arg("teacher_id"),
            subject_id=_int_arg("subject_id"),
            room_id=_int_arg("room_id"),
            origin_pattern_id=_int_arg("pattern_id"),
            type=_enum_arg(SessionType, "type"),
            status=_enum_arg(SessionStatus, "status"),
            mode=_enum_arg(SessionMode, "mode"),
            date_from=_parse_date(request.args.get("date_from"), "date_from"),
            date_to=_parse_date(request.args.get("date_to"), "date_to"),
            page=_int_arg("page", 1),
            per_page=_int_arg("per_page", 50),
        )
        page = _service().list_sessions(filters)
        return {
            "items": [serialize_session(session) for session in page.items],
            "total": page.total,
            "page": page.page,
            "per_page": page.per_page,
            "pages": page.pages,
        }

    @ns.expect(create_model, validate=True)
    @ns.marshal_with(session_model, code=201)
    def post(self) -> tuple[dict[str, Any], int]:
        payload = request.json or {}
        session = _service().create_session(
            type=payload["type"],
            mode=payload.get("mode") or SessionMode.IN_PERSON,
            scheduled_start=_parse_datetime(payload.get("scheduled_start"), "scheduled_start"),
            scheduled_end=_parse_datetime(payload.get("scheduled_end"), "scheduled_end"),
            group_id=payload.get("group_id"),
            subject_id=payload.get("subject_id"),
            teacher_id=payload.get("teacher_id"),
            room_id=payload.get("room_id"),
            remote_meeting_id=payload.get("remote_meeting_id"),
            origin_pattern_id=payload.get("origin_pattern_id"),
            recovery_for_session_id=payload.get("recovery_for_session_id"),
            notes=payload.get("notes"),
        )
        return serialize_session(session), 201


def _generation_args(payload: dict[str, Any]) -> tuple[int, date, date]:
    return (
        payload["group_id"],
        _parse_date(payload["date_from"], "date_from"),
        _parse_date(payload["date_to"], "date_to"),
    )


@ns.route("/generate")
class SessionGenerate(Resource):
    @ns.expect(generate_model, validate=True)
    @ns.marshal_list_with(session_model, code=201)
    def post(self) -> tuple[list[dict[str, Any]], int]:
        sessions = _service().generate_sessions(*_generation_args(request.json or {}))
        return [serialize_session(session) for session in sessions], 201


@ns.route("/preview")
class SessionPreview(Resource):
    @ns.expect(generate_model, validate=True)
    @ns.marshal_list_with(session_model)
    def post(self) -> list[dict[str, Any]]:
        sessions = _service().preview_sessions(*_generation_args(request.json or {}))
        return [serialize_session(session) for session in sessions]


@ns.route("/requiring-action")
class SessionsRequiringAction(Resource):
    @ns.marshal_list_with(session_model)
    def get(self) -> list[dict[str, Any]]:
        return [serialize_session(s) for s in _service().sessions_requiring_action()]


@ns.route("/upcoming")
@ns.param("group_id", "Restrict to one class group")
@ns.param("limit", "Maximum number of sessions")
class UpcomingSessions(Resource):
    @ns.marshal_list_with(session_model)
    def get(self) -> list[dict[str, Any]]:
        sessions = _service().upcoming_sessions(
            limit=_int_arg("limit", 20), group_id=_int_arg("group_id")
        )
        return [serialize_session(session) for session in sessions]


@ns.route("/<int:session_id>")
class SessionResource(Resource):
    @ns.marshal_with(session_model)
    def get(self, session_id: int) -> dict[str, Any]:
        return serialize_session(_service().get_session(session_id))


@ns.route("/<int:session_id>/chain")
class SessionChain(Resource):
    @ns.marshal_list_with(session_model)
    def get(self, session_id: int) -> list[dict[str, Any]]:
        return [serialize_session(s) for s in _service().recovery_chain(session_id)]


@ns.route("/<int:session_id>/start")
class SessionStart(Resource):
    @ns.expect(notes_model)
    @ns.marshal_with(session_model)
    def post(self, session_id: int) -> dict[str, Any]:
        payload = request.get_json(silent=True) or {}
        return serialize_session(_service().start_session(session_id, payload.get("notes")))


@ns.route("/<int:session_id>/complete")
class SessionComplete(Resource):
    @ns.expect(complete_model, validate=True)
    @ns.marshal_with(session_model)
    def post(self, session_id: int) -> dict[str, Any]:
        payload = request.json or {}
        session = _service().complete_session(
            session_id, payload.get("topics_covered"), payload.get("notes")
        )
        return serialize_session(session)


@ns.route("/<int:session_id>/cancel")
class SessionCancel(Resource):
    @ns.expect(reason_model, validate=True)
    @ns.marshal_with(session_model)
    def post(self, session_id: int) -> dict[str, Any]:
        payload = request.json or {}
        return serialize_session(_service().cancel_session(session_id, payload.get("reason")))


@ns.route("/<int:session_id>/postpone")
class SessionPostpone(Resource):
    @ns.expect(postpone_model, validate=True)
    @ns.marshal_with(session_model)
    def post(self, session_id: int) -> dict[str, Any]:
        """Postpone a session; with ``reschedule`` the new recovery session is returned."""

        payload = request.json or {}
        reschedule = None
        slot = payload.get("reschedule")
        if slot:
            reschedule = RescheduleRequest(
                start=_parse_datetime(slot.get("start"), "reschedule.start"),
                end=_parse_datetime(slot.get("end"), "reschedule.end"),
                mode=slot.get("mode"),
                room_id=slot.get("room_id"),
                remote_meeting_id=slot.get("remote_meeting_id"),
                teacher_id=slot.get("teacher_id"),
            )
        session = _service().postpone_session(session_id, payload.get("reason"), reschedule)
        return serialize_session(session)


@ns.route("/<int:session_id>/mode")
class SessionModeChange(Resource):
    @ns.expect(mode_model, validate=True)
    @ns.marshal_with(session_model)
    def post(self, session_id: int) -> dict[str, Any]:
        payload = request.json or {}
        session = _service().change_session_mode(
            session_id,
            payload.get("mode"),
            room_id=payload.get("room_id"),
            remote_meeting_id=payload.get("remote_meeting_id"),
            reason=payload.get("reason"),
        )
        return serialize_session(session)


@ns.route("/<int:session_id>/reschedule")
class SessionReschedule(Resource):
    @ns.expect(move_model, validate=True)
    @ns.marshal_with(session_model)
    def post(self, session_id: int) -> dict[str, Any]:
        payload = request.json or {}
        session = _service().reschedule_session(
            session_id,
            _parse_datetime(payload.get("scheduled_start"), "scheduled_start"),
            _parse_datetime(payload.get("scheduled_end"), "scheduled_end"),
            room_id=payload.get("room_id"),
        )
        return serialize_session(session)
