"""Healthcheck endpoint."""
from __future__ import annotations

from flask import current_app
from flask_restx import Namespace, Resource
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db


ns = Namespace("health", description="Service health status")


@ns.route("")
class HealthResource(Resource):
    """Simple health check returning database connectivity."""

    def get(self) -> dict[str, str]:
        try:
            db.session.execute(text("SELECT 1"))
            db_ok = "ok"
        except SQLAlchemyError as exc:  # pragma: no cover - log failure
            current_app.logger.error("Database health check failed: %s", exc)
            db.session.rollback()
            db_ok = "error"
        return {"status": "ok", "database": db_ok}
