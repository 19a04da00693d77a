"""REST API definition using Flask-RESTX."""
from __future__ import annotations

from flask_restx import Api

from .health import ns as health_ns
from .sessions import ns as sessions_ns


def register_namespaces(api: Api) -> None:
    """Register all API namespaces."""
    api.add_namespace(health_ns, path="/health")
    api.add_namespace(sessions_ns, path="/sessions")
