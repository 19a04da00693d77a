from __future__ import annotations

from datetime import datetime
from typing import Optional

import click
from flask import Flask
from flask.cli import with_appcontext
from flask_restx import Api

from .config import Config, _normalise_prefix
from .database import configure_engine
from .errors import SessionError
from .extensions import db, migrate


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, static_folder=None)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    url_prefix = _normalise_prefix(app.config.get("URL_PREFIX", ""))
    app.config["URL_PREFIX"] = url_prefix

    db.init_app(app)
    migrate.init_app(app, db)
    with app.app_context():
        configure_engine(db.engine)

    from . import models  # noqa: F401  # Ensure models registered for migrations
    from .api import register_namespaces

    api = Api(
        app,
        version=app.config["API_VERSION"],
        title=app.config["API_TITLE"],
        doc=f"{url_prefix}/api/docs",
        prefix=f"{url_prefix}/api",
    )
    register_namespaces(api)

    _register_commands(app)
    return app


def _register_commands(app: Flask) -> None:
    @app.cli.command("seed")
    @with_appcontext
    def seed() -> None:
        """Seed reference data (subjects, teachers, rooms, groups, patterns)."""
        from .seed import seed_data

        db.create_all()
        seed_data()
        click.echo("Database seeded with sample data.")

    @app.cli.command("generate-sessions")
    @click.option("--group-id", type=int, required=True, help="Class group to generate for.")
    @click.option("--date-from", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
    @click.option("--date-to", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
    @click.option("--preview", is_flag=True, help="Show the sessions without saving them.")
    @with_appcontext
    def generate_sessions(
        group_id: int,
        date_from: Optional[datetime],
        date_to: Optional[datetime],
        preview: bool,
    ) -> None:
        """Materialise the weekly patterns of a group (default: the next four weeks)."""
        from .seed import default_generation_window
        from .sessions import SessionService

        start, end = default_generation_window()
        start = date_from.date() if date_from else start
        end = date_to.date() if date_to else end

        service = SessionService()
        try:
            if preview:
                sessions = service.preview_sessions(group_id, start, end)
            else:
                sessions = service.generate_sessions(group_id, start, end)
        except SessionError as exc:
            raise click.ClickException(exc.message) from exc

        verb = "would be created" if preview else "created"
        for session in sessions:
            click.echo(
                f"  {session.scheduled_start:%a %Y-%m-%d %H:%M}-{session.scheduled_end:%H:%M} "
                f"{session.mode.value}"
            )
        click.echo(f"{len(sessions)} session(s) {verb} for group {group_id}.")

    @app.cli.command("overdue-sessions")
    @with_appcontext
    def overdue_sessions() -> None:
        """List sessions still scheduled after their slot ended."""
        from .sessions import SessionService

        sessions = SessionService().overdue_sessions()
        for session in sessions:
            click.echo(
                f"  #{session.id} group {session.group_id} "
                f"{session.scheduled_start:%Y-%m-%d %H:%M}-{session.scheduled_end:%H:%M}"
            )
        click.echo(f"{len(sessions)} overdue session(s).")
