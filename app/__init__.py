from __future__ import annotations

import logging

import click
from flask import Flask, jsonify

from app.core.auth import auth_bp
from app.core.config import Config
from app.core.extensions import db, login_manager, migrate
from app.core.models import User, seed_demo_data
from app.lifecycle import lifecycle_bp
from app.lifecycle.errors import LifecycleError


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(lifecycle_bp)

    register_cli(app)
    register_error_handlers(app)
    return app


def configure_logging(app: Flask) -> None:
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL") or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("app").setLevel(level)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(LifecycleError)
    def lifecycle_error(error: LifecycleError):
        if error.status_code >= 500:
            app.logger.warning("Request failed: %s", error)
        return jsonify({"error": str(error)}), error.status_code

    @app.errorhandler(401)
    def unauthorized(_error):
        return jsonify({"error": "No autorizado"}), 401

    @app.errorhandler(403)
    def forbidden(_error):
        return jsonify({"error": "Acceso denegado"}), 403

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Recurso no encontrado"}), 404


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo clinic data."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("scan-stalled-cases")
    @click.option("--threshold-days", type=int, default=None, help="Days without a status change.")
    def scan_stalled_cases_command(threshold_days: int | None) -> None:
        """Flag and notify cases stuck in the same status."""
        from app.lifecycle.services import scan_stalled

        flagged = scan_stalled(threshold_days)
        click.echo(f"Stalled cases flagged: {len(flagged)} {flagged if flagged else ''}".rstrip())

    @app.cli.command("repair-assignments")
    def repair_assignments_command() -> None:
        """Deactivate duplicate active assignments, keeping the most recent."""
        from app.lifecycle.assignments import duplicate_groups
        from app.lifecycle.services import repair_all_duplicate_assignments

        groups = duplicate_groups()
        if not groups:
            click.echo("No duplicate assignments found.")
            return
        for case_id, term_code in groups:
            click.echo(f"[case {case_id}] term={term_code} has duplicates")
        total = repair_all_duplicate_assignments()
        click.echo(f"Assignments deactivated: {total}")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))
