import os
import logging

import click
from flask import Flask

from tracker.config import config_by_name
from tracker.errors import register_error_handlers
from tracker.extensions import db, migrate, limiter, redis_store


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    redis_store.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from tracker import models  # noqa: F401

    # --- Tenant middleware ---
    from tracker.middleware.tenant import init_tenant_middleware
    init_tenant_middleware(app)

    # --- Register blueprints ---
    from tracker.blueprints.issues import issues_bp
    from tracker.blueprints.scheduled import scheduled_bp

    app.register_blueprint(issues_bp)
    app.register_blueprint(scheduled_bp)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("run-scheduler")
    @click.option("--interval", type=int, default=None, help="Seconds between polls.")
    def run_scheduler(interval):
        """Run the recurring issue scheduler in the foreground.

        Usage:
            flask run-scheduler
            flask run-scheduler --interval 30
        """
        import threading

        from tracker.services.scheduler_service import RecurrenceScheduler

        scheduler = RecurrenceScheduler(app, interval_seconds=interval)
        scheduler.start()
        click.echo(f"Scheduler running every {scheduler.interval}s. Ctrl+C to stop.")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.stop(timeout=10)

    @app.cli.command("scheduler-tick")
    def scheduler_tick():
        """Process due recurring templates once and exit (for cron).

        Usage:
            flask scheduler-tick
        """
        from tracker.services.scheduler_service import RecurrenceScheduler

        created = RecurrenceScheduler(app).tick()
        click.echo(f"Done: {created} issue(s) created from schedules.")
