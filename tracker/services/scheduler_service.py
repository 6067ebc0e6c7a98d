"""Recurring issue scheduler.

A polling worker: every ``interval`` seconds it selects active templates
whose ``next_run_at`` has passed and materializes one issue per missed
slot, up to ``max_catchup`` per template per tick.

Each occurrence is committed together with the template's advanced
``next_run_at``/``last_run_at``, so a crash mid catch-up neither loses
nor repeats a slot. A failure rolls back only that occurrence, is
logged, and leaves the template due for the next tick.

Running several scheduler processes against one database duplicates
issues; there is no leader election.

Usage:
    scheduler = RecurrenceScheduler(app)
    scheduler.start()
    ...
    scheduler.stop()

or a single pass (cron / CLI / tests):
    scheduler.tick()
"""

import logging
import threading
from datetime import datetime, timezone

from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from tracker.errors import InfrastructureError, NotFoundError
from tracker.extensions import db
from tracker.middleware.tenant import SYSTEM_USER_ID, Actor
from tracker.models.board import BoardColumn
from tracker.models.recurring import RecurringIssueTemplate
from tracker.services import issue_service, template_service
from tracker.services.recurrence import compute_next_run, parse_recurrence

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60
DEFAULT_MAX_CATCHUP = 50


def _utcnow():
    return datetime.now(timezone.utc)


class RecurrenceScheduler:
    """Injectable scheduler with explicit start()/stop()."""

    def __init__(self, app, interval_seconds=None, max_catchup=None, clock=None):
        self.app = app
        self.interval = interval_seconds or app.config.get(
            "SCHEDULER_INTERVAL_SECONDS", DEFAULT_INTERVAL_SECONDS
        )
        self.max_catchup = max_catchup or app.config.get(
            "SCHEDULER_MAX_CATCHUP", DEFAULT_MAX_CATCHUP
        )
        self.clock = clock or _utcnow
        self._stop_event = threading.Event()
        self._thread = None

    # ─── Lifecycle ───────────────────────────────────────────────

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            logger.info("Scheduler already running.")
            return
        logger.info(f"Starting recurrence scheduler (every {self.interval}s).")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="recurrence-scheduler", daemon=True
        )
        self._thread.start()

    def stop(self, timeout=None):
        if not self.running:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Scheduler stopped.")

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error processing due scheduled issues: {e}", exc_info=True)
            if self._stop_event.wait(self.interval):
                break

    # ─── Processing ──────────────────────────────────────────────

    def tick(self, now=None):
        """Process every due template once. Returns the number of issues created."""
        if has_app_context():
            return self._process_due(now)
        with self.app.app_context():
            return self._process_due(now)

    def _process_due(self, now=None):
        now = now or self.clock()
        due = (
            RecurringIssueTemplate.query
            .filter(
                RecurringIssueTemplate.is_active.is_(True),
                RecurringIssueTemplate.next_run_at <= now,
            )
            .order_by(RecurringIssueTemplate.next_run_at.asc())
            .all()
        )
        if due:
            logger.info(f"Found {len(due)} due scheduled issue(s).")

        created = 0
        for template_id in [t.id for t in due]:
            try:
                created += self.run_template(template_id, now)
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to execute scheduled issue {template_id}: {e}", exc_info=True)
        return created

    def _resolve_column(self, template):
        """Template's configured column, else the board's first column."""
        column_id = (template.template or {}).get("column_id")
        if column_id:
            column = db.session.get(BoardColumn, column_id)
            if column is not None and column.board_id == template.board_id:
                return column
            logger.warning(
                f"Column {column_id} of scheduled issue {template.id} is gone; "
                "falling back to the board's first column."
            )
        column = (
            BoardColumn.query
            .filter_by(board_id=template.board_id)
            .order_by(BoardColumn.position.asc())
            .first()
        )
        if column is None:
            raise NotFoundError(
                f"No column found for board {template.board_id}", template_id=template.id
            )
        return column

    def run_template(self, template_id, now):
        """Catch up one template. Returns the number of issues created."""
        template = db.session.get(RecurringIssueTemplate, template_id)
        recurrence = parse_recurrence(template.frequency, template.custom_config)
        column = self._resolve_column(template)
        fields = template_service.issue_fields_from_template(template)
        actor = Actor(
            user_id=fields.get("reporter_user_id") or SYSTEM_USER_ID,
            tenant_id=template.board.project.company_id,
        )

        next_run_at = template_service.as_utc(template.next_run_at)
        iterations = 0
        while next_run_at <= now and iterations < self.max_catchup:
            logger.info(
                f"Executing run #{iterations + 1} for {template.title} "
                f"(scheduled {next_run_at.isoformat()})"
            )
            try:
                issue = issue_service.stage_issue(column, fields, actor, enforce_limit=False)
                next_run_at = compute_next_run(next_run_at, recurrence)
                template.next_run_at = next_run_at
                template.last_run_at = self.clock()
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise InfrastructureError(
                    f"Database error while materializing scheduled issue {template_id}: {e}",
                    template_id=template_id,
                ) from e
            except Exception:
                db.session.rollback()
                raise

            logger.info(f"Created issue {issue.id} from schedule {template_id}")
            issue_service.publish_issue_change(
                "create",
                issue.id,
                issue.project_id,
                issue.board_id,
                actor,
                column_ids=[issue.column_id],
                parent_issue_ids=[issue.parent_issue_id],
            )
            iterations += 1

        if iterations >= self.max_catchup:
            logger.warning(
                f"Scheduled issue {template_id} reached max catch-up limit "
                f"({self.max_catchup}). Remaining runs resume next tick."
            )
        return iterations
