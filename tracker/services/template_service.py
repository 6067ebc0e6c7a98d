"""Recurring issue template service — create, list, update, (de)activate, delete.

The template's ``custom_config`` and ``template`` payload are validated
here, at the boundary, so the scheduler only ever reads well-formed data.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import date, datetime, time, timezone

import bleach

from tracker.errors import AuthorizationError, NotFoundError, ValidationError
from tracker.extensions import db
from tracker.models.board import Board, BoardColumn
from tracker.models.issue import Issue
from tracker.models.recurring import RecurringIssueTemplate
from tracker.services.issue_service import parse_story_points
from tracker.services.recurrence import anchor_monthly, config_to_dict, parse_recurrence

logger = logging.getLogger(__name__)

# Keys allowed in the template payload and their issue field names.
PAYLOAD_FIELDS = {
    "column_id": "column_id",
    "type": "type",
    "priority": "priority",
    "status": "status",
    "category": "category",
    "labels": "labels",
    "assignee_id": "assignee_user_id",
    "reporter_id": "reporter_user_id",
    "story_points": "story_points",
}


def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    if not isinstance(text, str):
        raise ValidationError(f"Expected text, got {type(text).__name__}")
    return bleach.clean(text, tags=[], strip=True).strip()


def _get_board(board_id, actor):
    board = db.session.get(Board, board_id) if board_id else None
    if board is None or board.project.company_id != actor.tenant_id:
        raise NotFoundError(f"Board with ID {board_id} not found", board_id=board_id)
    return board


def _get_template(template_id, actor):
    template = db.session.get(RecurringIssueTemplate, template_id)
    if template is None or template.board.project.company_id != actor.tenant_id:
        raise NotFoundError("Scheduled issue not found", template_id=template_id)
    return template


def _require_authorized(actor):
    if not actor.authorized:
        raise AuthorizationError("Not authorized to manage scheduled issues")


def as_utc(value):
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_template_payload(payload, board_id):
    """Validate the issue defaults carried by a template.

    Returns:
        A cleaned dict containing only known keys.

    Raises:
        ValidationError: unknown keys or invalid values.
    """
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationError("template must be an object")

    unknown = set(payload) - set(PAYLOAD_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown template field(s): {', '.join(sorted(unknown))}")

    cleaned = {k: v for k, v in payload.items() if v is not None}
    if "type" in cleaned and cleaned["type"] not in Issue.TYPES:
        raise ValidationError(f"Invalid type '{cleaned['type']}'")
    if "priority" in cleaned and cleaned["priority"] not in Issue.PRIORITIES:
        raise ValidationError(f"Invalid priority '{cleaned['priority']}'")
    if "category" in cleaned and cleaned["category"] not in BoardColumn.CATEGORIES:
        raise ValidationError(f"Invalid category '{cleaned['category']}'")
    if "labels" in cleaned:
        labels = cleaned["labels"]
        if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
            raise ValidationError("labels must be a list of strings")
    for key in ("status", "assignee_id", "reporter_id"):
        if key in cleaned and not isinstance(cleaned[key], str):
            raise ValidationError(f"{key} must be a string")
    if "story_points" in cleaned:
        cleaned["story_points"] = parse_story_points(cleaned["story_points"])
        if cleaned["story_points"] is None:
            del cleaned["story_points"]
    if "column_id" in cleaned:
        column = db.session.get(BoardColumn, cleaned["column_id"])
        if column is None or column.board_id != board_id:
            raise ValidationError("Template column must belong to the template's board")
    return cleaned


def issue_fields_from_template(template):
    """Issue data for one occurrence of ``template`` (column excluded)."""
    payload = template.template or {}
    fields = {
        "title": template.title,
        "description": template.description,
    }
    for key, issue_field in PAYLOAD_FIELDS.items():
        if key != "column_id" and payload.get(key) is not None:
            fields[issue_field] = payload[key]
    return fields


def _first_run_at(data):
    """First scheduled instant from ``next_run_at`` or ``start_date`` + ``time``."""
    if data.get("next_run_at"):
        try:
            moment = datetime.fromisoformat(str(data["next_run_at"]))
        except ValueError:
            raise ValidationError(f"Invalid next_run_at '{data['next_run_at']}'")
        return as_utc(moment)

    start_date, at = data.get("start_date"), data.get("time")
    if not start_date or not at:
        raise ValidationError("Please provide start_date and time (HH:MM)")
    try:
        day = date.fromisoformat(str(start_date))
        hours, minutes = (int(p) for p in str(at).split(":"))
        return datetime.combine(day, time(hours, minutes), tzinfo=timezone.utc)
    except ValueError:
        raise ValidationError(f"Invalid start_date/time '{start_date} {at}'")


def create_template(board_id, data, actor):
    """Create an active recurring template.

    Args:
        board_id: Board UUID the issues are created on.
        data: Dict with title, frequency, optional description,
            custom_config, template, and either next_run_at (ISO) or
            start_date (YYYY-MM-DD) + time (HH:MM, UTC).
        actor: Actor creating the template.

    Returns:
        The flushed RecurringIssueTemplate.
    """
    _require_authorized(actor)
    board = _get_board(board_id, actor)

    title = _sanitize(data.get("title"))
    if not title:
        raise ValidationError("Title is required.")

    frequency = data.get("frequency")
    first_run_at = _first_run_at(data)
    recurrence = anchor_monthly(
        parse_recurrence(frequency, data.get("custom_config")), first_run_at
    )

    template = RecurringIssueTemplate(
        board_id=board.id,
        title=title,
        description=_sanitize(data.get("description")) or None,
        frequency=frequency,
        custom_config=config_to_dict(recurrence),
        template=parse_template_payload(data.get("template"), board.id),
        next_run_at=first_run_at,
        is_active=True,
    )
    db.session.add(template)
    db.session.flush()

    logger.info(
        f"Scheduled issue created: {template.id} ({frequency}) on board {board.id}, "
        f"first run {template.next_run_at.isoformat()}"
    )
    return template


def list_templates(board_id, actor):
    """Templates of a board, newest first."""
    _get_board(board_id, actor)
    return (
        RecurringIssueTemplate.query
        .filter_by(board_id=board_id)
        .order_by(RecurringIssueTemplate.created_at.desc())
        .all()
    )


def update_template(template_id, fields, actor):
    """Partially update a template. Frequency and config are re-validated together."""
    _require_authorized(actor)
    template = _get_template(template_id, actor)

    if "title" in fields:
        title = _sanitize(fields["title"])
        if not title:
            raise ValidationError("Title is required.")
        template.title = title
    if "description" in fields:
        template.description = _sanitize(fields["description"]) or None
    if fields.get("next_run_at"):
        template.next_run_at = _first_run_at({"next_run_at": fields["next_run_at"]})
    if "frequency" in fields or "custom_config" in fields:
        frequency = fields.get("frequency", template.frequency)
        config = fields.get("custom_config", template.custom_config)
        recurrence = anchor_monthly(
            parse_recurrence(frequency, config), as_utc(template.next_run_at)
        )
        template.frequency = frequency
        template.custom_config = config_to_dict(recurrence)
    if "template" in fields:
        template.template = parse_template_payload(fields["template"], template.board_id)
    if "is_active" in fields:
        template.is_active = bool(fields["is_active"])

    template.updated_at = datetime.now(timezone.utc)
    db.session.flush()
    return template


def set_active(template_id, active, actor):
    """Activate or deactivate a template."""
    return update_template(template_id, {"is_active": active}, actor)


def delete_template(template_id, actor):
    _require_authorized(actor)
    template = _get_template(template_id, actor)
    db.session.delete(template)
    db.session.flush()
    logger.info(f"Scheduled issue deleted: {template_id}")
