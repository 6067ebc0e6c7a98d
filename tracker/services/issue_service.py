"""Issue service — create, move/reorder, update, delete and cached reads.

Every structural operation runs as ONE database transaction: the live
issue row is re-read (FOR UPDATE where supported), positions are shifted
through PositionRepository, history rows are staged, and the session is
committed once. Only after the commit do we invalidate caches and
broadcast the board snapshot, so subscribers never see uncommitted ranks.

Unlike the other services, the public mutators here commit themselves —
the commit is the boundary between the transactional work and the
post-commit side effects. stage_issue() is the exception: it flushes
only, so the scheduler can commit an issue together with its own
bookkeeping.
"""

import logging
from datetime import datetime, timezone

import bleach
from sqlalchemy.exc import SQLAlchemyError

from tracker.errors import (
    AuthorizationError,
    DependencyError,
    InfrastructureError,
    InvalidPositionError,
    NotFoundError,
    ProjectMismatchError,
    TrackerError,
    ValidationError,
)
from tracker.extensions import db
from tracker.models.board import BoardColumn, Epic, Project, Sprint
from tracker.models.issue import Issue
from tracker.repositories.positions import PositionRepository
from tracker.services import cache_service, history_service
from tracker.services.notifier import notifier
from tracker.services.wip_gate import check_capacity

logger = logging.getLogger(__name__)

# Fields update_issue() accepts. Column, position and status only change
# through move_issue().
UPDATABLE_FIELDS = (
    "title",
    "description",
    "type",
    "priority",
    "assignee_user_id",
    "labels",
    "due_date",
    "epic_id",
    "sprint_id",
    "parent_issue_id",
    "story_points",
)


# ─── Helpers ─────────────────────────────────────────────────────

def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    if not isinstance(text, str):
        raise ValidationError(f"Expected text, got {type(text).__name__}")
    return bleach.clean(text, tags=[], strip=True).strip()


def _require_authorized(actor):
    if not actor.authorized:
        raise AuthorizationError(
            "Not authorized to modify issues in this workspace",
            actor_id=actor.user_id,
        )


def _get_column(column_id, actor, label="Column"):
    """Load a column scoped to the actor's tenant, or raise NotFoundError."""
    column = db.session.get(BoardColumn, column_id) if column_id else None
    if column is None or column.board.project.company_id != actor.tenant_id:
        raise NotFoundError(f"{label} with ID {column_id} not found", column_id=column_id)
    return column


def _get_issue(issue_id, actor):
    """Load an issue scoped to the actor's tenant, or raise NotFoundError."""
    issue = db.session.get(Issue, issue_id) if issue_id else None
    if issue is None or issue.project.company_id != actor.tenant_id:
        raise NotFoundError(f"Issue with ID {issue_id} not found", issue_id=issue_id)
    return issue


def _get_project(project_id, actor):
    project = db.session.get(Project, project_id) if project_id else None
    if project is None or project.company_id != actor.tenant_id:
        raise NotFoundError(f"Project with ID {project_id} not found", project_id=project_id)
    return project


def _parse_due_date(value):
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid due date '{value}'")


def parse_story_points(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid story points '{value}'")


def _validate_choice(value, choices, label):
    if value not in choices:
        raise ValidationError(
            f"Invalid {label} '{value}'. Must be one of: {', '.join(choices)}"
        )


def _validate_links(project_id, epic_id=None, sprint_id=None,
                    parent_issue_id=None, issue_type=None, issue_id=None):
    """Linked epic/sprint/parent must exist and live in the same project."""
    if parent_issue_id:
        if issue_id is not None and parent_issue_id == issue_id:
            raise ValidationError("An issue cannot be its own parent.")
        parent = db.session.get(Issue, parent_issue_id)
        if parent is None:
            raise NotFoundError(f"Parent issue with ID {parent_issue_id} not found.")
        if parent.project_id != project_id:
            raise ProjectMismatchError("Parent issue must belong to the same project.")
        if issue_type == "SUB_TASK" and parent.type == "SUB_TASK":
            raise ValidationError(
                "A sub-task cannot be a parent of another sub-task (nesting level 1)."
            )
    if epic_id:
        epic = db.session.get(Epic, epic_id)
        if epic is None:
            raise NotFoundError(f"Epic with ID {epic_id} not found.")
        if epic.project_id != project_id:
            raise ProjectMismatchError("Epic must belong to the same project.")
    if sprint_id:
        sprint = db.session.get(Sprint, sprint_id)
        if sprint is None:
            raise NotFoundError(f"Sprint with ID {sprint_id} not found.")
        if sprint.project_id != project_id:
            raise ProjectMismatchError("Sprint must belong to the same project.")


def _commit(operation, **context):
    """Commit the session, translating storage failures."""
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Transaction failed during {operation}: {e} context={context}", exc_info=True)
        raise InfrastructureError(f"Database error during {operation}: {e}", **context) from e


def _run_in_transaction(operation, work, **context):
    """Run ``work()`` and commit; roll back on any failure.

    Domain errors propagate unchanged, storage errors become
    InfrastructureError.
    """
    try:
        result = work()
    except TrackerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Transaction failed during {operation}: {e} context={context}", exc_info=True)
        raise InfrastructureError(f"Database error during {operation}: {e}", **context) from e
    _commit(operation, **context)
    return result


def publish_issue_change(action, issue_id, project_id, board_id, actor,
                         column_ids=(), parent_issue_ids=()):
    """Post-commit side effects: cache invalidation then board broadcast."""
    cache_service.invalidate_for_issue(
        project_id, issue_id, column_ids=column_ids, parent_issue_ids=parent_issue_ids
    )
    return notifier.broadcast(board_id, project_id, action, issue_id, actor.user_id)


# ─── Create ──────────────────────────────────────────────────────

def stage_issue(column, data, actor, enforce_limit=True):
    """Insert a new issue at the tail of ``column``. Flushes, does NOT commit.

    Args:
        column: Destination BoardColumn (already tenant-checked).
        data: Dict of issue fields (title required; see UPDATABLE_FIELDS,
            plus optional status, category and reporter_user_id).
        actor: Actor creating the issue.
        enforce_limit: Apply the WIP gate. The scheduler passes False.

    Returns:
        The flushed Issue.
    """
    title = _sanitize(data.get("title"))
    if not title:
        raise ValidationError("Title is required.")

    project_id = column.project_id
    if data.get("project_id") and data["project_id"] != project_id:
        raise ProjectMismatchError(
            "Column does not belong to this project",
            column_id=column.id,
            project_id=data["project_id"],
        )

    issue_type = data.get("type") or "TASK"
    priority = data.get("priority") or "MEDIUM"
    _validate_choice(issue_type, Issue.TYPES, "type")
    _validate_choice(priority, Issue.PRIORITIES, "priority")

    category = data.get("category") or column.category or "TODO"
    _validate_choice(category, BoardColumn.CATEGORIES, "category")

    _validate_links(
        project_id,
        epic_id=data.get("epic_id"),
        sprint_id=data.get("sprint_id"),
        parent_issue_id=data.get("parent_issue_id"),
        issue_type=issue_type,
    )

    repo = PositionRepository()
    if enforce_limit:
        check_capacity(column, repo=repo)

    issue = Issue(
        project_id=project_id,
        board_id=column.board_id,
        column_id=column.id,
        position=repo.tail_position(column.id),
        title=title,
        description=_sanitize(data.get("description")) or None,
        status=data.get("status") or column.name,
        category=category,
        type=issue_type,
        priority=priority,
        labels=list(data.get("labels") or []),
        story_points=parse_story_points(data.get("story_points")),
        due_date=_parse_due_date(data.get("due_date")),
        reporter_user_id=data.get("reporter_user_id") or actor.user_id,
        assignee_user_id=data.get("assignee_user_id"),
        epic_id=data.get("epic_id"),
        sprint_id=data.get("sprint_id"),
        parent_issue_id=data.get("parent_issue_id"),
    )
    db.session.add(issue)
    db.session.flush()

    history_service.record(
        "CREATE",
        issue.id,
        actor,
        new_value=issue.title,
        changes={"initial_status": issue.status, "type": issue.type},
    )
    db.session.flush()
    return issue


def create_issue(column_id, data, actor):
    """Create an issue at the bottom of a column.

    Raises:
        AuthorizationError, NotFoundError, ProjectMismatchError,
        ValidationError, CapacityError, InfrastructureError.
    """
    _require_authorized(actor)
    column = _get_column(column_id, actor)

    issue = _run_in_transaction(
        "create issue",
        lambda: stage_issue(column, data, actor),
        column_id=column_id,
    )
    logger.info(
        f"Issue created: ID {issue.id} in column {column.id} at position "
        f"{issue.position} by user {actor.user_id}"
    )

    publish_issue_change(
        "create",
        issue.id,
        issue.project_id,
        issue.board_id,
        actor,
        column_ids=[issue.column_id],
        parent_issue_ids=[issue.parent_issue_id],
    )
    return issue


# ─── Move ────────────────────────────────────────────────────────

def move_issue(issue_id, source_column_id, dest_column_id, new_position, actor):
    """Reorder an issue within its column or move it to another column.

    Positions past the destination's tail are clamped to the tail. Moving
    to the current slot is a no-op: nothing is written or broadcast.

    Returns:
        MoveResult with the old and effective new slot.

    Raises:
        InvalidPositionError, AuthorizationError, NotFoundError,
        ProjectMismatchError, CapacityError, InfrastructureError.
    """
    if isinstance(new_position, bool) or not isinstance(new_position, int):
        raise InvalidPositionError(f"Position must be an integer, got {new_position!r}")
    if new_position < 0:
        raise InvalidPositionError("Position cannot be negative", position=new_position)

    _require_authorized(actor)
    issue = _get_issue(issue_id, actor)
    dest_column = _get_column(dest_column_id, actor, label="Destination column")
    source_column = _get_column(source_column_id, actor, label="Source column")

    if not (issue.project_id == dest_column.project_id == source_column.project_id):
        raise ProjectMismatchError(
            "Issue, source column, and destination column must belong to the same project",
            issue_id=issue_id,
        )

    repo = PositionRepository()

    def work():
        live = repo.lock_issue(issue_id)
        if live is None:
            raise NotFoundError(f"Issue with ID {issue_id} not found", issue_id=issue_id)
        if live.column_id != source_column_id:
            logger.warning(
                f"Move of issue {issue_id}: client source column {source_column_id} "
                f"is stale, issue is in {live.column_id}"
            )

        check_capacity(dest_column, live, repo=repo)

        old_status = live.status
        old_column_name = live.column.name if live.column else None
        result = repo.move_positions(live, dest_column, new_position)
        if not result.changed or not result.cross_column:
            return result

        history_service.record(
            "MOVE",
            issue_id,
            actor,
            field_changed="column_id",
            old_value=result.old_column_id,
            new_value=result.new_column_id,
            changes={"from_column": old_column_name, "to_column": dest_column.name},
        )
        if live.status != old_status:
            history_service.record(
                "UPDATE",
                issue_id,
                actor,
                field_changed="status",
                old_value=old_status,
                new_value=live.status,
            )
        return result

    result = _run_in_transaction("move issue", work, issue_id=issue_id)

    if not result.changed:
        logger.info(f"Move of issue {issue_id} to its current slot ignored.")
        return result

    logger.info(
        f"Issue moved: ID {issue_id} {result.old_column_id}[{result.old_position}] -> "
        f"{result.new_column_id}[{result.new_position}] by user {actor.user_id}"
    )
    publish_issue_change(
        "move",
        issue_id,
        issue.project_id,
        dest_column.board_id,
        actor,
        column_ids=[result.old_column_id, result.new_column_id],
        parent_issue_ids=[issue.parent_issue_id],
    )
    return result


# ─── Update ──────────────────────────────────────────────────────

def _normalize(field, value):
    """Coerce an incoming value to its stored form for comparison."""
    if field == "title":
        return _sanitize(value)
    if field == "description":
        return _sanitize(value) or None
    if field == "story_points":
        return parse_story_points(value)
    if field == "due_date":
        return _parse_due_date(value)
    if field == "labels":
        return list(value or [])
    if field.endswith("_id"):
        return value or None
    return value


def _as_utc(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _differs(field, old, new):
    if field == "labels":
        return sorted(old or []) != sorted(new or [])
    if field == "due_date":
        return _as_utc(old) != _as_utc(new)
    return old != new


def update_issue(issue_id, fields, actor):
    """Change non-structural issue fields, one history row per change.

    Raises:
        ValidationError: unknown or structural field, invalid value.
        AuthorizationError, NotFoundError, ProjectMismatchError,
        InfrastructureError.
    """
    _require_authorized(actor)

    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Cannot update field(s): {', '.join(sorted(unknown))}. "
            "Use the move endpoint to change column or position."
        )

    issue = _get_issue(issue_id, actor)

    changes = {}
    for field in UPDATABLE_FIELDS:
        if field not in fields:
            continue
        new_value = _normalize(field, fields[field])
        old_value = getattr(issue, field)
        if _differs(field, old_value, new_value):
            changes[field] = (old_value, new_value)

    if not changes:
        logger.info(f"Issue update requested for ID {issue_id} but no field values changed.")
        return issue

    if "title" in changes and not changes["title"][1]:
        raise ValidationError("Title is required.")
    if "type" in changes:
        _validate_choice(changes["type"][1], Issue.TYPES, "type")
    if "priority" in changes:
        _validate_choice(changes["priority"][1], Issue.PRIORITIES, "priority")

    _validate_links(
        issue.project_id,
        epic_id=changes.get("epic_id", (None, None))[1],
        sprint_id=changes.get("sprint_id", (None, None))[1],
        parent_issue_id=changes.get("parent_issue_id", (None, None))[1],
        issue_type=changes.get("type", (None, issue.type))[1],
        issue_id=issue.id,
    )

    old_parent_id = issue.parent_issue_id

    def work():
        for field, (old_value, new_value) in changes.items():
            setattr(issue, field, new_value)
            history_service.record(
                "UPDATE",
                issue.id,
                actor,
                field_changed=field,
                old_value=old_value,
                new_value=new_value,
            )
        issue.updated_at = datetime.now(timezone.utc)
        db.session.flush()
        return issue

    _run_in_transaction("update issue", work, issue_id=issue_id)
    logger.info(
        f"Issue updated: ID {issue_id} by user {actor.user_id}. "
        f"Changes: {', '.join(changes)}"
    )

    publish_issue_change(
        "update",
        issue.id,
        issue.project_id,
        issue.board_id,
        actor,
        column_ids=[issue.column_id],
        parent_issue_ids=[old_parent_id, issue.parent_issue_id],
    )
    return issue


# ─── Delete ──────────────────────────────────────────────────────

def delete_issue(issue_id, actor):
    """Delete an issue and close the gap it leaves in its column.

    Raises:
        DependencyError: the issue still has sub-tasks.
        AuthorizationError, NotFoundError, InfrastructureError.
    """
    _require_authorized(actor)
    issue = _get_issue(issue_id, actor)

    sub_task_count = issue.sub_tasks.count()
    if sub_task_count > 0:
        raise DependencyError(
            f"Cannot delete issue {issue_id} as it has {sub_task_count} sub-task(s). "
            "Resolve sub-tasks first.",
            issue_id=issue_id,
        )

    project_id = issue.project_id
    project_key = issue.project.key
    board_id = issue.board_id
    parent_issue_id = issue.parent_issue_id
    repo = PositionRepository()

    def work():
        live = repo.lock_issue(issue_id)
        if live is None:
            raise NotFoundError(f"Issue with ID {issue_id} not found", issue_id=issue_id)
        column_id, position = live.column_id, live.position

        history_service.record(
            "DELETE",
            issue_id,
            actor,
            old_value=live.title,
            changes={"full_issue_title": live.title, "issue_key": f"{project_key}-{issue_id}"},
        )
        db.session.delete(live)
        db.session.flush()
        repo.close_gap(column_id, position)
        return column_id

    column_id = _run_in_transaction("delete issue", work, issue_id=issue_id)
    logger.info(f"Issue deleted: ID {issue_id} from project {project_id} by user {actor.user_id}.")

    publish_issue_change(
        "delete",
        issue_id,
        project_id,
        board_id,
        actor,
        column_ids=[column_id],
        parent_issue_ids=[parent_issue_id],
    )


# ─── Cached reads ────────────────────────────────────────────────

def list_project_issues(project_id, actor):
    """Ordered issue list for a project (column, then rank)."""
    _get_project(project_id, actor)
    key = cache_service.project_issues_key(project_id)
    cached = cache_service.get_cached(key)
    if cached is not None:
        return cached

    issues = (
        Issue.query
        .filter_by(project_id=project_id)
        .order_by(Issue.column_id.asc(), Issue.position.asc())
        .all()
    )
    result = [i.to_dict() for i in issues]
    cache_service.set_cached(key, result)
    return result


def list_column_issues(column_id, actor):
    """Issues of one column in rank order."""
    _get_column(column_id, actor)
    key = cache_service.column_issues_key(column_id)
    cached = cache_service.get_cached(key)
    if cached is not None:
        return cached

    issues = Issue.query.filter_by(column_id=column_id).order_by(Issue.position.asc()).all()
    result = [i.to_dict() for i in issues]
    cache_service.set_cached(key, result)
    return result


def get_subtasks(issue_id, actor):
    _get_issue(issue_id, actor)
    key = cache_service.issue_subtasks_key(issue_id)
    cached = cache_service.get_cached(key)
    if cached is not None:
        return cached

    subtasks = (
        Issue.query
        .filter_by(parent_issue_id=issue_id)
        .order_by(Issue.position.asc())
        .all()
    )
    result = [s.to_dict() for s in subtasks]
    cache_service.set_cached(key, result)
    return result


def get_issue(issue_id, actor):
    """Issue details with sub-tasks and history."""
    key = cache_service.issue_details_key(issue_id)
    issue = _get_issue(issue_id, actor)
    cached = cache_service.get_cached(key)
    if cached is not None:
        return cached

    result = issue.to_dict()
    result["sub_tasks"] = [
        s.to_dict() for s in issue.sub_tasks.order_by(Issue.position.asc()).all()
    ]
    result["history"] = [
        h.to_dict() for h in history_service.list_history(issue_id, actor.tenant_id)
    ]
    cache_service.set_cached(key, result)
    return result
