"""Audit recorder — append-only history for issues.

Functions add rows to the session but do NOT commit — the caller commits,
so history lands in the same transaction as the change it describes.
"""

from tracker.extensions import db
from tracker.models.history import HistoryEntry


def record(action, issue_id, actor, field_changed=None, old_value=None,
           new_value=None, changes=None):
    """Stage one HistoryEntry.

    Args:
        action: One of HistoryEntry.ACTIONS.
        issue_id: The issue the entry describes.
        actor: Actor performing the change (user + tenant).
        field_changed / old_value / new_value: Optional field-level detail.
            Values are stored as strings.
        changes: Optional dict of extra context.

    Returns:
        The staged HistoryEntry.
    """
    if action not in HistoryEntry.ACTIONS:
        raise ValueError(f"Unknown history action '{action}'")

    entry = HistoryEntry(
        company_id=actor.tenant_id,
        actor_user_id=actor.user_id,
        entity_type="ISSUE",
        entity_id=issue_id,
        action=action,
        field_changed=field_changed,
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
        changes=changes or {},
    )
    db.session.add(entry)
    return entry


def list_history(issue_id, tenant_id):
    """History entries for one issue, oldest first, scoped to a tenant."""
    return (
        HistoryEntry.query
        .filter_by(entity_id=issue_id, company_id=tenant_id)
        .order_by(HistoryEntry.created_at.asc())
        .all()
    )
