"""History entry model.

Append-only record of every structural or field change to an issue.
Rows are inserted by tracker.services.history_service and never updated
or deleted.
"""

import uuid

from tracker.extensions import db


class HistoryEntry(db.Model):
    __tablename__ = "history_entries"

    # -- Valid actions --
    ACTIONS = ["CREATE", "UPDATE", "MOVE", "DELETE"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_id = db.Column(db.String(36), nullable=True, index=True)
    actor_user_id = db.Column(db.String(36), nullable=True)
    entity_type = db.Column(db.String(50), nullable=False, default="ISSUE")
    # No FK: entries outlive deleted issues.
    entity_id = db.Column(db.String(36), nullable=False, index=True)
    action = db.Column(db.String(20), nullable=False)  # CREATE | UPDATE | MOVE | DELETE
    field_changed = db.Column(db.String(100), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    changes = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "field_changed": self.field_changed,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changes": self.changes or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<HistoryEntry {self.action} {self.entity_id} {self.field_changed or ''}>"
