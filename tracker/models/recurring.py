"""Recurring issue template model.

A template describes an issue the scheduler materializes on a schedule.
``custom_config`` and ``template`` are stored as JSON but are only ever
read through tracker.services.recurrence.parse_recurrence and
tracker.services.template_service, which validate their shape.
"""

import uuid

from tracker.extensions import db


class RecurringIssueTemplate(db.Model):
    __tablename__ = "recurring_issue_templates"

    # -- Valid frequencies --
    FREQUENCIES = ["DAILY", "WEEKLY", "MONTHLY", "CUSTOM"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36), db.ForeignKey("boards.id"), nullable=False
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    frequency = db.Column(db.String(20), nullable=False)  # DAILY | WEEKLY | MONTHLY | CUSTOM
    custom_config = db.Column(db.JSON, default=dict)
    template = db.Column(db.JSON, default=dict)
    next_run_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("ix_recurring_due", "is_active", "next_run_at"),
    )

    # --- Relationships ---
    board = db.relationship("Board")

    def to_dict(self):
        return {
            "id": self.id,
            "board_id": self.board_id,
            "title": self.title,
            "description": self.description,
            "frequency": self.frequency,
            "custom_config": self.custom_config or {},
            "template": self.template or {},
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<RecurringIssueTemplate {self.title[:40]} {self.frequency}>"
