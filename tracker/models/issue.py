"""Issue model.

Issues within one column carry a dense, zero-based ``position``. The
invariant ({0..n-1}, no duplicates) holds after every committed
transaction; positions are only ever shifted through
tracker.repositories.positions, never assigned ad hoc.
"""

import uuid

from tracker.extensions import db


class Issue(db.Model):
    __tablename__ = "issues"

    # -- Valid types --
    TYPES = ["TASK", "BUG", "STORY", "SUB_TASK"]

    # -- Valid priorities --
    PRIORITIES = ["LOW", "MEDIUM", "HIGH", "CRITICAL"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id"), nullable=False
    )
    board_id = db.Column(
        db.String(36), db.ForeignKey("boards.id"), nullable=False
    )
    column_id = db.Column(
        db.String(36), db.ForeignKey("board_columns.id"), nullable=False
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(255), nullable=False)  # mirrors column name
    category = db.Column(
        db.String(50), nullable=False, default="TODO"
    )  # mirrors column category
    type = db.Column(db.String(50), nullable=False, default="TASK")
    priority = db.Column(db.String(50), nullable=False, default="MEDIUM")
    labels = db.Column(db.JSON, default=list)
    story_points = db.Column(db.Integer, nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    reporter_user_id = db.Column(db.String(36), nullable=True)
    assignee_user_id = db.Column(db.String(36), nullable=True)
    epic_id = db.Column(
        db.String(36), db.ForeignKey("epics.id"), nullable=True
    )
    sprint_id = db.Column(
        db.String(36), db.ForeignKey("sprints.id"), nullable=True
    )
    parent_issue_id = db.Column(
        db.String(36), db.ForeignKey("issues.id"), nullable=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # Not unique: positions are transiently duplicated mid-shift.
    __table_args__ = (
        db.Index("ix_issues_column_position", "column_id", "position"),
        db.Index("ix_issues_project", "project_id"),
    )

    # --- Relationships ---
    project = db.relationship("Project")
    column = db.relationship("BoardColumn")
    sub_tasks = db.relationship(
        "Issue",
        backref=db.backref("parent_issue", remote_side=[id]),
        lazy="dynamic",
    )

    def to_dict(self):
        """Serialize to a JSON-safe dict (the shape used in board snapshots)."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "board_id": self.board_id,
            "column_id": self.column_id,
            "position": self.position,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "category": self.category,
            "type": self.type,
            "priority": self.priority,
            "labels": self.labels or [],
            "story_points": self.story_points,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "reporter_user_id": self.reporter_user_id,
            "assignee_user_id": self.assignee_user_id,
            "epic_id": self.epic_id,
            "sprint_id": self.sprint_id,
            "parent_issue_id": self.parent_issue_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Issue {self.title[:40]} col={self.column_id} pos={self.position}>"
