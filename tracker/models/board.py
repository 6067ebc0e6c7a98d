"""Board structure models.

- Project: tenant-scoped container (company_id is the tenant id).
- Board: one kanban board per project view.
- BoardColumn: a lane on a board; its name/category become the status and
  category of issues moved into it. ``limit`` is the optional WIP cap.
- Epic / Sprint: only referenced here to validate issue links.
"""

import uuid

from tracker.extensions import db


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_id = db.Column(db.String(36), nullable=False, index=True)
    key = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    boards = db.relationship("Board", back_populates="project", lazy="dynamic")

    def __repr__(self):
        return f"<Project {self.key}>"


class Board(db.Model):
    __tablename__ = "boards"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    project = db.relationship("Project", back_populates="boards")
    columns = db.relationship(
        "BoardColumn",
        back_populates="board",
        lazy="dynamic",
        order_by="BoardColumn.position",
    )

    def __repr__(self):
        return f"<Board {self.name}>"


class BoardColumn(db.Model):
    __tablename__ = "board_columns"

    # -- Valid categories --
    CATEGORIES = ["TODO", "IN_PROGRESS", "DONE"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36), db.ForeignKey("boards.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(
        db.String(50), default="TODO", nullable=False
    )  # TODO | IN_PROGRESS | DONE
    position = db.Column(db.Integer, nullable=False, default=0)
    limit = db.Column(db.Integer, nullable=True)  # WIP cap, null = unlimited
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="columns")

    @property
    def project_id(self):
        return self.board.project_id if self.board else None

    @property
    def has_limit(self):
        return self.limit is not None and self.limit > 0

    def __repr__(self):
        return f"<BoardColumn {self.name}>"


class Epic(db.Model):
    __tablename__ = "epics"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id"), nullable=False
    )
    title = db.Column(db.String(255), nullable=False)

    def __repr__(self):
        return f"<Epic {self.title}>"


class Sprint(db.Model):
    __tablename__ = "sprints"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id"), nullable=False
    )
    title = db.Column(db.String(255), nullable=False)

    def __repr__(self):
        return f"<Sprint {self.title}>"
