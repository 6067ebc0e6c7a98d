"""Shared test fixtures for the tracker test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, no Redis)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- fake_redis: in-memory recording Redis double bound to redis_store
- seed_data: tenant project with a board, three columns and an actor
"""

import pytest

from tracker import create_app
from tracker.extensions import db as _db, redis_store
from tracker.middleware.tenant import Actor
from tracker.models.board import Board, BoardColumn, Epic, Project, Sprint
from tracker.models.issue import Issue


class RecordingRedis:
    """Minimal stand-in for the redis client calls the app makes."""

    def __init__(self):
        self.store = {}
        self.published = []
        self.deleted = []
        self.fail_publish = False

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    def delete(self, *keys):
        self.deleted.extend(keys)
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def fake_redis():
    previous = redis_store.client
    redis_store.client = RecordingRedis()
    yield redis_store.client
    redis_store.client = previous


@pytest.fixture
def seed_data(app, db_session):
    """Seed one tenant's project with a board and three columns.

    Also seeds a second tenant's project so cross-tenant access can be
    checked. Returns a dict of plain ids plus the actor.
    """
    project = Project(company_id="company-1", key="MOM", name="Momentum")
    db_session.add(project)
    db_session.flush()

    board = Board(project_id=project.id, name="Main board")
    db_session.add(board)
    db_session.flush()

    todo = BoardColumn(board_id=board.id, name="To Do", category="TODO", position=0)
    doing = BoardColumn(board_id=board.id, name="In Progress", category="IN_PROGRESS", position=1)
    done = BoardColumn(board_id=board.id, name="Done", category="DONE", position=2)
    db_session.add_all([todo, doing, done])

    epic = Epic(project_id=project.id, title="Launch")
    sprint = Sprint(project_id=project.id, title="Sprint 1")
    db_session.add_all([epic, sprint])

    # --- Other tenant ---
    other_project = Project(company_id="company-2", key="OTH", name="Other")
    db_session.add(other_project)
    db_session.flush()
    other_board = Board(project_id=other_project.id, name="Other board")
    db_session.add(other_board)
    db_session.flush()
    other_column = BoardColumn(board_id=other_board.id, name="Backlog", category="TODO")
    db_session.add(other_column)

    # --- Same tenant, different project ---
    side_project = Project(company_id="company-1", key="SID", name="Side")
    db_session.add(side_project)
    db_session.flush()
    side_board = Board(project_id=side_project.id, name="Side board")
    db_session.add(side_board)
    db_session.flush()
    side_column = BoardColumn(board_id=side_board.id, name="Side To Do", category="TODO")
    db_session.add(side_column)

    db_session.commit()

    return {
        "actor": Actor(user_id="user-1", tenant_id="company-1"),
        "project_id": project.id,
        "board_id": board.id,
        "todo_id": todo.id,
        "doing_id": doing.id,
        "done_id": done.id,
        "epic_id": epic.id,
        "sprint_id": sprint.id,
        "other_column_id": other_column.id,
        "other_board_id": other_board.id,
        "side_column_id": side_column.id,
    }


def _column_issues(column_id):
    _db.session.expire_all()
    return Issue.query.filter_by(column_id=column_id).order_by(Issue.position).all()


@pytest.fixture
def positions():
    """Positions of a column's issues in rank order, read fresh from the DB."""
    return lambda column_id: [i.position for i in _column_issues(column_id)]


@pytest.fixture
def titles():
    """Titles of a column's issues in rank order."""
    return lambda column_id: [i.title for i in _column_issues(column_id)]
