# Models package — import all models here so Alembic can discover them.

from tracker.models.board import Board, BoardColumn, Epic, Project, Sprint  # noqa: F401
from tracker.models.issue import Issue  # noqa: F401
from tracker.models.history import HistoryEntry  # noqa: F401
from tracker.models.recurring import RecurringIssueTemplate  # noqa: F401
