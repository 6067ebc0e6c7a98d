"""WIP limit gate.

Blocks net increases to a column's occupancy once it reaches its limit.
Reordering an issue that already lives in the column never counts as an
increase, so a full column can always be rearranged.
"""

import logging

from tracker.errors import CapacityError
from tracker.repositories.positions import PositionRepository

logger = logging.getLogger(__name__)


def check_capacity(column, issue=None, repo=None):
    """Raise CapacityError if ``issue`` may not enter ``column``.

    Args:
        column: Destination BoardColumn.
        issue: The issue being moved, or None for a new issue.
        repo: Optional PositionRepository (defaults to the app session).

    Raises:
        CapacityError: column is at or over its limit and the issue is not
            already resident there.
    """
    if not column.has_limit:
        return
    if issue is not None and issue.column_id == column.id:
        return

    repo = repo or PositionRepository()
    count = repo.occupancy(
        column.id, exclude_issue_id=issue.id if issue is not None else None
    )
    if count >= column.limit:
        logger.info(
            f"WIP gate rejected entry to column {column.id} ({count}/{column.limit})"
        )
        raise CapacityError(
            f"Column '{column.name}' has reached its limit of {column.limit} issues",
            column_id=column.id,
            limit=column.limit,
            count=count,
        )
