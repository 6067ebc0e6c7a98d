"""Ordered position store.

Every rank shift for issues goes through PositionRepository so that the
dense-rank invariant (positions in a column are exactly 0..n-1) is
maintained in one place. Methods flush but do NOT commit — the calling
service owns the transaction and commits once per logical operation.
"""

from dataclasses import dataclass

from sqlalchemy import func

from tracker.extensions import db
from tracker.models.issue import Issue


@dataclass
class MoveResult:
    """Outcome of move_positions()."""

    old_column_id: str
    old_position: int
    new_column_id: str
    new_position: int

    @property
    def changed(self):
        return (self.old_column_id, self.old_position) != (
            self.new_column_id,
            self.new_position,
        )

    @property
    def cross_column(self):
        return self.old_column_id != self.new_column_id


class PositionRepository:
    def __init__(self, session=None):
        self.session = session or db.session

    def _column_query(self, column_id):
        return self.session.query(Issue).filter(Issue.column_id == column_id)

    def lock_issue(self, issue_id):
        """Re-read an issue row inside the current transaction.

        Uses SELECT ... FOR UPDATE where the backend supports it, so a
        concurrent mover blocks until this transaction commits.
        """
        return (
            self.session.query(Issue)
            .filter(Issue.id == issue_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def tail_position(self, column_id):
        """Next free rank at the bottom of a column (0 when empty)."""
        max_pos = (
            self.session.query(func.max(Issue.position))
            .filter(Issue.column_id == column_id)
            .scalar()
        )
        return max_pos + 1 if max_pos is not None else 0

    def occupancy(self, column_id, exclude_issue_id=None):
        query = self._column_query(column_id)
        if exclude_issue_id is not None:
            query = query.filter(Issue.id != exclude_issue_id)
        return query.count()

    def column_positions(self, column_id):
        """Positions of a column's issues in rank order."""
        rows = (
            self.session.query(Issue.position)
            .filter(Issue.column_id == column_id)
            .order_by(Issue.position)
            .all()
        )
        return [row[0] for row in rows]

    def close_gap(self, column_id, position):
        """Shift every issue ranked after ``position`` up by one."""
        self._column_query(column_id).filter(Issue.position > position).update(
            {Issue.position: Issue.position - 1}, synchronize_session="fetch"
        )

    def open_slot(self, column_id, position):
        """Shift every issue at or after ``position`` down by one."""
        self._column_query(column_id).filter(Issue.position >= position).update(
            {Issue.position: Issue.position + 1}, synchronize_session="fetch"
        )

    def move_positions(self, issue, dest_column, new_position):
        """Move ``issue`` to ``new_position`` in ``dest_column``.

        ``issue`` must be the row returned by lock_issue() in the current
        transaction. Positions past the end of the destination are
        clamped to its tail. On a cross-column move the issue takes the
        destination's name as status and its category.

        Returns:
            MoveResult describing the old and effective new slot.
        """
        old_column_id = issue.column_id
        old_position = issue.position

        if dest_column.id == old_column_id:
            last = self.occupancy(old_column_id) - 1
            new_position = min(new_position, max(last, 0))
            result = MoveResult(old_column_id, old_position, old_column_id, new_position)
            if not result.changed:
                return result

            query = self._column_query(old_column_id)
            if new_position > old_position:
                query.filter(
                    Issue.position > old_position,
                    Issue.position <= new_position,
                ).update(
                    {Issue.position: Issue.position - 1},
                    synchronize_session="fetch",
                )
            else:
                query.filter(
                    Issue.position >= new_position,
                    Issue.position < old_position,
                ).update(
                    {Issue.position: Issue.position + 1},
                    synchronize_session="fetch",
                )
            issue.position = new_position
        else:
            new_position = min(
                new_position, self.occupancy(dest_column.id, exclude_issue_id=issue.id)
            )
            result = MoveResult(old_column_id, old_position, dest_column.id, new_position)

            self.close_gap(old_column_id, old_position)
            self.open_slot(dest_column.id, new_position)

            issue.column_id = dest_column.id
            issue.board_id = dest_column.board_id
            issue.position = new_position
            issue.status = dest_column.name
            issue.category = dest_column.category

        self.session.flush()
        return result
