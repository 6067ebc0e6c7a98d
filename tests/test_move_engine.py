"""Tests for the board move engine.

Covers:
- Issue creation (tail position, status/category from column, history)
- Same-column reorder up and down
- Moving to the current slot is a no-op (no history, no broadcast)
- Cross-column move (status/category overwrite, MOVE + status history)
- Position clamping past the destination tail
- WIP limit gate on moves and creates, never on in-place reorders
- Deletion compaction and the sub-task dependency guard
- Explicit category at create, non-string titles rejected
- Validation: negative/non-integer positions, project mismatch,
  cross-tenant access, negative authorization verdict
- Dense-rank invariant across a random sequence of operations
- Field updates with per-field history
"""

import random

import pytest

from tracker.errors import (
    AuthorizationError,
    CapacityError,
    DependencyError,
    InvalidPositionError,
    NotFoundError,
    ProjectMismatchError,
    ValidationError,
)
from tracker.extensions import db
from tracker.middleware.tenant import Actor
from tracker.models.board import BoardColumn
from tracker.models.history import HistoryEntry
from tracker.models.issue import Issue
from tracker.services import issue_service


# ─── Helpers ───────────────────────────────────────────────

def _create(seed_data, column_key, title, **fields):
    data = {"title": title, **fields}
    return issue_service.create_issue(seed_data[column_key], data, seed_data["actor"])


def _seed_todo(seed_data, *titles):
    return [_create(seed_data, "todo_id", t).id for t in titles]


def _set_limit(column_id, limit):
    column = db.session.get(BoardColumn, column_id)
    column.limit = limit
    db.session.commit()


def _history(issue_id, action=None):
    query = HistoryEntry.query.filter_by(entity_id=issue_id)
    if action:
        query = query.filter_by(action=action)
    return query.all()


# ─── Create ────────────────────────────────────────────────

class TestCreateIssue:

    def test_create_appends_at_tail(self, seed_data, positions, titles):
        _seed_todo(seed_data, "A", "B", "C")
        assert positions(seed_data["todo_id"]) == [0, 1, 2]
        assert titles(seed_data["todo_id"]) == ["A", "B", "C"]

    def test_create_in_empty_column_starts_at_zero(self, seed_data):
        issue = _create(seed_data, "doing_id", "First")
        assert issue.position == 0

    def test_create_takes_status_and_category_from_column(self, seed_data):
        issue = _create(seed_data, "doing_id", "Working")
        assert issue.status == "In Progress"
        assert issue.category == "IN_PROGRESS"
        assert issue.reporter_user_id == "user-1"
        assert issue.type == "TASK"
        assert issue.priority == "MEDIUM"

    def test_create_records_history(self, seed_data):
        issue = _create(seed_data, "todo_id", "Tracked")
        entries = _history(issue.id, "CREATE")
        assert len(entries) == 1
        assert entries[0].company_id == "company-1"
        assert entries[0].actor_user_id == "user-1"
        assert entries[0].new_value == "Tracked"

    def test_create_sanitizes_html(self, seed_data):
        issue = _create(
            seed_data, "todo_id", "<script>alert('x')</script>Fix login",
            description="<b>Bold</b> text",
        )
        assert "<script>" not in issue.title
        assert "Fix login" in issue.title
        assert issue.description == "Bold text"

    def test_create_requires_title(self, seed_data):
        with pytest.raises(ValueError, match="Title is required"):
            _create(seed_data, "todo_id", "   ")

    def test_create_rejects_non_string_title(self, seed_data):
        with pytest.raises(ValidationError, match="Expected text"):
            _create(seed_data, "todo_id", 123)

    def test_create_with_explicit_category(self, seed_data):
        issue = _create(seed_data, "todo_id", "Already shipped", category="DONE")
        assert issue.status == "To Do"
        assert issue.category == "DONE"

    def test_create_rejects_invalid_category(self, seed_data):
        with pytest.raises(ValidationError, match="category"):
            _create(seed_data, "todo_id", "Filed", category="ARCHIVED")

    def test_create_rejects_invalid_type(self, seed_data):
        with pytest.raises(ValidationError, match="Invalid type"):
            _create(seed_data, "todo_id", "Typed", type="EPIC")

    def test_create_links_epic_and_sprint(self, seed_data):
        issue = _create(
            seed_data, "todo_id", "Linked",
            epic_id=seed_data["epic_id"], sprint_id=seed_data["sprint_id"],
        )
        assert issue.epic_id == seed_data["epic_id"]
        assert issue.sprint_id == seed_data["sprint_id"]

    def test_create_rejects_unknown_epic(self, seed_data):
        with pytest.raises(NotFoundError, match="Epic"):
            _create(seed_data, "todo_id", "Linked", epic_id="missing-epic")

    def test_create_rejects_project_mismatch(self, seed_data):
        with pytest.raises(ProjectMismatchError):
            _create(seed_data, "todo_id", "Wrong", project_id="another-project")

    def test_sub_task_cannot_parent_sub_task(self, seed_data):
        parent = _create(seed_data, "todo_id", "Parent")
        child = _create(
            seed_data, "todo_id", "Child", type="SUB_TASK", parent_issue_id=parent.id,
        )
        with pytest.raises(ValidationError, match="nesting"):
            _create(
                seed_data, "todo_id", "Grandchild",
                type="SUB_TASK", parent_issue_id=child.id,
            )

    def test_create_in_other_tenant_column_is_not_found(self, seed_data):
        with pytest.raises(NotFoundError):
            _create(seed_data, "other_column_id", "Sneaky")

    def test_create_requires_positive_verdict(self, seed_data):
        actor = Actor(user_id="user-1", tenant_id="company-1", authorized=False)
        with pytest.raises(AuthorizationError):
            issue_service.create_issue(seed_data["todo_id"], {"title": "No"}, actor)
        assert Issue.query.count() == 0


# ─── Move ──────────────────────────────────────────────────

class TestMoveIssue:

    def test_move_down_within_column(self, seed_data, positions, titles):
        a, b, c = _seed_todo(seed_data, "A", "B", "C")
        result = issue_service.move_issue(
            a, seed_data["todo_id"], seed_data["todo_id"], 2, seed_data["actor"]
        )
        assert result.changed
        assert not result.cross_column
        assert titles(seed_data["todo_id"]) == ["B", "C", "A"]
        assert positions(seed_data["todo_id"]) == [0, 1, 2]

    def test_move_up_within_column(self, seed_data, positions, titles):
        a, b, c = _seed_todo(seed_data, "A", "B", "C")
        issue_service.move_issue(
            c, seed_data["todo_id"], seed_data["todo_id"], 0, seed_data["actor"]
        )
        assert titles(seed_data["todo_id"]) == ["C", "A", "B"]
        assert positions(seed_data["todo_id"]) == [0, 1, 2]

    def test_reorder_writes_no_move_history(self, seed_data):
        a, b = _seed_todo(seed_data, "A", "B")
        issue_service.move_issue(
            a, seed_data["todo_id"], seed_data["todo_id"], 1, seed_data["actor"]
        )
        assert _history(a, "MOVE") == []

    def test_move_to_same_slot_is_noop(self, seed_data, fake_redis, titles):
        a, b, c = _seed_todo(seed_data, "A", "B", "C")
        fake_redis.published.clear()
        history_before = HistoryEntry.query.count()

        result = issue_service.move_issue(
            b, seed_data["todo_id"], seed_data["todo_id"], 1, seed_data["actor"]
        )

        assert not result.changed
        assert titles(seed_data["todo_id"]) == ["A", "B", "C"]
        assert HistoryEntry.query.count() == history_before
        assert fake_redis.published == []

    def test_same_column_position_past_tail_is_clamped(self, seed_data, titles):
        a, b, c = _seed_todo(seed_data, "A", "B", "C")
        result = issue_service.move_issue(
            a, seed_data["todo_id"], seed_data["todo_id"], 99, seed_data["actor"]
        )
        assert result.new_position == 2
        assert titles(seed_data["todo_id"]) == ["B", "C", "A"]

    def test_cross_column_move(self, seed_data, positions, titles):
        a, b, c = _seed_todo(seed_data, "A", "B", "C")
        _create(seed_data, "doing_id", "X")

        result = issue_service.move_issue(
            b, seed_data["todo_id"], seed_data["doing_id"], 0, seed_data["actor"]
        )

        assert result.cross_column
        assert titles(seed_data["todo_id"]) == ["A", "C"]
        assert positions(seed_data["todo_id"]) == [0, 1]
        assert titles(seed_data["doing_id"]) == ["B", "X"]
        assert positions(seed_data["doing_id"]) == [0, 1]

        issue = db.session.get(Issue, b)
        assert issue.column_id == seed_data["doing_id"]
        assert issue.status == "In Progress"
        assert issue.category == "IN_PROGRESS"

    def test_cross_column_move_overwrites_custom_status(self, seed_data):
        issue = _create(seed_data, "todo_id", "Custom", status="Blocked")
        assert issue.status == "Blocked"
        issue_service.move_issue(
            issue.id, seed_data["todo_id"], seed_data["done_id"], 0, seed_data["actor"]
        )
        db.session.expire_all()
        moved = db.session.get(Issue, issue.id)
        assert moved.status == "Done"
        assert moved.category == "DONE"

    def test_cross_column_move_records_history(self, seed_data):
        (a,) = _seed_todo(seed_data, "A")
        issue_service.move_issue(
            a, seed_data["todo_id"], seed_data["doing_id"], 0, seed_data["actor"]
        )

        moves = _history(a, "MOVE")
        assert len(moves) == 1
        assert moves[0].field_changed == "column_id"
        assert moves[0].old_value == seed_data["todo_id"]
        assert moves[0].new_value == seed_data["doing_id"]
        assert moves[0].changes["to_column"] == "In Progress"

        status_updates = [e for e in _history(a, "UPDATE") if e.field_changed == "status"]
        assert len(status_updates) == 1
        assert status_updates[0].old_value == "To Do"
        assert status_updates[0].new_value == "In Progress"

    def test_cross_column_position_past_tail_is_clamped(self, seed_data, positions):
        (a,) = _seed_todo(seed_data, "A")
        _create(seed_data, "doing_id", "X")
        result = issue_service.move_issue(
            a, seed_data["todo_id"], seed_data["doing_id"], 10, seed_data["actor"]
        )
        assert result.new_position == 1
        assert positions(seed_data["doing_id"]) == [0, 1]

    def test_stale_source_column_uses_live_column(self, seed_data, positions, titles):
        a, b = _seed_todo(seed_data, "A", "B")
        issue_service.move_issue(
            a, seed_data["done_id"], seed_data["doing_id"], 0, seed_data["actor"]
        )
        assert titles(seed_data["todo_id"]) == ["B"]
        assert positions(seed_data["todo_id"]) == [0]
        assert titles(seed_data["doing_id"]) == ["A"]

    def test_negative_position_rejected(self, seed_data):
        (a,) = _seed_todo(seed_data, "A")
        with pytest.raises(InvalidPositionError):
            issue_service.move_issue(
                a, seed_data["todo_id"], seed_data["todo_id"], -1, seed_data["actor"]
            )

    def test_non_integer_position_rejected(self, seed_data):
        (a,) = _seed_todo(seed_data, "A")
        with pytest.raises(InvalidPositionError):
            issue_service.move_issue(
                a, seed_data["todo_id"], seed_data["todo_id"], "1", seed_data["actor"]
            )

    def test_unknown_issue_not_found(self, seed_data):
        with pytest.raises(NotFoundError):
            issue_service.move_issue(
                "missing", seed_data["todo_id"], seed_data["todo_id"], 0, seed_data["actor"]
            )

    def test_unknown_destination_not_found(self, seed_data):
        (a,) = _seed_todo(seed_data, "A")
        with pytest.raises(NotFoundError, match="Destination column"):
            issue_service.move_issue(
                a, seed_data["todo_id"], "missing", 0, seed_data["actor"]
            )

    def test_move_to_other_project_rejected(self, seed_data, positions):
        (a,) = _seed_todo(seed_data, "A")
        with pytest.raises(ProjectMismatchError):
            issue_service.move_issue(
                a, seed_data["todo_id"], seed_data["side_column_id"], 0, seed_data["actor"]
            )
        assert positions(seed_data["todo_id"]) == [0]
        assert positions(seed_data["side_column_id"]) == []

    def test_cross_tenant_move_is_not_found(self, seed_data):
        (a,) = _seed_todo(seed_data, "A")
        intruder = Actor(user_id="user-9", tenant_id="company-2")
        with pytest.raises(NotFoundError):
            issue_service.move_issue(
                a, seed_data["todo_id"], seed_data["doing_id"], 0, intruder
            )

    def test_negative_verdict_rejected(self, seed_data, titles):
        a, b = _seed_todo(seed_data, "A", "B")
        actor = Actor(user_id="user-1", tenant_id="company-1", authorized=False)
        with pytest.raises(AuthorizationError):
            issue_service.move_issue(
                a, seed_data["todo_id"], seed_data["todo_id"], 1, actor
            )
        assert titles(seed_data["todo_id"]) == ["A", "B"]


# ─── WIP Limit Gate ────────────────────────────────────────

class TestWipLimit:

    def test_move_into_full_column_rejected(self, seed_data, positions):
        a, b, c = _seed_todo(seed_data, "A", "B", "C")
        _set_limit(seed_data["doing_id"], 2)
        actor = seed_data["actor"]

        issue_service.move_issue(a, seed_data["todo_id"], seed_data["doing_id"], 0, actor)
        issue_service.move_issue(b, seed_data["todo_id"], seed_data["doing_id"], 1, actor)
        with pytest.raises(CapacityError, match="limit of 2"):
            issue_service.move_issue(c, seed_data["todo_id"], seed_data["doing_id"], 0, actor)

        assert positions(seed_data["doing_id"]) == [0, 1]
        assert positions(seed_data["todo_id"]) == [0]
        assert db.session.get(Issue, c).column_id == seed_data["todo_id"]

    def test_reorder_within_full_column_allowed(self, seed_data, titles):
        _create(seed_data, "doing_id", "X")
        y = _create(seed_data, "doing_id", "Y")
        _set_limit(seed_data["doing_id"], 2)

        issue_service.move_issue(
            y.id, seed_data["doing_id"], seed_data["doing_id"], 0, seed_data["actor"]
        )
        assert titles(seed_data["doing_id"]) == ["Y", "X"]

    def test_create_in_full_column_rejected(self, seed_data):
        _create(seed_data, "doing_id", "X")
        _create(seed_data, "doing_id", "Y")
        _set_limit(seed_data["doing_id"], 2)
        with pytest.raises(CapacityError):
            _create(seed_data, "doing_id", "Z")
        assert Issue.query.filter_by(column_id=seed_data["doing_id"]).count() == 2

    def test_zero_limit_is_unlimited(self, seed_data):
        _set_limit(seed_data["doing_id"], 0)
        for title in ("X", "Y", "Z"):
            _create(seed_data, "doing_id", title)
        assert Issue.query.filter_by(column_id=seed_data["doing_id"]).count() == 3


# ─── Delete ────────────────────────────────────────────────

class TestDeleteIssue:

    def test_delete_compacts_column(self, seed_data, positions, titles):
        a, b, c = _seed_todo(seed_data, "A", "B", "C")
        issue_service.delete_issue(b, seed_data["actor"])
        assert titles(seed_data["todo_id"]) == ["A", "C"]
        assert positions(seed_data["todo_id"]) == [0, 1]

    def test_delete_records_history(self, seed_data):
        (a,) = _seed_todo(seed_data, "A")
        issue_service.delete_issue(a, seed_data["actor"])
        entries = _history(a, "DELETE")
        assert len(entries) == 1
        assert entries[0].old_value == "A"
        assert entries[0].changes["full_issue_title"] == "A"

    def test_delete_with_sub_tasks_rejected(self, seed_data):
        parent = _create(seed_data, "todo_id", "Parent")
        child = _create(
            seed_data, "todo_id", "Child", type="SUB_TASK", parent_issue_id=parent.id,
        )
        with pytest.raises(DependencyError, match="1 sub-task"):
            issue_service.delete_issue(parent.id, seed_data["actor"])

        issue_service.delete_issue(child.id, seed_data["actor"])
        issue_service.delete_issue(parent.id, seed_data["actor"])
        assert Issue.query.count() == 0

    def test_delete_other_tenant_issue_not_found(self, seed_data):
        (a,) = _seed_todo(seed_data, "A")
        with pytest.raises(NotFoundError):
            issue_service.delete_issue(a, Actor(user_id="user-9", tenant_id="company-2"))
        assert db.session.get(Issue, a) is not None


# ─── Dense-rank invariant ──────────────────────────────────

class TestDenseRanks:

    def test_random_operation_sequence_keeps_ranks_dense(self, seed_data, positions):
        rng = random.Random(20261019)
        actor = seed_data["actor"]
        columns = [seed_data["todo_id"], seed_data["doing_id"], seed_data["done_id"]]
        live = []

        for step in range(60):
            roll = rng.random()
            if roll < 0.35 or not live:
                issue = issue_service.create_issue(
                    rng.choice(columns), {"title": f"Issue {step}"}, actor
                )
                live.append(issue.id)
            elif roll < 0.85:
                issue_id = rng.choice(live)
                source = db.session.get(Issue, issue_id).column_id
                issue_service.move_issue(
                    issue_id, source, rng.choice(columns), rng.randint(0, 8), actor
                )
            else:
                issue_id = live.pop(rng.randrange(len(live)))
                issue_service.delete_issue(issue_id, actor)

            for column_id in columns:
                ranks = positions(column_id)
                assert ranks == list(range(len(ranks))), f"step {step}: {ranks}"

        assert sum(len(positions(c)) for c in columns) == len(live)


# ─── Update ────────────────────────────────────────────────

class TestUpdateIssue:

    def test_update_records_one_entry_per_field(self, seed_data):
        issue = _create(seed_data, "todo_id", "Old title")
        issue_service.update_issue(
            issue.id,
            {"title": "New title", "priority": "HIGH", "labels": ["api"]},
            seed_data["actor"],
        )
        updates = {e.field_changed: e for e in _history(issue.id, "UPDATE")}
        assert set(updates) == {"title", "priority", "labels"}
        assert updates["title"].old_value == "Old title"
        assert updates["title"].new_value == "New title"
        assert updates["priority"].new_value == "HIGH"

    def test_update_without_changes_writes_nothing(self, seed_data):
        issue = _create(seed_data, "todo_id", "Same", priority="LOW")
        issue_service.update_issue(
            issue.id, {"title": "Same", "priority": "LOW"}, seed_data["actor"]
        )
        assert _history(issue.id, "UPDATE") == []

    def test_update_rejects_structural_fields(self, seed_data):
        issue = _create(seed_data, "todo_id", "Pinned")
        with pytest.raises(ValidationError, match="move endpoint"):
            issue_service.update_issue(
                issue.id, {"column_id": seed_data["doing_id"]}, seed_data["actor"]
            )

    def test_update_rejects_self_parent(self, seed_data):
        issue = _create(seed_data, "todo_id", "Loop")
        with pytest.raises(ValidationError, match="own parent"):
            issue_service.update_issue(
                issue.id, {"parent_issue_id": issue.id}, seed_data["actor"]
            )

    def test_update_rejects_invalid_priority(self, seed_data):
        issue = _create(seed_data, "todo_id", "Urgent")
        with pytest.raises(ValidationError, match="Invalid priority"):
            issue_service.update_issue(issue.id, {"priority": "URGENT"}, seed_data["actor"])
