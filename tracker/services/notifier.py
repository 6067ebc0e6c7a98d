"""Change notifier — full-snapshot broadcasts to board subscribers.

Instead of diffs, every mutation publishes the complete ordered issue list
of the affected project to the Redis channel ``board_<board_id>``. Socket
gateways subscribe to those channels and forward ``board_updated`` events
to the browsers in the room.

Each payload carries the action, the affected issue id and the acting
user id (so the originating client can skip its own refresh). Moves also
carry a ``version`` that strictly increases within a process so clients
can drop out-of-order deliveries.

Broadcasting is fire-and-forget: failures are logged and never raised.
"""

import json
import logging
import threading
import time

from tracker.extensions import redis_store
from tracker.models.issue import Issue

logger = logging.getLogger(__name__)

BOARD_EVENT = "board_updated"
ACTIONS = ("create", "update", "move", "delete")


def board_room(board_id):
    return f"board_{board_id}"


def project_snapshot(project_id):
    """All issues of a project ordered by column then rank, as dicts."""
    issues = (
        Issue.query
        .filter_by(project_id=project_id)
        .order_by(Issue.column_id.asc(), Issue.position.asc())
        .all()
    )
    return [i.to_dict() for i in issues]


class BoardNotifier:
    """Builds and publishes board snapshots."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last_version = 0

    def next_version(self):
        """Millisecond clock, bumped when needed so values never repeat."""
        with self._lock:
            version = max(time.time_ns() // 1_000_000, self._last_version + 1)
            self._last_version = version
            return version

    def build_payload(self, board_id, project_id, action, issue_id, actor_id):
        if action not in ACTIONS:
            raise ValueError(f"Unknown broadcast action '{action}'")
        payload = {
            "board_id": board_id,
            "issues": project_snapshot(project_id),
            "action": action,
            "issue_id": issue_id,
            "actor_id": actor_id,
        }
        if action == "move":
            payload["version"] = self.next_version()
        return payload

    def broadcast(self, board_id, project_id, action, issue_id, actor_id):
        """Publish a snapshot for ``board_id``.

        Returns:
            The payload that was built, or None if building it failed.
            A payload is returned even when Redis is disabled or the
            publish fails.
        """
        if not board_id:
            logger.warning(f"No board id for {action} broadcast of issue {issue_id}")
            return None
        try:
            payload = self.build_payload(board_id, project_id, action, issue_id, actor_id)
        except Exception as e:
            logger.error(f"Failed to build {action} snapshot for board {board_id}: {e}", exc_info=True)
            return None

        room = board_room(board_id)
        if not redis_store.enabled:
            logger.debug(f"Broadcast skipped (Redis disabled): {action} -> {room}")
            return payload
        try:
            message = json.dumps({"event": BOARD_EVENT, "data": payload})
            redis_store.client.publish(room, message)
            logger.info(f"Emitted '{BOARD_EVENT}' to room '{room}' after issue {action}")
        except Exception as e:
            logger.error(f"Failed to emit '{BOARD_EVENT}' to room '{room}': {e}")
        return payload


notifier = BoardNotifier()
