"""Cache invalidation coordinator and read-through helpers.

Derived read caches live in Redis under these keys:

    project:<id>:issues    ordered issue list for a project
    column:<id>:issues     ordered issue list for one column
    issue:<id>:details     single issue payload
    issue:<id>:subtasks    sub-task list of a parent issue

Every mutation calls invalidate_for_issue() after its transaction commits.
Redis errors are logged and swallowed here: a stale or missing cache must
never fail the mutation that triggered it.
"""

import json
import logging

import redis
from flask import current_app

from tracker.extensions import redis_store

logger = logging.getLogger(__name__)


def project_issues_key(project_id):
    return f"project:{project_id}:issues"


def column_issues_key(column_id):
    return f"column:{column_id}:issues"


def issue_details_key(issue_id):
    return f"issue:{issue_id}:details"


def issue_subtasks_key(issue_id):
    return f"issue:{issue_id}:subtasks"


def invalidate(*keys):
    """Delete the given cache keys. Returns the number of keys requested."""
    keys = [k for k in keys if k]
    if not keys or not redis_store.enabled:
        return 0
    try:
        redis_store.client.delete(*keys)
        logger.info(f"Invalidated cache keys: {', '.join(keys)}")
    except redis.RedisError as e:
        logger.error(f"Redis DEL error for {keys}: {e}")
    return len(keys)


def invalidate_for_issue(project_id, issue_id, column_ids=(), parent_issue_ids=()):
    """Invalidate every cache an issue mutation can make stale."""
    keys = [project_issues_key(project_id), issue_details_key(issue_id)]
    keys.extend(column_issues_key(c) for c in dict.fromkeys(column_ids) if c)
    for parent_id in dict.fromkeys(parent_issue_ids):
        if parent_id:
            keys.append(issue_subtasks_key(parent_id))
            keys.append(issue_details_key(parent_id))
    return invalidate(*keys)


def get_cached(key):
    """Return the decoded JSON value for ``key`` or None on miss/error."""
    if not redis_store.enabled:
        return None
    try:
        raw = redis_store.client.get(key)
    except redis.RedisError as e:
        logger.error(f"Redis GET error for {key}: {e}")
        return None
    if raw is None:
        logger.debug(f"Cache miss: {key}")
        return None
    logger.debug(f"Cache hit: {key}")
    return json.loads(raw)


def set_cached(key, value):
    if not redis_store.enabled:
        return
    ttl = current_app.config.get("CACHE_TTL_SECONDS", 3600)
    try:
        redis_store.client.set(key, json.dumps(value), ex=ttl)
    except redis.RedisError as e:
        logger.error(f"Redis SET error for {key}: {e}")
