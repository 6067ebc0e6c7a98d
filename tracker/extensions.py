"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

import logging

import redis
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)


class RedisStore:
    """Holds the shared Redis client used for read caches and board broadcasts.

    ``client`` stays None when REDIS_URL is not configured; callers treat
    that as "cache and broadcast disabled" rather than an error.
    """

    def __init__(self):
        self.client = None

    def init_app(self, app):
        url = app.config.get("REDIS_URL")
        if url:
            self.client = redis.from_url(url, decode_responses=True)
            logger.info("Redis configured for caches and board broadcasts.")
        else:
            self.client = None
            logger.info("REDIS_URL not set — caching and broadcasts disabled.")
        app.extensions["redis_store"] = self

    @property
    def enabled(self):
        return self.client is not None


db = SQLAlchemy()
migrate = Migrate()
redis_store = RedisStore()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit — we apply per-route
    storage_uri="memory://",
)
