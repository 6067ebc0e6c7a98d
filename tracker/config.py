import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Redis (read caches + board broadcasts) ---
    REDIS_URL = os.environ.get("REDIS_URL")
    CACHE_TTL_SECONDS = int(os.environ.get("CACHE_TTL_SECONDS", 3600))

    # --- Recurring issue scheduler ---
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED", "true")
    SCHEDULER_INTERVAL_SECONDS = int(os.environ.get("SCHEDULER_INTERVAL_SECONDS", 60))
    SCHEDULER_MAX_CATCHUP = int(os.environ.get("SCHEDULER_MAX_CATCHUP", 50))

    # --- Authorization verdict ---
    # Dotted path to a callable(actor_user_id, tenant_id) -> bool supplied by
    # the auth collaborator. None = any request carrying both ids passes.
    AUTHORIZER = os.environ.get("AUTHORIZER")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Rate limiting ---
    RATELIMIT_ENABLED = True
    MOVE_RATE_LIMIT = os.environ.get("MOVE_RATE_LIMIT", "120 per minute")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///tracker-dev.db"


class TestConfig(Config):
    """Testing — in-memory SQLite, no Redis, scheduler driven manually."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REDIS_URL = None
    SCHEDULER_ENABLED = False
    SCHEDULER_INTERVAL_SECONDS = 1
    SCHEDULER_MAX_CATCHUP = 50
    AUTHORIZER = None
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
