# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value, default, *, minimum=None):
    """
    Parse an integer environment value, falling back to ``default`` when unset or invalid.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return default
    return number


class Config:
    # SECRET_KEY must be set via environment variable in production.
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable for any shared deployment.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Sync feature flags
    SYNC_ENABLED = _coerce_bool(os.environ.get("SYNC_ENABLED"), default=False)
    SYNC_WORKER_ENABLED = _coerce_bool(os.environ.get("SYNC_WORKER_ENABLED"), default=False)

    # PracticePanther credentials and endpoints
    PRACTICE_PANTHER_BASE_URL = os.environ.get(
        "PRACTICE_PANTHER_BASE_URL", "https://app.practicepanther.com/api/v2"
    )
    PRACTICE_PANTHER_TOKEN_URL = os.environ.get(
        "PRACTICE_PANTHER_TOKEN_URL", "https://app.practicepanther.com/OAuth/Token"
    )
    PRACTICE_PANTHER_ACCESS_TOKEN = os.environ.get("PRACTICE_PANTHER_ACCESS_TOKEN")
    PRACTICE_PANTHER_REFRESH_TOKEN = os.environ.get("PRACTICE_PANTHER_REFRESH_TOKEN")
    PP_CLIENT_ID = os.environ.get("PP_CLIENT_ID")
    PP_CLIENT_SECRET = os.environ.get("PP_CLIENT_SECRET")
    PRACTICE_PANTHER_ACCOUNT = os.environ.get("PRACTICE_PANTHER_ACCOUNT", "default")

    # Fetch and upsert tuning
    SYNC_PAGE_SIZE = _parse_int(os.environ.get("SYNC_PAGE_SIZE"), 100, minimum=1)
    SYNC_REQUEST_TIMEOUT = _parse_int(os.environ.get("SYNC_REQUEST_TIMEOUT"), 30, minimum=1)
    SYNC_MAX_RATE_LIMIT_RETRIES = _parse_int(os.environ.get("SYNC_MAX_RATE_LIMIT_RETRIES"), 5, minimum=1)
    SYNC_BATCH_SIZE_CONTACTS = _parse_int(os.environ.get("SYNC_BATCH_SIZE_CONTACTS"), 50, minimum=1)
    SYNC_BATCH_SIZE_MATTERS = _parse_int(os.environ.get("SYNC_BATCH_SIZE_MATTERS"), 25, minimum=1)
    SYNC_BATCH_SIZE_TASKS = _parse_int(os.environ.get("SYNC_BATCH_SIZE_TASKS"), 100, minimum=1)
    SYNC_UPSERT_MAX_WORKERS = _parse_int(os.environ.get("SYNC_UPSERT_MAX_WORKERS"), None, minimum=1)
    SYNC_STALE_RUN_MINUTES = _parse_int(os.environ.get("SYNC_STALE_RUN_MINUTES"), 360, minimum=1)
    SYNC_RUN_RETENTION_DAYS = _parse_int(os.environ.get("SYNC_RUN_RETENTION_DAYS"), 30, minimum=1)

    # Scheduling and worker wiring
    SYNC_FULL_SCHEDULE_HOUR = _parse_int(os.environ.get("SYNC_FULL_SCHEDULE_HOUR"), 2)
    SYNC_FULL_SCHEDULE_MINUTE = _parse_int(os.environ.get("SYNC_FULL_SCHEDULE_MINUTE"), 0)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    # Use instance folder for database to avoid conflicts
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (forward slashes on Windows too)
    db_path_normalized = os.path.join(instance_path, "exchange_sync_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    SYNC_ENABLED = True
    SYNC_WORKER_ENABLED = False
    # SQLite serializes writers; one upsert thread keeps tests deterministic.
    SYNC_UPSERT_MAX_WORKERS = 1
    PRACTICE_PANTHER_ACCESS_TOKEN = "test-access-token"
    PP_CLIENT_ID = None
    PP_CLIENT_SECRET = None


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
