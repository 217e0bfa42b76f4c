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


def _coerce_int(value, default, *, minimum=None):
    """Parse an integer environment value, falling back to ``default`` when invalid."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(value)
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return default
    return number


class Config:
    # SECRET_KEY must be set via environment variable in production
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
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Attendance ingestion
    ATTENDANCE_STORAGE_DIR = os.environ.get("ATTENDANCE_STORAGE_DIR")
    ATTENDANCE_STORAGE_PREFIX = os.environ.get("ATTENDANCE_STORAGE_PREFIX", "attendance")
    # Lock a gathering's cohort eligibility after its first committed batch
    ATTENDANCE_LOCK_ON_COMMIT = _coerce_bool(os.environ.get("ATTENDANCE_LOCK_ON_COMMIT"), default=True)
    # Refuse further confirms for a locked gathering
    ATTENDANCE_SINGLE_INGESTION = _coerce_bool(os.environ.get("ATTENDANCE_SINGLE_INGESTION"), default=False)
    ATTENDANCE_RECORD_DUPLICATE_SCANS = _coerce_bool(
        os.environ.get("ATTENDANCE_RECORD_DUPLICATE_SCANS"),
        default=True,
    )
    ATTENDANCE_VERSION_RETRY_LIMIT = _coerce_int(os.environ.get("ATTENDANCE_VERSION_RETRY_LIMIT"), 3, minimum=0)
    ATTENDANCE_MAX_UPLOAD_MB = _coerce_int(os.environ.get("ATTENDANCE_MAX_UPLOAD_MB"), 10, minimum=1)

    # Worker
    ATTENDANCE_WORKER_ENABLED = _coerce_bool(os.environ.get("ATTENDANCE_WORKER_ENABLED"), default=False)
    ATTENDANCE_TASK_MAX_RETRIES = _coerce_int(os.environ.get("ATTENDANCE_TASK_MAX_RETRIES"), 5, minimum=0)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    # Keep the development database in the project's instance folder
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, including on Windows
    db_path = os.path.join(instance_path, "attendance_dev.db")
    db_path_normalized = db_path.replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                # Bounds roster and leave lookups; a timeout surfaces as a retryable fetch error
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    ATTENDANCE_WORKER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    if uri and uri.startswith("postgresql"):
        # Bound every statement so a stuck roster or leave query fails instead of hanging
        SQLALCHEMY_ENGINE_OPTIONS["connect_args"] = {
            "connect_timeout": 10,
            "options": "-c statement_timeout=15000",
        }
