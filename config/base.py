# config.py
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


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """
    Parse an integer setting, falling back to ``default`` and clamping to bounds.
    """
    try:
        number = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        number = default
    if minimum is not None:
        number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


def _coerce_float(value, default, *, minimum=0.0):
    try:
        number = float(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        number = default
    return max(minimum, number)


_config_dir = os.path.dirname(os.path.abspath(__file__))
_project_root = os.path.dirname(_config_dir)
_instance_path = os.path.join(_project_root, "instance")


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

    # HubSpot OAuth app and remote schema
    HUBSPOT_CLIENT_ID = os.environ.get("HUBSPOT_CLIENT_ID")
    HUBSPOT_CLIENT_SECRET = os.environ.get("HUBSPOT_CLIENT_SECRET")
    HUBSPOT_REDIRECT_URI = os.environ.get("HUBSPOT_REDIRECT_URI", "http://localhost:5000/oauth/callback")
    HUBSPOT_ACCOUNTS_OBJECT_TYPE_ID = os.environ.get("HUBSPOT_ACCOUNTS_OBJECT_TYPE_ID", "2-123456")
    HUBSPOT_TOKEN_FILE = os.environ.get(
        "HUBSPOT_TOKEN_FILE",
        os.path.join(_instance_path, ".oauth-tokens.json"),
    )
    HUBSPOT_API_BASE_URL = os.environ.get("HUBSPOT_API_BASE_URL", "https://api.hubapi.com")
    _raw_association_type = os.environ.get("HUBSPOT_ASSOCIATION_TYPE_ID")
    HUBSPOT_ASSOCIATION_TYPE_ID = _coerce_int(_raw_association_type, None) if _raw_association_type else None
    HUBSPOT_TIMEOUT_SECONDS = _coerce_float(os.environ.get("HUBSPOT_TIMEOUT_SECONDS"), 30.0, minimum=1.0)

    # Sync engine tuning
    SYNC_BATCH_SIZE = _coerce_int(os.environ.get("SYNC_BATCH_SIZE"), 100, minimum=1, maximum=100)
    SYNC_MAX_CONCURRENCY = _coerce_int(os.environ.get("SYNC_MAX_CONCURRENCY"), 5, minimum=1)
    SYNC_WAVE_COOLDOWN_SECONDS = _coerce_float(os.environ.get("SYNC_WAVE_COOLDOWN_SECONDS"), 1.0)
    SYNC_LOOKUP_DELAY_SECONDS = _coerce_float(os.environ.get("SYNC_LOOKUP_DELAY_SECONDS"), 0.1)

    # Uploads and background worker
    SYNC_WORKER_ENABLED = _coerce_bool(os.environ.get("SYNC_WORKER_ENABLED"), default=False)
    SYNC_UPLOAD_DIR = os.environ.get("SYNC_UPLOAD_DIR")
    SYNC_MAX_UPLOAD_MB = _coerce_int(os.environ.get("SYNC_MAX_UPLOAD_MB"), 50, minimum=1)
    MAX_CONTENT_LENGTH = SYNC_MAX_UPLOAD_MB * 1024 * 1024
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    JSON_SORT_KEYS = False


class DevelopmentConfig(Config):
    DEBUG = True
    instance_path = _instance_path

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SYNC_WORKER_ENABLED = False
    SYNC_WAVE_COOLDOWN_SECONDS = 0.0
    SYNC_LOOKUP_DELAY_SECONDS = 0.0


class ProductionConfig(Config):
    DEBUG = False
