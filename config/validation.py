# config/validation.py

"""
Environment variable validation for the subscription sync service.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

_PLACEHOLDER_SECRETS = {"your-secret-key", "your_secret_key"}


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in _PLACEHOLDER_SECRETS:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    for name in ("HUBSPOT_CLIENT_ID", "HUBSPOT_CLIENT_SECRET"):
        if not os.environ.get(name):
            errors.append(f"{name} is required in production. Copy it from your HubSpot app settings.")

    if os.environ.get("SYNC_WORKER_ENABLED", "false").lower() in {"1", "true", "yes", "on"}:
        broker_url = os.environ.get("CELERY_BROKER_URL")
        result_backend = os.environ.get("CELERY_RESULT_BACKEND")
        if bool(broker_url) != bool(result_backend):
            errors.append(
                "CELERY_BROKER_URL and CELERY_RESULT_BACKEND must be set together when SYNC_WORKER_ENABLED=true"
            )

    batch_size = os.environ.get("SYNC_BATCH_SIZE")
    if batch_size:
        try:
            size = int(batch_size)
        except ValueError:
            errors.append("SYNC_BATCH_SIZE must be an integer between 1 and 100")
        else:
            if not 1 <= size <= 100:
                errors.append("SYNC_BATCH_SIZE must be an integer between 1 and 100")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("See .env.example for required configuration.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
