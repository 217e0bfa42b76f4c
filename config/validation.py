# config/validation.py

"""
Environment variable validation for the attendance engine.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

_INT_SETTINGS = (
    ("ATTENDANCE_VERSION_RETRY_LIMIT", 0),
    ("ATTENDANCE_MAX_UPLOAD_MB", 1),
    ("ATTENDANCE_TASK_MAX_RETRIES", 0),
)


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
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if not os.environ.get("ATTENDANCE_STORAGE_DIR"):
        errors.append(
            "ATTENDANCE_STORAGE_DIR is required in production so raw uploads and batch partitions "
            "survive redeploys."
        )

    for name, minimum in _INT_SETTINGS:
        raw = os.environ.get(name)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = int(raw)
        except ValueError:
            errors.append(f"{name} must be an integer (got {raw!r}).")
            continue
        if value < minimum:
            errors.append(f"{name} must be >= {minimum} (got {value}).")

    if os.environ.get("ATTENDANCE_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when ATTENDANCE_WORKER_ENABLED=true in production.")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
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
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
