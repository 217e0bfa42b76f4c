"""
Ingestion utilities for storage locations and JSON-safe payloads.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any

from werkzeug.utils import secure_filename

DEFAULT_STORAGE_SUBDIR = "attendance_storage"
DEFAULT_STORAGE_PREFIX = "attendance"
CSV_EXTENSIONS: tuple[str, ...] = ("csv", "txt")


def _normalize_storage_dir(configured_path: str | None, instance_path: str, *, default_subdir: str) -> Path:
    if not configured_path:
        return Path(instance_path) / default_subdir

    candidate = Path(configured_path)
    if candidate.is_absolute():
        return candidate

    return Path(instance_path) / candidate


def resolve_storage_directory(app) -> Path:
    """
    Determine and create (if necessary) the blob storage root directory.
    """

    storage_dir = _normalize_storage_dir(
        app.config.get("ATTENDANCE_STORAGE_DIR"),
        app.instance_path,
        default_subdir=DEFAULT_STORAGE_SUBDIR,
    )
    storage_dir.mkdir(parents=True, exist_ok=True)
    return storage_dir


def allowed_file(filename: str, allowed_extensions: Sequence[str] = CSV_EXTENSIONS) -> bool:
    """
    Validate the uploaded filename extension against the allowed set.
    """

    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def safe_filename(filename: str | None, *, fallback: str = "attendance.csv") -> str:
    cleaned = secure_filename(filename or "")
    return cleaned or fallback


def gathering_storage_prefix(prefix: str, scheduled_date: date, gathering_id: int, cohort_code: str) -> str:
    """Return ``{prefix}/{date}/{gathering_id}/{cohort_code}`` for one gathering/cohort pair."""

    code = secure_filename(str(cohort_code)) or "unknown"
    return f"{prefix.strip('/')}/{scheduled_date.isoformat()}/{gathering_id}/{code}"


def ensure_json_serializable(value: Any) -> Any:
    """
    Best-effort conversion of values to JSON-serializable representations.
    """

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): ensure_json_serializable(inner) for key, inner in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [ensure_json_serializable(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return str(value)
