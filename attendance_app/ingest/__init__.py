"""
Attendance ingestion feature package.

Registers the ``flask attendance`` CLI group, prepares the blob store and,
when the worker is enabled, the Celery app. State lives in
``app.extensions['attendance']``.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from .celery_app import ensure_celery_app, get_celery_app
from .cli import attendance_cli
from .exceptions import AttendanceIngestError
from .pipeline.issue_service import AttendanceIssueService, IssueFilters
from .pipeline.orchestrator import AttendanceIngestService
from .pipeline.report_service import AttendanceReportService, UploadFilters
from .storage import get_blob_store

ATTENDANCE_EXTENSION_KEY = "attendance"

__all__ = [
    "init_ingest",
    "ATTENDANCE_EXTENSION_KEY",
    "AttendanceIngestError",
    "AttendanceIngestService",
    "AttendanceIssueService",
    "AttendanceReportService",
    "IssueFilters",
    "UploadFilters",
    "get_celery_app",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        ATTENDANCE_EXTENSION_KEY,
        {
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask) -> None:
    # Avoid duplicate registrations when the app is initialised repeatedly in tests.
    if attendance_cli.name in app.cli.commands:
        app.cli.commands.pop(attendance_cli.name)
    app.cli.add_command(attendance_cli)


def init_ingest(app: Flask) -> None:
    """Wire the ingestion engine into ``app``."""

    state = _ensure_extension_state(app)
    worker_enabled = bool(app.config.get("ATTENDANCE_WORKER_ENABLED", False))
    state["worker_enabled"] = worker_enabled

    store = get_blob_store(app)
    _set_cli(app)

    if worker_enabled:
        ensure_celery_app(app, state)

    app.logger.info(
        "Attendance ingestion initialised",
        extra={
            "attendance_storage_root": str(getattr(store, "root", "")),
            "attendance_worker_enabled": worker_enabled,
            "attendance_lock_on_commit": bool(app.config.get("ATTENDANCE_LOCK_ON_COMMIT", True)),
            "attendance_single_ingestion": bool(app.config.get("ATTENDANCE_SINGLE_INGESTION", False)),
        },
    )
