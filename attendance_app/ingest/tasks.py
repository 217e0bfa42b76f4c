"""
Attendance Celery tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from attendance_app.ingest.exceptions import LeaveFetchError, RosterFetchError
from attendance_app.ingest.pipeline.orchestrator import AttendanceIngestService
from attendance_app.models.base import db

DEFAULT_MAX_RETRIES = 5
RETRY_BACKOFF_BASE_SECONDS = 5
RETRY_BACKOFF_MAX_SECONDS = 300


@shared_task(name="attendance.healthcheck", bind=True)
def attendance_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask attendance worker ping``."""

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="attendance.ingest.confirm_upload", bind=True)
def confirm_upload_task(self, *, upload_id: int, confirmed_by: int | None = None) -> dict[str, Any]:
    """
    Confirm an upload on the worker. Roster/leave fetch failures are retried
    with backoff; every other failure is logged and re-raised.
    """

    try:
        result = AttendanceIngestService().confirm_upload(upload_id, confirmed_by)
    except (RosterFetchError, LeaveFetchError) as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Attendance confirm deferred; reference data unavailable",
            extra={"upload_id": upload_id, "error": str(exc), "retries": self.request.retries},
        )
        max_retries = int(current_app.config.get("ATTENDANCE_TASK_MAX_RETRIES", DEFAULT_MAX_RETRIES))
        countdown = min(RETRY_BACKOFF_MAX_SECONDS, RETRY_BACKOFF_BASE_SECONDS * 2**self.request.retries)
        raise self.retry(exc=exc, countdown=countdown, max_retries=max_retries)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Attendance confirm failed",
            extra={"upload_id": upload_id, "error": str(exc)},
        )
        raise

    current_app.logger.info(
        "Attendance confirm completed",
        extra={"upload_id": upload_id, "batch_id": result.batch_id, "version": result.version},
    )
    return result.to_dict()
