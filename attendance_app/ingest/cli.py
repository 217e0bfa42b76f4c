"""
``flask attendance`` command group.

Every command runs inside the application context; domain errors are turned
into ``click.ClickException`` so the operator sees one line and a non-zero
exit code.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from attendance_app.ingest.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from attendance_app.ingest.exceptions import AttendanceIngestError, GatheringLockedError
from attendance_app.ingest.pipeline.issue_service import AttendanceIssueService, IssueFilters
from attendance_app.ingest.pipeline.orchestrator import AttendanceIngestService
from attendance_app.ingest.pipeline.report_service import AttendanceReportService, UploadFilters
from attendance_app.ingest.utils import allowed_file, ensure_json_serializable
from attendance_app.models.base import db

attendance_cli = AppGroup("attendance", help="Attendance ingestion and reconciliation commands.")


def _echo_json(payload) -> None:
    click.echo(json.dumps(ensure_json_serializable(payload), indent=2, sort_keys=True))


def _fail(exc: Exception) -> click.ClickException:
    db.session.rollback()
    return click.ClickException(str(exc))


def _resolve_celery() -> Celery:
    celery_app = get_celery_app(current_app)
    if celery_app is None:
        raise click.ClickException(
            "Attendance Celery app is unavailable. Set ATTENDANCE_WORKER_ENABLED=true before running worker commands."
        )
    return celery_app


@attendance_cli.command("upload")
@click.option("--gathering-id", required=True, type=int)
@click.option("--cohort-id", required=True, type=int)
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Attendance export (CSV).",
)
@click.option("--uploader-id", type=int, default=None)
def upload_command(gathering_id: int, cohort_id: int, file_path: Path, uploader_id: Optional[int]):
    """Register an attendance export for a gathering/cohort pair."""
    if not allowed_file(file_path.name):
        raise click.BadParameter(f"{file_path.name} is not a CSV export.", param_hint="--file")
    try:
        registration = AttendanceIngestService().register_upload(
            gathering_id, cohort_id, file_path.read_bytes(), uploader_id, filename=file_path.name
        )
    except (AttendanceIngestError, LookupError) as exc:
        raise _fail(exc) from exc

    upload = registration.upload
    _echo_json(
        {
            "upload_id": upload.id,
            "is_duplicate": registration.is_duplicate,
            "content_hash": upload.content_hash,
            "storage_path": upload.storage_path,
        }
    )


@attendance_cli.command("preview")
@click.argument("upload_id", type=int)
def preview_command(upload_id: int):
    """Reconcile an upload against the current roster without committing."""
    try:
        preview = AttendanceIngestService().preview_upload(upload_id)
    except (AttendanceIngestError, LookupError, ValueError) as exc:
        raise _fail(exc) from exc
    _echo_json(preview.to_dict())


@attendance_cli.command("confirm")
@click.argument("upload_id", type=int)
@click.option("--confirmed-by", type=int, default=None)
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
def confirm_command(upload_id: int, confirmed_by: Optional[int], inline: bool):
    """Commit a new batch version for an upload."""
    if not inline:
        celery_app = _resolve_celery()
        async_result = celery_app.send_task(
            "attendance.ingest.confirm_upload",
            kwargs={"upload_id": upload_id, "confirmed_by": confirmed_by},
        )
        current_app.logger.info(
            "Attendance confirm queued via CLI",
            extra={"upload_id": upload_id, "task_id": async_result.id},
        )
        _echo_json({"upload_id": upload_id, "task_id": async_result.id, "status": "queued"})
        return

    try:
        result = AttendanceIngestService().confirm_upload(upload_id, confirmed_by)
    except (AttendanceIngestError, GatheringLockedError, LookupError, ValueError) as exc:
        raise _fail(exc) from exc
    _echo_json(result.to_dict())


@attendance_cli.command("cancel")
@click.argument("upload_id", type=int)
def cancel_command(upload_id: int):
    """Discard an upload that has no committed batch."""
    try:
        AttendanceIngestService().cancel_upload(upload_id)
    except (AttendanceIngestError, LookupError) as exc:
        raise _fail(exc) from exc
    click.echo(f"Cancelled upload {upload_id}.")


@attendance_cli.command("uploads")
@click.option("--gathering-id", type=int, default=None)
@click.option("--cohort-id", type=int, default=None)
@click.option("--uploader-id", type=int, default=None)
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=25, show_default=True)
def uploads_command(gathering_id, cohort_id, uploader_id, page, page_size):
    """List upload history."""
    try:
        filters = UploadFilters.coerce(
            page=page, page_size=page_size, gathering_id=gathering_id, cohort_id=cohort_id, uploader_id=uploader_id
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    result = AttendanceReportService().list_uploads(filters)
    _echo_json(
        {
            "total": result.total,
            "page": result.page,
            "total_pages": result.total_pages,
            "items": [
                {
                    "id": item.id,
                    "gathering_id": item.gathering_id,
                    "cohort_code": item.cohort_code,
                    "filename": item.original_filename,
                    "uploaded_at": item.uploaded_at,
                    "batch_count": item.batch_count,
                    "latest_version": item.latest_version,
                }
                for item in result.items
            ],
        }
    )


@attendance_cli.command("batches")
@click.option("--upload-id", type=int, default=None)
def batches_command(upload_id: Optional[int]):
    """List committed batches, oldest version first."""
    batches = AttendanceReportService().list_batches(upload_id)
    if not batches:
        click.echo("No batches found.")
        return
    for batch in batches:
        click.echo(
            f"batch {batch.id} upload={batch.upload_id} v{batch.version_number} "
            f"present={batch.present_count} absent={batch.absent_count} "
            f"exempt={batch.exempt_count} issues={batch.issue_count}"
        )


@attendance_cli.command("issues")
@click.option("--gathering-id", type=int, default=None)
@click.option("--cohort-id", type=int, default=None)
@click.option("--batch-id", type=int, default=None)
@click.option("--type", "issue_type", default=None, help="Issue type, e.g. unmatched_student.")
@click.option(
    "--status",
    type=click.Choice(["open", "resolved", "all"]),
    default="open",
    show_default=True,
)
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=100, show_default=True)
def issues_command(gathering_id, cohort_id, batch_id, issue_type, status, page, page_size):
    """List attendance issues, one page at a time."""
    try:
        filters = IssueFilters.coerce(
            resolved=status,
            gathering_id=gathering_id,
            cohort_id=cohort_id,
            batch_id=batch_id,
            issue_type=issue_type,
            page=page,
            page_size=page_size,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    result = AttendanceIssueService().list_issues(filters)
    if not result.total:
        click.echo("No issues found.")
        return
    for issue in result.items:
        marker = "x" if issue.resolved else " "
        click.echo(f"[{marker}] {issue.id} batch={issue.batch_id} {issue.issue_type}: {issue.description}")
    click.echo(f"Page {result.page} of {result.total_pages} (total: {result.total}).")


@attendance_cli.command("resolve-issue")
@click.argument("issue_id", type=int)
@click.option("--resolver-id", type=int, default=None)
@click.option("--notes", default=None)
def resolve_issue_command(issue_id: int, resolver_id: Optional[int], notes: Optional[str]):
    """Mark an issue resolved."""
    try:
        issue = AttendanceIssueService().resolve_issue(issue_id, resolver_id, notes)
    except LookupError as exc:
        raise _fail(exc) from exc
    click.echo(f"Issue {issue.id} resolved.")


@attendance_cli.command("summary")
@click.argument("gathering_id", type=int)
@click.option("--cohort-id", type=int, default=None)
def summary_command(gathering_id: int, cohort_id: Optional[int]):
    """Show recorded attendance totals for a gathering."""
    try:
        attendance = AttendanceReportService().get_gathering_attendance(gathering_id, cohort_id)
    except (AttendanceIngestError, LookupError) as exc:
        raise _fail(exc) from exc
    _echo_json(
        {
            "gathering_id": attendance.gathering_id,
            "scheduled_date": attendance.scheduled_date,
            "cohorts": [
                {"cohort_code": entry.cohort_code, "batch_id": entry.batch_id, "version": entry.version_number}
                for entry in attendance.cohorts
            ],
            "summary": attendance.summary,
        }
    )


@attendance_cli.command("export")
@click.argument("gathering_id", type=int)
@click.option("--cohort-id", type=int, default=None)
@click.option("--output", type=click.Path(path_type=Path, dir_okay=False), default=None)
def export_command(gathering_id: int, cohort_id: Optional[int], output: Optional[Path]):
    """Export recorded attendance as CSV to stdout or a file."""
    try:
        content = AttendanceReportService().export_attendance_csv(gathering_id, cohort_id)
    except (AttendanceIngestError, LookupError) as exc:
        raise _fail(exc) from exc
    if output is None:
        click.echo(content, nl=False)
        return
    output.write_text(content, encoding="utf-8")
    click.echo(f"Wrote {output}")


@attendance_cli.group(name="worker")
@with_appcontext
def worker_group():
    """Manage the attendance background worker."""
    if not current_app.config.get("ATTENDANCE_WORKER_ENABLED"):
        click.echo(
            "Warning: ATTENDANCE_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
def worker_run(loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    celery_app = _resolve_celery()
    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting attendance worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
def worker_ping(timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    celery_app = _resolve_celery()
    task = celery_app.tasks.get("attendance.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'attendance.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))
