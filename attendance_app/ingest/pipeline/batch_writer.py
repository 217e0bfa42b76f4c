"""
Batch writer: persist a reconciliation as an immutable, versioned batch.

Commit sequence for one confirmation:

1. Reserve the next version by incrementing ``attendance_uploads.version_counter``
   in its own transaction.
2. Write the four JSON partitions under
   ``{prefix}/{date}/{gathering_id}/{cohort_code}/upload-{id}/v{version}/``.
3. Insert the ``AttendanceBatch`` row and its issues in a single transaction.
   That insert is the commit point; partitions without a batch row are inert.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_app.ingest.exceptions import ConcurrentVersionConflict, StorageWriteError
from attendance_app.ingest.metrics import record_batch_committed, record_version_conflict
from attendance_app.ingest.pipeline.issues import IssueRecorder
from attendance_app.ingest.pipeline.matcher import ReconciliationResult, ValidationIssue
from attendance_app.ingest.storage import BlobStore, get_blob_store, put_json
from attendance_app.ingest.utils import DEFAULT_STORAGE_PREFIX, gathering_storage_prefix
from attendance_app.models import AttendanceBatch, AttendanceUpload, db

PARTITIONS: tuple[str, ...] = ("present", "absent", "exempt", "issues")
DEFAULT_VERSION_RETRY_LIMIT = 3


def partition_paths(prefix: str, upload: AttendanceUpload, version_number: int) -> dict[str, str]:
    gathering = upload.gathering
    base = gathering_storage_prefix(prefix, gathering.scheduled_date, gathering.id, upload.cohort.code)
    return {name: f"{base}/upload-{upload.id}/v{version_number}/{name}.json" for name in PARTITIONS}


class BatchWriter:
    """Writes batches for an upload, never reusing a version number."""

    def __init__(
        self,
        session: Session | None = None,
        store: BlobStore | None = None,
        issue_recorder: IssueRecorder | None = None,
        storage_prefix: str | None = None,
        retry_limit: int | None = None,
    ) -> None:
        self.session: Session = session or db.session
        self.store = store or get_blob_store()
        self.issue_recorder = issue_recorder or IssueRecorder(self.session)
        config = current_app.config
        self.storage_prefix = storage_prefix or config.get("ATTENDANCE_STORAGE_PREFIX", DEFAULT_STORAGE_PREFIX)
        self.retry_limit = (
            retry_limit
            if retry_limit is not None
            else int(config.get("ATTENDANCE_VERSION_RETRY_LIMIT", DEFAULT_VERSION_RETRY_LIMIT))
        )

    def reserve_version(self, upload_id: int) -> int:
        """Atomically bump and return the upload's version counter."""

        self.session.execute(
            update(AttendanceUpload)
            .where(AttendanceUpload.id == upload_id)
            .values(version_counter=AttendanceUpload.version_counter + 1)
        )
        version = self.session.execute(
            select(AttendanceUpload.version_counter).where(AttendanceUpload.id == upload_id)
        ).scalar_one()
        self.session.commit()
        return version

    def commit(
        self,
        upload: AttendanceUpload,
        result: ReconciliationResult,
        confirmed_by: int | None = None,
        *,
        extra_issues: Iterable[ValidationIssue] = (),
    ) -> AttendanceBatch:
        """
        Persist ``result`` as the next batch version of ``upload``.

        ``extra_issues`` (e.g. duplicate scans) are stored alongside the
        unmatched rows in the issues partition and issue table.

        Raises:
            StorageWriteError: a partition could not be written; no batch row exists.
            ConcurrentVersionConflict: the version stayed contested after all retries.
        """

        issue_rows = tuple(result.unmatched) + tuple(extra_issues)
        attempts = 0
        while True:
            attempts += 1
            version = self.reserve_version(upload.id)
            try:
                return self._write_version(upload, result, issue_rows, version, confirmed_by)
            except ConcurrentVersionConflict:
                record_version_conflict()
                current_app.logger.warning(
                    "Attendance batch version conflict",
                    extra={"upload_id": upload.id, "version": version, "attempt": attempts},
                )
                if attempts > self.retry_limit:
                    raise

    def _version_taken(self, upload_id: int, version: int) -> bool:
        taken = self.session.execute(
            select(AttendanceBatch.id).where(
                AttendanceBatch.upload_id == upload_id,
                AttendanceBatch.version_number == version,
            )
        ).first()
        return taken is not None

    def _write_version(
        self,
        upload: AttendanceUpload,
        result: ReconciliationResult,
        issue_rows: tuple[ValidationIssue, ...],
        version: int,
        confirmed_by: int | None,
    ) -> AttendanceBatch:
        # A stale reservation must not overwrite the partitions of a committed version
        if self._version_taken(upload.id, version):
            raise ConcurrentVersionConflict(upload.id, version)

        paths = partition_paths(self.storage_prefix, upload, version)
        records = result.partition_records()
        records["issues"] = [issue.as_record() for issue in issue_rows]

        try:
            for name in PARTITIONS:
                put_json(self.store, paths[name], records[name])
        except StorageWriteError as exc:
            current_app.logger.error(
                f"Failed to write partitions for upload {upload.id} v{version}: {str(exc)}",
                extra={"upload_id": upload.id, "version": version, "path": exc.path},
            )
            raise

        batch = AttendanceBatch(
            upload_id=upload.id,
            version_number=version,
            raw_path=upload.storage_path,
            present_path=paths["present"],
            absent_path=paths["absent"],
            exempt_path=paths["exempt"],
            issues_path=paths["issues"],
            rows_total=result.rows_total,
            present_count=len(result.present),
            absent_count=len(result.absent),
            exempt_count=len(result.exempt),
            issue_count=len(issue_rows),
            confirmed_by_id=confirmed_by,
        )
        try:
            self.session.add(batch)
            self.session.flush()
            self.issue_recorder.record_issues(batch.id, issue_rows)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if not self._version_taken(upload.id, version):
                raise
            raise ConcurrentVersionConflict(upload.id, version) from exc
        except Exception:
            self.session.rollback()
            raise

        record_batch_committed()
        current_app.logger.info(
            "Committed attendance batch",
            extra={
                "upload_id": upload.id,
                "batch_id": batch.id,
                "version": version,
                "present": batch.present_count,
                "absent": batch.absent_count,
                "exempt": batch.exempt_count,
                "issues": batch.issue_count,
            },
        )
        return batch
