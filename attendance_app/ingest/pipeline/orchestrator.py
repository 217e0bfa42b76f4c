"""
Attendance ingestion service: the unit of work behind upload, preview,
confirm and cancel.

Control flow::

    register_upload -> DedupGate
    preview_upload  -> blob store -> parser -> RosterIndex + LeaveRegister -> reconcile
    confirm_upload  -> same as preview -> BatchWriter (+ IssueRecorder) -> post-commit hooks

Roster and leave data are read fresh on every preview and confirm, so a
confirm always reflects the register at the time it runs. Fetch failures
propagate before anything is written.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from flask import current_app
from sqlalchemy.orm import Session, object_session

from attendance_app.ingest.exceptions import (
    GatheringLockedError,
    UploadAlreadyCommittedError,
    UploadNotFoundError,
    UploadTooLargeError,
)
from attendance_app.ingest.metrics import observe_reconcile_duration, record_partition_counts
from attendance_app.ingest.pipeline.batch_writer import BatchWriter
from attendance_app.ingest.pipeline.dedup import DedupGate, UploadRegistration
from attendance_app.ingest.pipeline.leave import LeaveRegister
from attendance_app.ingest.pipeline.matcher import ReconciliationResult, reconcile
from attendance_app.ingest.pipeline.parser import parse_attendance_file
from attendance_app.ingest.pipeline.roster import RosterIndex
from attendance_app.ingest.storage import BlobStore, get_blob_store
from attendance_app.models import AttendanceBatch, AttendanceUpload, db

PostCommitHook = Callable[[AttendanceBatch, AttendanceUpload], None]


def lock_gathering_after_commit(batch: AttendanceBatch, upload: AttendanceUpload) -> None:
    """Set ``locked_after_ingestion`` on the upload's gathering once a batch is durable."""

    session = object_session(upload) or db.session
    gathering = upload.gathering
    if gathering.locked_after_ingestion:
        return
    gathering.lock()
    session.commit()
    current_app.logger.info(
        f"Locked gathering {gathering.id} after batch {batch.id}",
        extra={"gathering_id": gathering.id, "batch_id": batch.id},
    )


@dataclass(slots=True)
class UploadPreview:
    """Reviewable outcome of reconciling an upload without persisting it."""

    upload_id: int
    matched: list[dict[str, Any]]
    unmatched: list[dict[str, Any]]
    absent: list[dict[str, Any]]
    exempt: list[dict[str, Any]]
    duplicates: list[dict[str, Any]]
    summary: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "absent": self.absent,
            "exempt": self.exempt,
            "duplicates": self.duplicates,
            "summary": dict(self.summary),
        }


@dataclass(slots=True)
class ConfirmResult:
    """Outcome of a successful confirm."""

    upload_id: int
    batch_id: int
    version: int
    records_processed: int
    matched_count: int
    unmatched_count: int
    storage_paths: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "batchId": self.batch_id,
            "version": self.version,
            "recordsProcessed": self.records_processed,
            "matchedCount": self.matched_count,
            "unmatchedCount": self.unmatched_count,
            "storagePaths": dict(self.storage_paths),
        }


class AttendanceIngestService:
    """Facade over the ingestion pipeline for one application context."""

    def __init__(
        self,
        session: Session | None = None,
        store: BlobStore | None = None,
        *,
        roster: RosterIndex | None = None,
        leave_register: LeaveRegister | None = None,
        dedup_gate: DedupGate | None = None,
        batch_writer: BatchWriter | None = None,
        post_commit_hooks: Iterable[PostCommitHook] | None = None,
    ) -> None:
        config = current_app.config
        self.session: Session = session or db.session
        self.store = store or get_blob_store()
        self.roster = roster or RosterIndex(self.session)
        self.leave_register = leave_register or LeaveRegister(self.session)
        self.dedup_gate = dedup_gate or DedupGate(self.session, self.store)
        self.batch_writer = batch_writer or BatchWriter(self.session, self.store)
        if post_commit_hooks is None:
            post_commit_hooks = [lock_gathering_after_commit] if config.get("ATTENDANCE_LOCK_ON_COMMIT", True) else []
        self.post_commit_hooks: list[PostCommitHook] = list(post_commit_hooks)
        self.single_ingestion = bool(config.get("ATTENDANCE_SINGLE_INGESTION", False))
        self.record_duplicate_scans = bool(config.get("ATTENDANCE_RECORD_DUPLICATE_SCANS", True))
        max_mb = config.get("ATTENDANCE_MAX_UPLOAD_MB")
        self.max_upload_bytes = int(float(max_mb) * 1024 * 1024) if max_mb else None

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def register_upload(
        self,
        gathering_id: int,
        cohort_id: int,
        file_bytes: bytes,
        uploader_id: int | None,
        filename: str | None = None,
    ) -> UploadRegistration:
        """
        Validate and register a raw export.

        The file is parsed once up front so structurally broken files are
        rejected with ``ParseError`` before anything is stored.
        """

        if self.max_upload_bytes is not None and len(file_bytes) > self.max_upload_bytes:
            raise UploadTooLargeError(len(file_bytes), self.max_upload_bytes)
        parse_attendance_file(file_bytes)
        return self.dedup_gate.register_upload(gathering_id, cohort_id, file_bytes, uploader_id, filename)

    def get_upload(self, upload_id: int) -> AttendanceUpload:
        upload = self.session.get(AttendanceUpload, upload_id)
        if upload is None:
            raise UploadNotFoundError(upload_id)
        return upload

    def reconcile_upload(self, upload: AttendanceUpload) -> ReconciliationResult:
        """Parse the stored file and reconcile it against current roster/leave data."""

        started = time.perf_counter()
        parsed = parse_attendance_file(self.store.get(upload.storage_path))
        members = self.roster.active_members(upload.cohort_id)
        exempt_ids = self.leave_register.exempt_member_ids(upload.cohort_id, upload.gathering.scheduled_date)
        result = reconcile(parsed, members, exempt_ids, expected_cohort_code=upload.cohort.code)
        observe_reconcile_duration(time.perf_counter() - started)
        record_partition_counts(
            present=len(result.present),
            absent=len(result.absent),
            exempt=len(result.exempt),
            unmatched=len(result.unmatched),
        )
        return result

    def preview_upload(self, upload_id: int) -> UploadPreview:
        upload = self.get_upload(upload_id)
        result = self.reconcile_upload(upload)
        return UploadPreview(
            upload_id=upload.id,
            matched=[member.as_record() for member in result.present],
            unmatched=[issue.as_record() for issue in result.unmatched],
            absent=[member.as_record() for member in result.absent],
            exempt=[member.as_record() for member in result.exempt],
            duplicates=[issue.as_record() for issue in result.duplicates],
            summary={
                "total": result.rows_total,
                "matched_count": result.matched_count,
                "unmatched_count": result.unmatched_count,
                "absent_count": len(result.absent),
                "exempt_count": len(result.exempt),
                "duplicate_count": len(result.duplicates),
            },
        )

    def confirm_upload(self, upload_id: int, confirmed_by: int | None = None) -> ConfirmResult:
        """
        Reconcile and commit a new batch version for the upload.

        Raises:
            UploadNotFoundError: unknown upload.
            GatheringLockedError: single-ingestion policy is on and the gathering is locked.
            RosterFetchError, LeaveFetchError: reference data unavailable; nothing written.
            StorageWriteError, ConcurrentVersionConflict: the batch was not committed.
        """

        upload = self.get_upload(upload_id)
        gathering = upload.gathering
        if self.single_ingestion and gathering.locked_after_ingestion:
            raise GatheringLockedError(
                gathering.id, f"Gathering {gathering.id} is locked; it already has a committed attendance batch."
            )

        result = self.reconcile_upload(upload)
        extra_issues = result.duplicates if self.record_duplicate_scans else ()
        batch = self.batch_writer.commit(upload, result, confirmed_by, extra_issues=extra_issues)

        for hook in self.post_commit_hooks:
            try:
                hook(batch, upload)
            except Exception:
                self.session.rollback()
                current_app.logger.exception(
                    f"Post-commit hook {getattr(hook, '__name__', hook)!r} failed for batch {batch.id}",
                    extra={"batch_id": batch.id, "upload_id": upload.id},
                )

        return ConfirmResult(
            upload_id=upload.id,
            batch_id=batch.id,
            version=batch.version_number,
            records_processed=result.records_processed,
            matched_count=result.matched_count,
            unmatched_count=result.unmatched_count,
            storage_paths=batch.storage_paths,
        )

    def cancel_upload(self, upload_id: int) -> None:
        """
        Discard an upload that was never confirmed, including its raw blob.

        Identical bytes for the same gathering and cohort register as one
        shared upload, so cancelling it withdraws the file for every uploader
        who submitted it. Resubmitting the bytes registers a fresh upload.

        Raises:
            UploadAlreadyCommittedError: a batch already references the upload.
        """

        upload = self.get_upload(upload_id)
        if upload.batches:
            raise UploadAlreadyCommittedError(upload.id)
        storage_path = upload.storage_path
        self.session.delete(upload)
        self.session.commit()
        self.store.delete(storage_path)
        current_app.logger.info(f"Cancelled attendance upload {upload_id}", extra={"upload_id": upload_id})
