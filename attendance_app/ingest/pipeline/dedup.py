"""
Content-hash dedup gate for attendance uploads.

An upload is identified by ``(gathering_id, cohort_id, sha256(bytes))``.
Re-submitting identical bytes for the same pair returns the stored upload and
writes nothing.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_app.ingest.exceptions import IneligibleCohortError, ParseError, UnknownReferenceError
from attendance_app.ingest.metrics import record_upload
from attendance_app.ingest.storage import BlobStore, get_blob_store
from attendance_app.ingest.utils import DEFAULT_STORAGE_PREFIX, gathering_storage_prefix, safe_filename
from attendance_app.models import AttendanceUpload, Cohort, Gathering, db


def compute_content_hash(file_bytes: bytes) -> str:
    """Return the hex SHA-256 digest of ``file_bytes``."""

    return hashlib.sha256(file_bytes).hexdigest()


@dataclass(frozen=True)
class UploadRegistration:
    """Result of registering an upload; ``is_duplicate`` marks a prior identical upload."""

    upload: AttendanceUpload
    is_duplicate: bool

    @property
    def upload_id(self) -> int:
        return self.upload.id


def raw_storage_path(prefix: str, gathering: Gathering, cohort: Cohort, content_hash: str) -> str:
    base = gathering_storage_prefix(prefix, gathering.scheduled_date, gathering.id, cohort.code)
    return f"{base}/raw/{content_hash}.csv"


class DedupGate:
    """Registers raw uploads exactly once per gathering/cohort/content."""

    def __init__(
        self,
        session: Session | None = None,
        store: BlobStore | None = None,
        storage_prefix: str | None = None,
    ) -> None:
        self.session: Session = session or db.session
        self.store = store or get_blob_store()
        self.storage_prefix = storage_prefix or current_app.config.get(
            "ATTENDANCE_STORAGE_PREFIX", DEFAULT_STORAGE_PREFIX
        )

    def find_existing(self, gathering_id: int, cohort_id: int, content_hash: str) -> AttendanceUpload | None:
        return (
            self.session.query(AttendanceUpload)
            .filter_by(gathering_id=gathering_id, cohort_id=cohort_id, content_hash=content_hash)
            .one_or_none()
        )

    def _load_references(self, gathering_id: int, cohort_id: int) -> tuple[Gathering, Cohort]:
        gathering = self.session.get(Gathering, gathering_id)
        if gathering is None:
            raise UnknownReferenceError(f"Gathering {gathering_id} not found.")
        cohort = self.session.get(Cohort, cohort_id)
        if cohort is None:
            raise UnknownReferenceError(f"Cohort {cohort_id} not found.")
        if not gathering.is_cohort_eligible(cohort.id):
            raise IneligibleCohortError(gathering.id, cohort.id)
        return gathering, cohort

    def register_upload(
        self,
        gathering_id: int,
        cohort_id: int,
        file_bytes: bytes,
        uploader_id: int | None,
        filename: str | None = None,
    ) -> UploadRegistration:
        """
        Register ``file_bytes`` for the gathering/cohort pair.

        Raises:
            ParseError: the file is empty.
            UnknownReferenceError: the gathering or cohort does not exist.
            IneligibleCohortError: the cohort may not attend the gathering.
            StorageWriteError: the raw bytes could not be stored.
        """

        if not file_bytes:
            raise ParseError("Attendance file is empty.")

        gathering, cohort = self._load_references(gathering_id, cohort_id)
        content_hash = compute_content_hash(file_bytes)

        existing = self.find_existing(gathering.id, cohort.id, content_hash)
        if existing is not None:
            record_upload("duplicate")
            current_app.logger.info(
                "Duplicate attendance upload",
                extra={"upload_id": existing.id, "gathering_id": gathering.id, "cohort_id": cohort.id},
            )
            return UploadRegistration(upload=existing, is_duplicate=True)

        path = raw_storage_path(self.storage_prefix, gathering, cohort, content_hash)
        self.store.put(path, file_bytes)

        upload = AttendanceUpload(
            gathering_id=gathering.id,
            cohort_id=cohort.id,
            content_hash=content_hash,
            storage_path=path,
            original_filename=safe_filename(filename) if filename else None,
            size_bytes=len(file_bytes),
            uploaded_by_id=uploader_id,
        )
        self.session.add(upload)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost the race against an identical concurrent upload.
            self.session.rollback()
            winner = self.find_existing(gathering.id, cohort.id, content_hash)
            if winner is None:
                raise
            record_upload("duplicate")
            return UploadRegistration(upload=winner, is_duplicate=True)

        record_upload("new")
        current_app.logger.info(
            "Registered attendance upload",
            extra={
                "upload_id": upload.id,
                "gathering_id": gathering.id,
                "cohort_id": cohort.id,
                "content_hash": content_hash,
            },
        )
        return UploadRegistration(upload=upload, is_duplicate=False)
