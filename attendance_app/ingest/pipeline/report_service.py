"""
Read-side helpers for attendance uploads, batches and per-gathering results.

The admin layer and CLI consume these helpers for paginated upload history,
batch listings, and the attendance of a gathering as recorded by the latest
committed batch of each cohort.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.orm import Session, joinedload

from attendance_app.ingest.exceptions import UnknownReferenceError
from attendance_app.ingest.storage import BlobStore, get_blob_store, get_json
from attendance_app.models import AttendanceBatch, AttendanceUpload, Gathering, db

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100

EXPORT_COLUMNS: tuple[str, ...] = ("status", "externalId", "displayName", "cohortCode", "category", "internalId")


def coerce_positive_int(value: Any, *, fallback: int) -> int:
    if value is None or value == "":
        return fallback
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected a positive integer, got {value!r}.") from exc
    if parsed < 1:
        raise ValueError(f"Expected a positive integer, got {value!r}.")
    return parsed


def coerce_optional_id(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return coerce_positive_int(value, fallback=0)


@dataclass(frozen=True)
class UploadFilters:
    """Filter options applied to upload history queries."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    gathering_id: int | None = None
    cohort_id: int | None = None
    uploader_id: int | None = None

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        gathering_id: int | str | None = None,
        cohort_id: int | str | None = None,
        uploader_id: int | str | None = None,
    ) -> "UploadFilters":
        return cls(
            page=coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=min(coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE),
            gathering_id=coerce_optional_id(gathering_id),
            cohort_id=coerce_optional_id(cohort_id),
            uploader_id=coerce_optional_id(uploader_id),
        )


@dataclass(slots=True)
class UploadSummary:
    id: int
    gathering_id: int
    cohort_id: int
    cohort_code: str | None
    original_filename: str | None
    content_hash: str
    uploaded_by_id: int | None
    uploaded_at: datetime | None
    batch_count: int
    latest_version: int | None


@dataclass(slots=True)
class UploadListResult:
    """Paginated result set for upload history."""

    items: list[UploadSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass(slots=True)
class BatchSummary:
    id: int
    upload_id: int
    version_number: int
    created_at: datetime | None
    rows_total: int
    present_count: int
    absent_count: int
    exempt_count: int
    issue_count: int
    storage_paths: Mapping[str, str]


@dataclass(slots=True)
class CohortAttendance:
    """Attendance of one cohort at a gathering, read from its latest batch."""

    cohort_id: int
    cohort_code: str
    batch_id: int
    version_number: int
    present: list[dict[str, Any]] = field(default_factory=list)
    absent: list[dict[str, Any]] = field(default_factory=list)
    exempt: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class GatheringAttendance:
    gathering_id: int
    scheduled_date: str
    cohorts: list[CohortAttendance]
    summary: dict[str, Any]


def _summarize_batch(batch: AttendanceBatch) -> BatchSummary:
    return BatchSummary(
        id=batch.id,
        upload_id=batch.upload_id,
        version_number=batch.version_number,
        created_at=batch.created_at,
        rows_total=batch.rows_total,
        present_count=batch.present_count,
        absent_count=batch.absent_count,
        exempt_count=batch.exempt_count,
        issue_count=batch.issue_count,
        storage_paths=batch.storage_paths,
    )


class AttendanceReportService:
    """Facade for querying uploads, batches and recorded attendance."""

    def __init__(self, session: Session | None = None, store: BlobStore | None = None) -> None:
        self.session: Session = session or db.session
        self._store = store

    @property
    def store(self) -> BlobStore:
        if self._store is None:
            self._store = get_blob_store()
        return self._store

    def list_uploads(self, filters: UploadFilters) -> UploadListResult:
        query = self.session.query(AttendanceUpload).options(
            joinedload(AttendanceUpload.cohort), joinedload(AttendanceUpload.batches)
        )
        if filters.gathering_id is not None:
            query = query.filter(AttendanceUpload.gathering_id == filters.gathering_id)
        if filters.cohort_id is not None:
            query = query.filter(AttendanceUpload.cohort_id == filters.cohort_id)
        if filters.uploader_id is not None:
            query = query.filter(AttendanceUpload.uploaded_by_id == filters.uploader_id)

        total = query.order_by(None).count()
        if total == 0:
            return UploadListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        uploads = (
            query.order_by(AttendanceUpload.uploaded_at.desc(), AttendanceUpload.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        items = [
            UploadSummary(
                id=upload.id,
                gathering_id=upload.gathering_id,
                cohort_id=upload.cohort_id,
                cohort_code=upload.cohort.code if upload.cohort is not None else None,
                original_filename=upload.original_filename,
                content_hash=upload.content_hash,
                uploaded_by_id=upload.uploaded_by_id,
                uploaded_at=upload.uploaded_at,
                batch_count=len(upload.batches),
                latest_version=upload.batches[-1].version_number if upload.batches else None,
            )
            for upload in uploads
        ]
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return UploadListResult(
            items=items, total=total, page=filters.page, page_size=filters.page_size, total_pages=total_pages
        )

    def list_batches(self, upload_id: int | None = None) -> list[BatchSummary]:
        query = self.session.query(AttendanceBatch)
        if upload_id is not None:
            query = query.filter(AttendanceBatch.upload_id == upload_id)
        batches = query.order_by(AttendanceBatch.upload_id.asc(), AttendanceBatch.version_number.asc()).all()
        return [_summarize_batch(batch) for batch in batches]

    def latest_batches(self, gathering_id: int, cohort_id: int | None = None) -> list[AttendanceBatch]:
        """Latest committed batch per cohort for the gathering."""

        query = (
            self.session.query(AttendanceBatch)
            .join(AttendanceUpload, AttendanceUpload.id == AttendanceBatch.upload_id)
            .options(joinedload(AttendanceBatch.upload).joinedload(AttendanceUpload.cohort))
            .filter(AttendanceUpload.gathering_id == gathering_id)
        )
        if cohort_id is not None:
            query = query.filter(AttendanceUpload.cohort_id == cohort_id)
        batches = query.order_by(AttendanceBatch.id.desc()).all()

        latest: dict[int, AttendanceBatch] = {}
        for batch in batches:
            latest.setdefault(batch.upload.cohort_id, batch)
        return [latest[key] for key in sorted(latest)]

    def get_gathering_attendance(self, gathering_id: int, cohort_id: int | None = None) -> GatheringAttendance:
        gathering = self.session.get(Gathering, gathering_id)
        if gathering is None:
            raise UnknownReferenceError(f"Gathering {gathering_id} not found.")

        cohorts: list[CohortAttendance] = []
        for batch in self.latest_batches(gathering_id, cohort_id):
            cohorts.append(
                CohortAttendance(
                    cohort_id=batch.upload.cohort_id,
                    cohort_code=batch.upload.cohort.code,
                    batch_id=batch.id,
                    version_number=batch.version_number,
                    present=get_json(self.store, batch.present_path),
                    absent=get_json(self.store, batch.absent_path),
                    exempt=get_json(self.store, batch.exempt_path),
                )
            )

        total_present = sum(len(entry.present) for entry in cohorts)
        total_absent = sum(len(entry.absent) for entry in cohorts)
        total_exempt = sum(len(entry.exempt) for entry in cohorts)
        total_members = total_present + total_absent + total_exempt
        attendance_rate = round(total_present / total_members * 100, 1) if total_members else 0.0

        return GatheringAttendance(
            gathering_id=gathering.id,
            scheduled_date=gathering.scheduled_date.isoformat(),
            cohorts=cohorts,
            summary={
                "total_members": total_members,
                "total_present": total_present,
                "total_absent": total_absent,
                "total_exempt": total_exempt,
                "attendance_rate": attendance_rate,
            },
        )

    def export_attendance_csv(self, gathering_id: int, cohort_id: int | None = None) -> str:
        """Render recorded attendance as CSV, one row per roster member."""

        attendance = self.get_gathering_attendance(gathering_id, cohort_id)
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, extrasaction="ignore", lineterminator="\n")
        writer.writeheader()
        for entry in attendance.cohorts:
            for status, records in (("present", entry.present), ("absent", entry.absent), ("exempt", entry.exempt)):
                for record in records:
                    writer.writerow({**record, "status": status})
        return buffer.getvalue()
