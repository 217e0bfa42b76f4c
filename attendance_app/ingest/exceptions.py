"""
Exception taxonomy for attendance ingestion.

Row-level problems are never raised; they surface as ``ValidationIssue``
entries from the matcher and become ``AttendanceIssue`` rows on confirm.
Everything here is fatal to the operation that raised it.
"""

from __future__ import annotations

from attendance_app.models.attendance import ImmutableBatchError
from attendance_app.models.gathering import GatheringLockedError


class AttendanceIngestError(Exception):
    """Base exception for attendance ingestion failures."""


class ParseError(AttendanceIngestError):
    """Raised when an upload cannot be interpreted as tabular data at all."""

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        prefix = f"Line {line_number}: " if line_number is not None else ""
        super().__init__(f"{prefix}{message}")
        self.line_number = line_number


class UploadTooLargeError(AttendanceIngestError, ValueError):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        super().__init__(f"Upload is {size_bytes} bytes; the limit is {limit_bytes} bytes.")
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class UpstreamFetchError(AttendanceIngestError):
    """Base for failures reading reference data the reconciliation depends on."""

    retryable = True

    def __init__(self, message: str, *, cohort_id: int | None = None) -> None:
        super().__init__(message)
        self.cohort_id = cohort_id


class RosterFetchError(UpstreamFetchError):
    """Raised when the active roster for a cohort cannot be read."""


class LeaveFetchError(UpstreamFetchError):
    """Raised when the leave register cannot be read."""


class ConcurrentVersionConflict(AttendanceIngestError):
    """Raised when two commits race for the same batch version of an upload."""

    def __init__(self, upload_id: int, version_number: int) -> None:
        super().__init__(
            f"Version {version_number} of upload {upload_id} was committed concurrently; "
            "re-read the next version and retry."
        )
        self.upload_id = upload_id
        self.version_number = version_number


class StorageWriteError(AttendanceIngestError):
    """Raised when the blob store cannot durably write an object."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to store {path}: {reason}")
        self.path = path


class StorageReadError(AttendanceIngestError):
    """Raised when a stored object is missing or unreadable."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to read {path}: {reason}")
        self.path = path


class UploadNotFoundError(AttendanceIngestError, LookupError):
    """Raised when an upload id does not resolve to a stored upload."""

    def __init__(self, upload_id: int) -> None:
        super().__init__(f"Attendance upload {upload_id} not found.")
        self.upload_id = upload_id


class IssueNotFoundError(AttendanceIngestError, LookupError):
    """Raised when an issue id does not resolve to a recorded issue."""

    def __init__(self, issue_id: int) -> None:
        super().__init__(f"Attendance issue {issue_id} not found.")
        self.issue_id = issue_id


class UnknownReferenceError(AttendanceIngestError, LookupError):
    """Raised when a gathering or cohort id does not exist."""


class IneligibleCohortError(AttendanceIngestError, ValueError):
    """Raised when a cohort is not eligible for the gathering being ingested."""

    def __init__(self, gathering_id: int, cohort_id: int) -> None:
        super().__init__(f"Cohort {cohort_id} is not eligible for gathering {gathering_id}.")
        self.gathering_id = gathering_id
        self.cohort_id = cohort_id


class UploadAlreadyCommittedError(AttendanceIngestError):
    """Raised when cancelling an upload that already has committed batches."""

    def __init__(self, upload_id: int) -> None:
        super().__init__(
            f"Attendance upload {upload_id} has committed batches and cannot be cancelled; "
            "submit a corrected file instead."
        )
        self.upload_id = upload_id


__all__ = [
    "AttendanceIngestError",
    "ParseError",
    "UploadTooLargeError",
    "UpstreamFetchError",
    "RosterFetchError",
    "LeaveFetchError",
    "ConcurrentVersionConflict",
    "StorageWriteError",
    "StorageReadError",
    "UploadNotFoundError",
    "IssueNotFoundError",
    "UnknownReferenceError",
    "IneligibleCohortError",
    "UploadAlreadyCommittedError",
    "GatheringLockedError",
    "ImmutableBatchError",
]
