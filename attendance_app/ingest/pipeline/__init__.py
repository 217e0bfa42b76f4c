"""Attendance ingestion pipeline helpers."""

from __future__ import annotations

from .batch_writer import BatchWriter, partition_paths
from .dedup import DedupGate, UploadRegistration, compute_content_hash
from .issues import IssueRecorder
from .leave import LeaveRegister
from .matcher import ReconciliationResult, ValidationIssue, reconcile
from .normalize import canonicalize_identifier, coerce_cohort_code, cohort_codes_match
from .orchestrator import AttendanceIngestService, ConfirmResult, UploadPreview, lock_gathering_after_commit
from .parser import MalformedRow, ParsedFile, RawRow, ValidRow, normalize_identifier, parse_attendance_file
from .roster import RosterIndex, RosterMember

__all__ = [
    "AttendanceIngestService",
    "BatchWriter",
    "ConfirmResult",
    "DedupGate",
    "IssueRecorder",
    "LeaveRegister",
    "MalformedRow",
    "ParsedFile",
    "RawRow",
    "ReconciliationResult",
    "RosterIndex",
    "RosterMember",
    "UploadPreview",
    "UploadRegistration",
    "ValidRow",
    "ValidationIssue",
    "canonicalize_identifier",
    "coerce_cohort_code",
    "cohort_codes_match",
    "compute_content_hash",
    "lock_gathering_after_commit",
    "normalize_identifier",
    "parse_attendance_file",
    "partition_paths",
    "reconcile",
]
