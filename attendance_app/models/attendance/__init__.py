"""
Attendance ingestion models package.
"""

from .schema import AttendanceBatch, AttendanceIssue, AttendanceUpload, ImmutableBatchError

__all__ = [
    "AttendanceUpload",
    "AttendanceBatch",
    "AttendanceIssue",
    "ImmutableBatchError",
]
