# attendance_app/models/__init__.py
"""
Database models package
"""

from .attendance import AttendanceBatch, AttendanceIssue, AttendanceUpload, ImmutableBatchError
from .base import BaseModel, db
from .cohort import Cohort
from .enums import Gender, GatheringCategory, LeaveStatus, MemberStatus
from .gathering import Gathering, GatheringCohort, GatheringLockedError
from .leave import LeaveRecord
from .member import Member

__all__ = [
    "db",
    "BaseModel",
    # Reference and roster models
    "Cohort",
    "Member",
    "Gathering",
    "GatheringCohort",
    "LeaveRecord",
    # Attendance ingestion models
    "AttendanceUpload",
    "AttendanceBatch",
    "AttendanceIssue",
    # Enums
    "MemberStatus",
    "Gender",
    "LeaveStatus",
    "GatheringCategory",
    # Errors
    "GatheringLockedError",
    "ImmutableBatchError",
]
