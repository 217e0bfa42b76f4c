"""
SQLAlchemy models for attendance ingestion.

Uploads are deduplicated by content hash per gathering/cohort pair. Each
confirmation of an upload produces one immutable, version-numbered batch whose
four partitions live in the blob store; the batch row is the commit point that
makes those files authoritative.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import ForeignKey, Index, UniqueConstraint, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImmutableBatchError(RuntimeError):
    """Raised when code attempts to modify a committed attendance batch."""


class AttendanceUpload(BaseModel):
    """A raw attendance export registered for one gathering/cohort pair."""

    __tablename__ = "attendance_uploads"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    gathering_id: Mapped[int] = mapped_column(
        ForeignKey("gatherings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cohort_id: Mapped[int] = mapped_column(ForeignKey("cohorts.id"), nullable=False, index=True)
    content_hash: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    storage_path: Mapped[str] = mapped_column(db.String(500), nullable=False)
    original_filename: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    size_bytes: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    uploaded_by_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True, index=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    version_counter: Mapped[int] = mapped_column(
        db.Integer,
        nullable=False,
        default=0,
        comment="Last batch version reserved for this upload; incremented transactionally.",
    )

    gathering = relationship("Gathering")
    cohort = relationship("Cohort")
    batches = relationship(
        "AttendanceBatch",
        back_populates="upload",
        order_by="AttendanceBatch.version_number",
    )

    __table_args__ = (
        UniqueConstraint(
            "gathering_id",
            "cohort_id",
            "content_hash",
            name="uq_attendance_uploads_gathering_cohort_hash",
        ),
    )

    def __repr__(self):
        return f"<AttendanceUpload {self.id} gathering={self.gathering_id} cohort={self.cohort_id}>"


class AttendanceBatch(BaseModel):
    """Immutable reconciliation result for one confirmation of an upload."""

    __tablename__ = "attendance_batches"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    upload_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_uploads.id"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(db.Integer, nullable=False)
    raw_path: Mapped[str] = mapped_column(db.String(500), nullable=False)
    present_path: Mapped[str] = mapped_column(db.String(500), nullable=False)
    absent_path: Mapped[str] = mapped_column(db.String(500), nullable=False)
    exempt_path: Mapped[str] = mapped_column(db.String(500), nullable=False)
    issues_path: Mapped[str] = mapped_column(db.String(500), nullable=False)
    rows_total: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    present_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    absent_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    exempt_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    issue_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    confirmed_by_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)

    upload = relationship("AttendanceUpload", back_populates="batches")
    issues = relationship("AttendanceIssue", back_populates="batch", order_by="AttendanceIssue.id")

    __table_args__ = (
        UniqueConstraint("upload_id", "version_number", name="uq_attendance_batches_upload_version"),
        Index("idx_attendance_batches_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<AttendanceBatch {self.id} upload={self.upload_id} v{self.version_number}>"

    @property
    def storage_paths(self) -> dict[str, str]:
        return {
            "present": self.present_path,
            "absent": self.absent_path,
            "exempt": self.exempt_path,
            "issues": self.issues_path,
        }


@event.listens_for(AttendanceBatch, "before_update")
def _reject_batch_updates(mapper, connection, target):
    state = inspect(target)
    changed = [attr.key for attr in mapper.column_attrs if state.attrs[attr.key].history.has_changes()]
    if changed:
        raise ImmutableBatchError(
            f"Attendance batch {target.id} is immutable (attempted to change {', '.join(sorted(changed))}); "
            "confirm a new version instead."
        )


class AttendanceIssue(BaseModel):
    """A row that could not be cleanly reconciled, kept for follow-up."""

    __tablename__ = "attendance_issues"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_batches.id"),
        nullable=False,
        index=True,
    )
    member_id: Mapped[int | None] = mapped_column(ForeignKey("members.id"), nullable=True, index=True)
    issue_type: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(db.Text, nullable=False)
    raw_payload: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    resolved: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False, index=True)
    resolved_by_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    batch = relationship("AttendanceBatch", back_populates="issues")
    member = relationship("Member")

    __table_args__ = (Index("idx_attendance_issues_batch_type", "batch_id", "issue_type"),)

    def __repr__(self):
        return f"<AttendanceIssue {self.id} {self.issue_type} resolved={self.resolved}>"
