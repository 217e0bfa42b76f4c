# attendance_app/models/leave.py

from sqlalchemy import CheckConstraint, Enum, Index

from .base import BaseModel, db
from .enums import LeaveStatus


class LeaveRecord(BaseModel):
    """Approved absence (exeat) covering an inclusive date range.

    Overlapping active ranges for one member are rejected where leave records
    are created; the reconciliation engine only reads them.
    """

    __tablename__ = "leave_records"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(
        Enum(LeaveStatus, name="leave_status_enum"),
        default=LeaveStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    reason = db.Column(db.Text, nullable=True)

    member = db.relationship("Member", back_populates="leave_records")

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_leave_records_date_order"),
        Index("idx_leave_status_period", "status", "start_date", "end_date"),
    )

    def __repr__(self):
        return f"<LeaveRecord member={self.member_id} {self.start_date}..{self.end_date} ({self.status.value})>"

    def covers(self, on_date):
        """Return True when this record exempts its member on ``on_date``."""
        return self.status == LeaveStatus.ACTIVE and self.start_date <= on_date <= self.end_date
