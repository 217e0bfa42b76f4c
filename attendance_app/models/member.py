# attendance_app/models/member.py

from sqlalchemy import Enum, Index

from .base import BaseModel, db
from .enums import Gender, MemberStatus


class Member(BaseModel):
    """Enrolled student. Only active members take part in reconciliation."""

    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(50), unique=True, nullable=False, index=True)  # matriculation number
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    gender = db.Column(Enum(Gender, name="member_gender_enum"), nullable=True)
    status = db.Column(
        Enum(MemberStatus, name="member_status_enum"),
        default=MemberStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    cohort_id = db.Column(db.Integer, db.ForeignKey("cohorts.id"), nullable=False, index=True)

    cohort = db.relationship("Cohort", back_populates="members")
    leave_records = db.relationship("LeaveRecord", back_populates="member", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_member_cohort_status", "cohort_id", "status"),)

    def __repr__(self):
        return f"<Member {self.external_id}>"

    @property
    def display_name(self):
        return f"{self.first_name} {self.last_name}".strip()
