# attendance_app/models/gathering.py

from sqlalchemy import Enum, Index, UniqueConstraint

from .base import BaseModel, db
from .enums import GatheringCategory


class GatheringLockedError(RuntimeError):
    """Raised when a locked gathering is asked to change structurally or re-ingest."""

    def __init__(self, gathering_id, message=None):
        super().__init__(message or f"Gathering {gathering_id} is locked after ingestion.")
        self.gathering_id = gathering_id


class Gathering(BaseModel):
    """A scheduled, attendance-tracked service"""

    __tablename__ = "gatherings"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=True)
    scheduled_date = db.Column(db.Date, nullable=False, index=True)
    scheduled_time = db.Column(db.Time, nullable=False)
    category = db.Column(
        Enum(GatheringCategory, name="gathering_category_enum"),
        default=GatheringCategory.SUNDAY_SERVICE,
        nullable=False,
        index=True,
    )
    locked_after_ingestion = db.Column(db.Boolean, default=False, nullable=False)

    cohort_links = db.relationship("GatheringCohort", back_populates="gathering", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_gathering_date_time", "scheduled_date", "scheduled_time"),)

    def __repr__(self):
        return f"<Gathering {self.id} {self.scheduled_date}>"

    @property
    def display_name(self):
        if self.name:
            return self.name
        return self.category.value.replace("_", " ").title()

    @property
    def eligible_cohort_ids(self):
        return {link.cohort_id for link in self.cohort_links}

    def is_cohort_eligible(self, cohort_id):
        """Gatherings without explicit cohort links are open to every cohort."""
        eligible = self.eligible_cohort_ids
        return not eligible or cohort_id in eligible

    def set_eligible_cohorts(self, cohorts):
        """Replace the cohort-eligibility constraint. Refused once locked."""
        if self.locked_after_ingestion:
            raise GatheringLockedError(self.id, f"Gathering {self.id} is locked; cohort eligibility cannot change.")
        self.cohort_links = [GatheringCohort(cohort=cohort) for cohort in cohorts]

    def lock(self):
        self.locked_after_ingestion = True


class GatheringCohort(BaseModel):
    """Association between a gathering and an eligible cohort"""

    __tablename__ = "gathering_cohorts"

    id = db.Column(db.Integer, primary_key=True)
    gathering_id = db.Column(db.Integer, db.ForeignKey("gatherings.id", ondelete="CASCADE"), nullable=False, index=True)
    cohort_id = db.Column(db.Integer, db.ForeignKey("cohorts.id"), nullable=False, index=True)

    gathering = db.relationship("Gathering", back_populates="cohort_links")
    cohort = db.relationship("Cohort")

    __table_args__ = (UniqueConstraint("gathering_id", "cohort_id", name="uq_gathering_cohorts_pair"),)
