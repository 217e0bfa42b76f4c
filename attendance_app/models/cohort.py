# attendance_app/models/cohort.py

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .base import BaseModel, db


class Cohort(BaseModel):
    """Stable reference data for a cohort (academic level)"""

    __tablename__ = "cohorts"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)

    members = db.relationship("Member", back_populates="cohort")

    def __repr__(self):
        return f"<Cohort {self.code}>"

    @staticmethod
    def find_by_code(code):
        """Find cohort by its external code with error handling"""
        try:
            return Cohort.query.filter_by(code=str(code).strip()).first()
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding cohort by code {code}: {str(e)}")
            return None
