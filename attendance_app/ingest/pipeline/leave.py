"""
Leave register lookup: which cohort members hold a covering active leave record.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attendance_app.ingest.exceptions import LeaveFetchError
from attendance_app.ingest.metrics import record_fetch_failure
from attendance_app.models import LeaveRecord, LeaveStatus, Member, db


class LeaveRegister:
    """Answers exemption queries against stored leave records."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def exempt_member_ids(self, cohort_id: int, on_date: date) -> frozenset[int]:
        """
        Return ids of cohort members with an active leave whose inclusive
        range contains ``on_date``.

        Raises:
            LeaveFetchError: the register could not be read. Callers must not
                treat this as "nobody is exempt".
        """

        try:
            rows = (
                self.session.query(LeaveRecord.member_id)
                .join(Member, Member.id == LeaveRecord.member_id)
                .filter(
                    Member.cohort_id == cohort_id,
                    LeaveRecord.status == LeaveStatus.ACTIVE,
                    LeaveRecord.start_date <= on_date,
                    LeaveRecord.end_date >= on_date,
                )
                .distinct()
                .all()
            )
        except SQLAlchemyError as exc:
            record_fetch_failure("leave")
            current_app.logger.error(f"Failed to fetch leave records for cohort {cohort_id} on {on_date}: {str(exc)}")
            raise LeaveFetchError(
                f"Failed to fetch leave records for cohort {cohort_id} on {on_date}: {exc}",
                cohort_id=cohort_id,
            ) from exc
        return frozenset(member_id for (member_id,) in rows)
