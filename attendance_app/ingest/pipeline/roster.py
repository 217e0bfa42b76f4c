"""
Roster index: the active members of a cohort, keyed for identifier matching.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from attendance_app.ingest.exceptions import RosterFetchError
from attendance_app.ingest.metrics import record_fetch_failure
from attendance_app.ingest.pipeline.normalize import canonicalize_identifier
from attendance_app.models import Member, MemberStatus, db


@dataclass(frozen=True, order=True)
class RosterMember:
    """Read-only snapshot of an active member used during reconciliation."""

    external_id: str
    internal_id: int
    display_name: str
    cohort_code: str | None = None
    category: str | None = None

    @property
    def canonical_id(self) -> str:
        return canonicalize_identifier(self.external_id)

    def as_record(self) -> dict[str, object | None]:
        return {
            "internalId": self.internal_id,
            "externalId": self.external_id,
            "displayName": self.display_name,
            "cohortCode": self.cohort_code,
            "category": self.category,
        }


class RosterIndex:
    """Reads active cohort members from the relational store."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def active_members(self, cohort_id: int) -> frozenset[RosterMember]:
        try:
            members = (
                self.session.query(Member)
                .options(joinedload(Member.cohort))
                .filter(Member.cohort_id == cohort_id, Member.status == MemberStatus.ACTIVE)
                .all()
            )
        except SQLAlchemyError as exc:
            record_fetch_failure("roster")
            current_app.logger.error(f"Failed to fetch roster for cohort {cohort_id}: {str(exc)}")
            raise RosterFetchError(f"Failed to fetch roster for cohort {cohort_id}: {exc}", cohort_id=cohort_id) from exc

        return frozenset(
            RosterMember(
                external_id=member.external_id.strip(),
                internal_id=member.id,
                display_name=member.display_name,
                cohort_code=member.cohort.code if member.cohort is not None else None,
                category=member.gender.value if member.gender is not None else None,
            )
            for member in members
        )
