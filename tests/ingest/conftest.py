from __future__ import annotations

import csv
import io
from datetime import date, time
from types import SimpleNamespace

import pytest

from attendance_app.ingest.pipeline.orchestrator import AttendanceIngestService
from attendance_app.models import (
    Cohort,
    Gathering,
    GatheringCategory,
    LeaveRecord,
    LeaveStatus,
    Member,
    MemberStatus,
    db,
)

SERVICE_DATE = date(2024, 3, 10)


def build_csv(rows, header=("UniqueID", "Name", "Level")) -> bytes:
    """Render ``rows`` (sequences of cells) as CSV bytes with ``header``."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


@pytest.fixture
def make_csv():
    return build_csv


@pytest.fixture
def cohort_factory(app):
    def _factory(code: str = "100", name: str | None = None) -> Cohort:
        cohort = Cohort(code=code, name=name or f"Level {code}")
        db.session.add(cohort)
        db.session.commit()
        return cohort

    return _factory


@pytest.fixture
def member_factory(app):
    def _factory(
        cohort: Cohort,
        external_id: str,
        *,
        first_name: str = "Ada",
        last_name: str | None = None,
        status: MemberStatus = MemberStatus.ACTIVE,
    ) -> Member:
        member = Member(
            external_id=external_id,
            first_name=first_name,
            last_name=last_name or external_id.replace("/", ""),
            status=status,
            cohort_id=cohort.id,
        )
        db.session.add(member)
        db.session.commit()
        return member

    return _factory


@pytest.fixture
def gathering_factory(app):
    def _factory(
        scheduled_date: date = SERVICE_DATE,
        *,
        cohorts=None,
        name: str | None = None,
    ) -> Gathering:
        gathering = Gathering(
            name=name,
            scheduled_date=scheduled_date,
            scheduled_time=time(9, 0),
            category=GatheringCategory.SUNDAY_SERVICE,
        )
        if cohorts:
            gathering.set_eligible_cohorts(cohorts)
        db.session.add(gathering)
        db.session.commit()
        return gathering

    return _factory


@pytest.fixture
def leave_factory(app):
    def _factory(
        member: Member,
        start_date: date,
        end_date: date,
        *,
        status: LeaveStatus = LeaveStatus.ACTIVE,
    ) -> LeaveRecord:
        record = LeaveRecord(
            member_id=member.id,
            start_date=start_date,
            end_date=end_date,
            status=status,
            reason="exeat",
        )
        db.session.add(record)
        db.session.commit()
        return record

    return _factory


@pytest.fixture
def level_100(cohort_factory, member_factory, gathering_factory):
    """Cohort 100 with two active members and one inactive, plus an open gathering."""

    cohort = cohort_factory("100")
    first = member_factory(cohort, "CS/100/01", first_name="Ada")
    second = member_factory(cohort, "CS/100/02", first_name="Bola")
    inactive = member_factory(cohort, "CS/100/09", first_name="Chi", status=MemberStatus.INACTIVE)
    gathering = gathering_factory()
    return SimpleNamespace(cohort=cohort, first=first, second=second, inactive=inactive, gathering=gathering)


@pytest.fixture
def ingest_service(app, blob_store):
    return AttendanceIngestService(db.session, blob_store)
