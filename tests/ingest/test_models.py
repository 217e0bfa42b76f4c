from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from attendance_app.models import (
    AttendanceUpload,
    Cohort,
    GatheringLockedError,
    LeaveRecord,
    LeaveStatus,
    db,
)


def test_gathering_without_links_is_open_to_every_cohort(level_100, cohort_factory):
    other = cohort_factory("200")

    assert level_100.gathering.is_cohort_eligible(level_100.cohort.id)
    assert level_100.gathering.is_cohort_eligible(other.id)


def test_locked_gathering_refuses_eligibility_changes(level_100, cohort_factory):
    other = cohort_factory("200")
    gathering = level_100.gathering
    gathering.set_eligible_cohorts([level_100.cohort])
    db.session.commit()
    assert gathering.eligible_cohort_ids == {level_100.cohort.id}
    assert not gathering.is_cohort_eligible(other.id)

    gathering.lock()
    db.session.commit()

    with pytest.raises(GatheringLockedError):
        gathering.set_eligible_cohorts([level_100.cohort, other])
    assert gathering.eligible_cohort_ids == {level_100.cohort.id}


def test_gathering_display_name(level_100):
    assert level_100.gathering.display_name == "Sunday Service"


def test_leave_record_covers_inclusive_range(level_100, leave_factory):
    record = leave_factory(level_100.first, date(2024, 3, 1), date(2024, 3, 10))

    assert record.covers(date(2024, 3, 1))
    assert record.covers(date(2024, 3, 10))
    assert not record.covers(date(2024, 3, 11))
    record.status = LeaveStatus.ENDED
    assert not record.covers(date(2024, 3, 5))


def test_leave_record_rejects_inverted_range(level_100):
    db.session.add(
        LeaveRecord(member_id=level_100.first.id, start_date=date(2024, 3, 10), end_date=date(2024, 3, 1))
    )
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_upload_content_hash_unique_per_pair(level_100):
    for _ in range(2):
        db.session.add(
            AttendanceUpload(
                gathering_id=level_100.gathering.id,
                cohort_id=level_100.cohort.id,
                content_hash="f" * 64,
                storage_path="raw.csv",
            )
        )
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_cohort_find_by_code(level_100):
    assert Cohort.find_by_code(" 100 ").id == level_100.cohort.id
    assert Cohort.find_by_code("999") is None
