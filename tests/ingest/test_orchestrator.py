from __future__ import annotations

from datetime import date

import pytest

from attendance_app.ingest.exceptions import (
    GatheringLockedError,
    LeaveFetchError,
    ParseError,
    RosterFetchError,
    UploadAlreadyCommittedError,
    UploadNotFoundError,
    UploadTooLargeError,
)
from attendance_app.ingest.pipeline.orchestrator import AttendanceIngestService, lock_gathering_after_commit
from attendance_app.ingest.storage import get_json
from attendance_app.models import AttendanceBatch, AttendanceIssue, AttendanceUpload, Gathering, db


def _register(service, env, rows, make_csv, uploader_id=1):
    return service.register_upload(env.gathering.id, env.cohort.id, make_csv(rows), uploader_id, "export.csv")


def test_preview_does_not_persist(level_100, ingest_service, make_csv):
    registration = _register(ingest_service, level_100, [["cs/100/01", "Ada", "100"], ["cs/100/03", "Eze", "100"]], make_csv)

    preview = ingest_service.preview_upload(registration.upload_id)

    assert [record["externalId"] for record in preview.matched] == ["CS/100/01"]
    assert [record["externalId"] for record in preview.absent] == ["CS/100/02"]
    assert preview.exempt == []
    assert preview.unmatched[0]["identifier"] == "cs/100/03"
    assert preview.unmatched[0]["reason"] == "student not found in roster"
    assert preview.summary == {
        "total": 2,
        "matched_count": 1,
        "unmatched_count": 1,
        "absent_count": 1,
        "exempt_count": 0,
        "duplicate_count": 0,
    }
    payload = preview.to_dict()
    assert payload["uploadId"] == registration.upload_id
    assert db.session.query(AttendanceBatch).count() == 0
    assert db.session.query(AttendanceIssue).count() == 0


def test_confirm_commits_batch_and_locks_gathering(level_100, ingest_service, blob_store, make_csv):
    registration = _register(ingest_service, level_100, [["cs/100/01", "Ada", "100"], ["cs/100/03", "Eze", "100"]], make_csv)

    result = ingest_service.confirm_upload(registration.upload_id, confirmed_by=7)

    assert result.version == 1
    assert result.matched_count == 1
    assert result.unmatched_count == 1
    assert result.records_processed == 3
    assert set(result.storage_paths) == {"present", "absent", "exempt", "issues"}
    payload = result.to_dict()
    assert payload["batchId"] == result.batch_id
    assert payload["recordsProcessed"] == 3

    batch = db.session.get(AttendanceBatch, result.batch_id)
    assert batch.confirmed_by_id == 7
    assert get_json(blob_store, batch.present_path)[0]["externalId"] == "CS/100/01"
    assert db.session.get(Gathering, level_100.gathering.id).locked_after_ingestion is True


def test_confirm_twice_creates_new_versions(level_100, ingest_service, make_csv):
    registration = _register(ingest_service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)

    first = ingest_service.confirm_upload(registration.upload_id)
    second = ingest_service.confirm_upload(registration.upload_id)

    assert (first.version, second.version) == (1, 2)
    assert first.batch_id != second.batch_id


def test_confirm_reads_leave_register_at_confirm_time(level_100, ingest_service, leave_factory, make_csv):
    registration = _register(ingest_service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)
    before = ingest_service.preview_upload(registration.upload_id)
    assert [record["externalId"] for record in before.absent] == ["CS/100/02"]

    leave_factory(level_100.second, date(2024, 3, 9), date(2024, 3, 11))
    result = ingest_service.confirm_upload(registration.upload_id)

    batch = db.session.get(AttendanceBatch, result.batch_id)
    assert (batch.present_count, batch.absent_count, batch.exempt_count) == (1, 0, 1)


def test_duplicate_scans_recorded_as_issues_when_enabled(app, level_100, ingest_service, make_csv):
    rows = [["cs/100/01", "Ada", "100"], ["CS/100/01", "Ada", "100"]]
    registration = _register(ingest_service, level_100, rows, make_csv)

    result = ingest_service.confirm_upload(registration.upload_id)

    assert result.unmatched_count == 0
    issue = db.session.query(AttendanceIssue).one()
    assert issue.issue_type == "duplicate_scan"
    assert issue.batch_id == result.batch_id


def test_duplicate_scans_not_recorded_when_disabled(app, level_100, blob_store, make_csv):
    app.config["ATTENDANCE_RECORD_DUPLICATE_SCANS"] = False
    service = AttendanceIngestService(db.session, blob_store)
    rows = [["cs/100/01", "Ada", "100"], ["CS/100/01", "Ada", "100"]]
    registration = _register(service, level_100, rows, make_csv)

    result = service.confirm_upload(registration.upload_id)

    assert db.session.query(AttendanceIssue).count() == 0
    assert db.session.get(AttendanceBatch, result.batch_id).issue_count == 0


def test_lock_hook_can_be_disabled(app, level_100, blob_store, make_csv):
    app.config["ATTENDANCE_LOCK_ON_COMMIT"] = False
    service = AttendanceIngestService(db.session, blob_store)
    registration = _register(service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)

    service.confirm_upload(registration.upload_id)

    assert db.session.get(Gathering, level_100.gathering.id).locked_after_ingestion is False


def test_single_ingestion_refuses_locked_gathering(app, level_100, blob_store, make_csv):
    app.config["ATTENDANCE_SINGLE_INGESTION"] = True
    service = AttendanceIngestService(db.session, blob_store)
    registration = _register(service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)
    service.confirm_upload(registration.upload_id)

    with pytest.raises(GatheringLockedError):
        service.confirm_upload(registration.upload_id)
    assert db.session.query(AttendanceBatch).count() == 1


def test_failing_post_commit_hook_keeps_batch(level_100, blob_store, make_csv):
    def broken_hook(batch, upload):
        raise RuntimeError("notification service down")

    seen = []
    service = AttendanceIngestService(
        db.session,
        blob_store,
        post_commit_hooks=[broken_hook, lambda batch, upload: seen.append(batch.id), lock_gathering_after_commit],
    )
    registration = _register(service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)

    result = service.confirm_upload(registration.upload_id)

    assert seen == [result.batch_id]
    assert db.session.get(AttendanceBatch, result.batch_id) is not None
    assert db.session.get(Gathering, level_100.gathering.id).locked_after_ingestion is True


@pytest.mark.parametrize(("target", "error"), [("roster", RosterFetchError), ("leave", LeaveFetchError)])
def test_fetch_failure_writes_nothing(level_100, ingest_service, make_csv, monkeypatch, target, error):
    registration = _register(ingest_service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)

    def fail(*args, **kwargs):
        raise error("reference data unavailable", cohort_id=level_100.cohort.id)

    if target == "roster":
        monkeypatch.setattr(ingest_service.roster, "active_members", fail)
    else:
        monkeypatch.setattr(ingest_service.leave_register, "exempt_member_ids", fail)

    with pytest.raises(error):
        ingest_service.confirm_upload(registration.upload_id)

    assert db.session.query(AttendanceBatch).count() == 0
    assert db.session.get(AttendanceUpload, registration.upload_id).version_counter == 0
    assert db.session.get(Gathering, level_100.gathering.id).locked_after_ingestion is False


def test_register_rejects_unparseable_file_before_storing(level_100, ingest_service):
    with pytest.raises(ParseError):
        ingest_service.register_upload(level_100.gathering.id, level_100.cohort.id, b"Name\nAda\n", None)
    assert db.session.query(AttendanceUpload).count() == 0


def test_register_rejects_oversized_file(app, level_100, blob_store, make_csv):
    app.config["ATTENDANCE_MAX_UPLOAD_MB"] = 1
    service = AttendanceIngestService(db.session, blob_store)
    payload = make_csv([[f"CS/100/{n:06d}", "x" * 40, "100"] for n in range(25000)])
    assert len(payload) > 1024 * 1024

    with pytest.raises(UploadTooLargeError):
        service.register_upload(level_100.gathering.id, level_100.cohort.id, payload, None)


def test_unknown_upload(ingest_service):
    with pytest.raises(UploadNotFoundError):
        ingest_service.preview_upload(404)
    with pytest.raises(UploadNotFoundError):
        ingest_service.confirm_upload(404)


def test_cancel_removes_upload_and_raw_file(level_100, ingest_service, blob_store, make_csv):
    registration = _register(ingest_service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)
    storage_path = registration.upload.storage_path

    ingest_service.cancel_upload(registration.upload_id)

    assert db.session.query(AttendanceUpload).count() == 0
    assert blob_store.exists(storage_path) is False


def test_cancel_withdraws_shared_upload_for_every_uploader(level_100, ingest_service, blob_store, make_csv):
    rows = [["cs/100/01", "Ada", "100"]]
    first = _register(ingest_service, level_100, rows, make_csv, uploader_id=1)
    second = _register(ingest_service, level_100, rows, make_csv, uploader_id=2)
    storage_path = first.upload.storage_path
    assert second.is_duplicate is True
    assert second.upload_id == first.upload_id

    ingest_service.cancel_upload(second.upload_id)

    with pytest.raises(UploadNotFoundError):
        ingest_service.get_upload(first.upload_id)
    assert blob_store.exists(storage_path) is False

    again = _register(ingest_service, level_100, rows, make_csv, uploader_id=1)
    assert again.is_duplicate is False
    assert blob_store.exists(again.upload.storage_path) is True


def test_cancel_refused_after_confirm(level_100, ingest_service, make_csv):
    registration = _register(ingest_service, level_100, [["cs/100/01", "Ada", "100"]], make_csv)
    ingest_service.confirm_upload(registration.upload_id)

    with pytest.raises(UploadAlreadyCommittedError):
        ingest_service.cancel_upload(registration.upload_id)
