from __future__ import annotations

import json

import pytest

from attendance_app.models import AttendanceIssue, AttendanceUpload, db


@pytest.fixture
def export_file(tmp_path, make_csv):
    path = tmp_path / "service.csv"
    path.write_bytes(make_csv([["CS/100/01", "Ada", "100"], ["CS/100/44", "Ghost", "100"]]))
    return path


def _upload(runner, env, export_file):
    result = runner.invoke(
        args=[
            "attendance",
            "upload",
            "--gathering-id",
            str(env.gathering.id),
            "--cohort-id",
            str(env.cohort.id),
            "--file",
            str(export_file),
            "--uploader-id",
            "3",
        ]
    )
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def test_upload_command_registers_once(runner, level_100, export_file):
    first = _upload(runner, level_100, export_file)
    second = _upload(runner, level_100, export_file)

    assert first["is_duplicate"] is False
    assert second["is_duplicate"] is True
    assert second["upload_id"] == first["upload_id"]
    assert first["storage_path"].endswith(f"/raw/{first['content_hash']}.csv")
    assert db.session.get(AttendanceUpload, first["upload_id"]).original_filename == "service.csv"


def test_upload_command_reports_unknown_gathering(runner, level_100, export_file):
    result = runner.invoke(
        args=["attendance", "upload", "--gathering-id", "999", "--cohort-id", str(level_100.cohort.id), "--file", str(export_file)]
    )

    assert result.exit_code == 1
    assert "Gathering 999 not found" in result.output


def test_upload_command_rejects_non_csv(runner, level_100, tmp_path):
    sheet = tmp_path / "service.xlsx"
    sheet.write_bytes(b"PK")

    result = runner.invoke(
        args=["attendance", "upload", "--gathering-id", str(level_100.gathering.id), "--cohort-id", str(level_100.cohort.id), "--file", str(sheet)]
    )

    assert result.exit_code == 2
    assert "not a CSV export" in result.output
    assert db.session.query(AttendanceUpload).count() == 0


def test_preview_confirm_and_report_commands(runner, level_100, export_file, tmp_path):
    upload_id = _upload(runner, level_100, export_file)["upload_id"]

    preview = runner.invoke(args=["attendance", "preview", str(upload_id)])
    assert preview.exit_code == 0, preview.output
    preview_payload = json.loads(preview.output)
    assert preview_payload["summary"]["matched_count"] == 1
    assert preview_payload["unmatched"][0]["identifier"] == "cs/100/44"

    confirm = runner.invoke(args=["attendance", "confirm", str(upload_id), "--inline", "--confirmed-by", "5"])
    assert confirm.exit_code == 0, confirm.output
    confirm_payload = json.loads(confirm.output)
    assert confirm_payload["version"] == 1
    assert confirm_payload["recordsProcessed"] == 3

    batches = runner.invoke(args=["attendance", "batches", "--upload-id", str(upload_id)])
    assert f"upload={upload_id} v1 present=1 absent=1 exempt=0 issues=1" in batches.output

    summary = runner.invoke(args=["attendance", "summary", str(level_100.gathering.id)])
    assert summary.exit_code == 0, summary.output
    assert json.loads(summary.output)["summary"]["attendance_rate"] == 50.0

    output = tmp_path / "out" / "attendance.csv"
    output.parent.mkdir()
    export = runner.invoke(args=["attendance", "export", str(level_100.gathering.id), "--output", str(output)])
    assert export.exit_code == 0, export.output
    assert output.read_text(encoding="utf-8").splitlines()[0] == (
        "status,externalId,displayName,cohortCode,category,internalId"
    )

    uploads = runner.invoke(args=["attendance", "uploads", "--gathering-id", str(level_100.gathering.id)])
    assert uploads.exit_code == 0, uploads.output
    assert json.loads(uploads.output)["items"][0]["latest_version"] == 1

    cancel = runner.invoke(args=["attendance", "cancel", str(upload_id)])
    assert cancel.exit_code == 1
    assert "cannot be cancelled" in cancel.output


def test_issue_commands(runner, level_100, export_file):
    upload_id = _upload(runner, level_100, export_file)["upload_id"]
    runner.invoke(args=["attendance", "confirm", str(upload_id), "--inline"])
    issue = db.session.query(AttendanceIssue).one()

    listing = runner.invoke(args=["attendance", "issues", "--type", "unmatched_student"])
    assert listing.exit_code == 0, listing.output
    assert f"[ ] {issue.id} batch={issue.batch_id} unmatched_student: student not found in roster" in listing.output

    resolve = runner.invoke(args=["attendance", "resolve-issue", str(issue.id), "--resolver-id", "2", "--notes", "visitor"])
    assert resolve.exit_code == 0, resolve.output
    assert f"Issue {issue.id} resolved." in resolve.output

    assert "No issues found." in runner.invoke(args=["attendance", "issues"]).output
    resolved = runner.invoke(args=["attendance", "issues", "--status", "resolved"])
    assert f"[x] {issue.id}" in resolved.output


def test_cancel_command(runner, level_100, export_file):
    upload_id = _upload(runner, level_100, export_file)["upload_id"]

    result = runner.invoke(args=["attendance", "cancel", str(upload_id)])

    assert result.exit_code == 0, result.output
    assert f"Cancelled upload {upload_id}." in result.output
    assert db.session.query(AttendanceUpload).count() == 0


def test_batches_command_when_empty(runner):
    result = runner.invoke(args=["attendance", "batches"])

    assert result.exit_code == 0
    assert "No batches found." in result.output


def test_queued_confirm_requires_worker(runner, level_100, export_file):
    upload_id = _upload(runner, level_100, export_file)["upload_id"]

    result = runner.invoke(args=["attendance", "confirm", str(upload_id)])

    assert result.exit_code == 1
    assert "ATTENDANCE_WORKER_ENABLED" in result.output


def test_resolve_unknown_issue_reports_not_found(runner):
    result = runner.invoke(args=["attendance", "resolve-issue", "404"])

    assert result.exit_code == 1
    assert "Attendance issue 404 not found." in result.output


def test_issue_listing_pages(runner, level_100, tmp_path, make_csv):
    export = tmp_path / "ghosts.csv"
    export.write_bytes(make_csv([[f"CS/100/{n}", "Ghost", "100"] for n in range(50, 53)]))
    upload_id = _upload(runner, level_100, export)["upload_id"]
    runner.invoke(args=["attendance", "confirm", str(upload_id), "--inline"])

    first = runner.invoke(args=["attendance", "issues", "--page-size", "2"])
    assert first.exit_code == 0, first.output
    assert first.output.count("unmatched_student") == 2
    assert "Page 1 of 2 (total: 3)." in first.output

    second = runner.invoke(args=["attendance", "issues", "--page-size", "2", "--page", "2"])
    assert second.output.count("unmatched_student") == 1
    assert "Page 2 of 2 (total: 3)." in second.output

    past_end = runner.invoke(args=["attendance", "issues", "--page-size", "2", "--page", "3"])
    assert "No issues found." not in past_end.output
    assert "Page 3 of 2 (total: 3)." in past_end.output

    invalid = runner.invoke(args=["attendance", "issues", "--page", "0"])
    assert invalid.exit_code == 2
