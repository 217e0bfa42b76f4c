"""
Issue recorder: persist row-level reconciliation problems for follow-up.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from attendance_app.ingest.pipeline.matcher import ValidationIssue
from attendance_app.ingest.utils import ensure_json_serializable
from attendance_app.models import AttendanceIssue, db


class IssueRecorder:
    """Turns ``ValidationIssue`` entries into ``AttendanceIssue`` rows."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def record_issues(self, batch_id: int, unmatched_rows: Iterable[ValidationIssue]) -> list[AttendanceIssue]:
        """
        Add one unresolved issue per row to the current transaction.

        The caller owns the transaction; nothing is committed here so issues
        become visible together with their batch.
        """

        issues: list[AttendanceIssue] = []
        for row in unmatched_rows:
            issue = AttendanceIssue(
                batch_id=batch_id,
                member_id=row.member_id,
                issue_type=row.reason_code,
                description=row.reason,
                raw_payload=ensure_json_serializable(dict(row.raw_payload)),
                resolved=False,
            )
            self.session.add(issue)
            issues.append(issue)
        return issues
