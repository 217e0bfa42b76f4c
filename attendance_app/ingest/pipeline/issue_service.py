"""
Service helpers for querying and resolving attendance issues.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from flask import current_app
from sqlalchemy.orm import Session

from attendance_app.ingest.exceptions import IssueNotFoundError
from attendance_app.ingest.pipeline.report_service import (
    DEFAULT_PAGE,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    coerce_optional_id,
    coerce_positive_int,
)
from attendance_app.models import AttendanceBatch, AttendanceIssue, AttendanceUpload, db

_TRUE_VALUES = {"1", "true", "yes", "on", "resolved"}
_FALSE_VALUES = {"0", "false", "no", "off", "open", "unresolved"}


def _coerce_resolved(value: Any) -> bool | None:
    if value is None or value == "" or value == "all":
        return None
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in _TRUE_VALUES:
        return True
    if token in _FALSE_VALUES:
        return False
    raise ValueError(f"Unsupported resolved filter '{value}'.")


@dataclass(frozen=True)
class IssueFilters:
    """Filter options for issue listings. ``resolved=None`` returns both states."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    resolved: bool | None = False
    gathering_id: int | None = None
    cohort_id: int | None = None
    batch_id: int | None = None
    issue_type: str | None = None

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        resolved: bool | str | None = False,
        gathering_id: int | str | None = None,
        cohort_id: int | str | None = None,
        batch_id: int | str | None = None,
        issue_type: str | None = None,
    ) -> "IssueFilters":
        resolved_type = issue_type.strip().lower() if isinstance(issue_type, str) and issue_type.strip() else None
        return cls(
            page=coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=min(coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE),
            resolved=_coerce_resolved(resolved),
            gathering_id=coerce_optional_id(gathering_id),
            cohort_id=coerce_optional_id(cohort_id),
            batch_id=coerce_optional_id(batch_id),
            issue_type=resolved_type,
        )


@dataclass(slots=True)
class IssueSummary:
    id: int
    batch_id: int
    upload_id: int
    gathering_id: int
    cohort_id: int
    member_id: int | None
    issue_type: str
    description: str
    raw_payload: dict[str, Any] | None
    resolved: bool
    resolved_by_id: int | None
    resolved_at: datetime | None
    resolution_notes: str | None


@dataclass(slots=True)
class IssueListResult:
    items: list[IssueSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


class AttendanceIssueService:
    """Facade for issue listing and resolution."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def list_issues(self, filters: IssueFilters) -> IssueListResult:
        query = (
            self.session.query(AttendanceIssue, AttendanceUpload)
            .join(AttendanceBatch, AttendanceBatch.id == AttendanceIssue.batch_id)
            .join(AttendanceUpload, AttendanceUpload.id == AttendanceBatch.upload_id)
        )
        if filters.resolved is not None:
            query = query.filter(AttendanceIssue.resolved.is_(filters.resolved))
        if filters.gathering_id is not None:
            query = query.filter(AttendanceUpload.gathering_id == filters.gathering_id)
        if filters.cohort_id is not None:
            query = query.filter(AttendanceUpload.cohort_id == filters.cohort_id)
        if filters.batch_id is not None:
            query = query.filter(AttendanceIssue.batch_id == filters.batch_id)
        if filters.issue_type is not None:
            query = query.filter(AttendanceIssue.issue_type == filters.issue_type)

        total = query.count()
        if total == 0:
            return IssueListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        rows = (
            query.order_by(AttendanceIssue.id.asc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        items = [
            IssueSummary(
                id=issue.id,
                batch_id=issue.batch_id,
                upload_id=upload.id,
                gathering_id=upload.gathering_id,
                cohort_id=upload.cohort_id,
                member_id=issue.member_id,
                issue_type=issue.issue_type,
                description=issue.description,
                raw_payload=issue.raw_payload,
                resolved=issue.resolved,
                resolved_by_id=issue.resolved_by_id,
                resolved_at=issue.resolved_at,
                resolution_notes=issue.resolution_notes,
            )
            for issue, upload in rows
        ]
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return IssueListResult(
            items=items, total=total, page=filters.page, page_size=filters.page_size, total_pages=total_pages
        )

    def get_issue(self, issue_id: int) -> AttendanceIssue:
        issue = self.session.get(AttendanceIssue, issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    def resolve_issue(self, issue_id: int, resolver_id: int | None, notes: str | None = None) -> AttendanceIssue:
        """Mark an issue resolved. Resolving twice keeps the first resolver and timestamp."""

        issue = self.get_issue(issue_id)
        if issue.resolved:
            return issue
        issue.resolved = True
        issue.resolved_by_id = resolver_id
        issue.resolved_at = datetime.now(timezone.utc)
        issue.resolution_notes = notes.strip() if notes and notes.strip() else None
        self.session.commit()
        current_app.logger.info(
            f"Resolved attendance issue {issue.id}",
            extra={"issue_id": issue.id, "resolver_id": resolver_id},
        )
        return issue
