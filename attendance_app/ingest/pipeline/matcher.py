"""
Reconcile parsed attendance rows against the active roster of a cohort.

Every active roster member lands in exactly one of ``present``, ``absent`` or
``exempt``. Rows that cannot be attributed to a member are returned as
``unmatched`` validation issues; repeated scans of a member already marked
present are reported separately in ``duplicates`` and never double count.
This module performs no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Mapping

from attendance_app.ingest.pipeline.normalize import canonicalize_identifier, coerce_cohort_code, cohort_codes_match
from attendance_app.ingest.pipeline.parser import MalformedRow, RawRow
from attendance_app.ingest.pipeline.roster import RosterMember

ReasonCode = Literal["missing_identifier", "unmatched_student", "cohort_mismatch", "duplicate_scan"]

REASON_MISSING_IDENTIFIER: ReasonCode = "missing_identifier"
REASON_UNMATCHED_STUDENT: ReasonCode = "unmatched_student"
REASON_COHORT_MISMATCH: ReasonCode = "cohort_mismatch"
REASON_DUPLICATE_SCAN: ReasonCode = "duplicate_scan"


@dataclass(frozen=True)
class ValidationIssue:
    """
    Row-level problem found during reconciliation.

    Attributes:
        reason_code: Machine category, stored as the issue type.
        reason: Human-readable description.
        identifier: Normalized identifier from the row (empty when missing).
        declared_cohort: Cohort code declared by the row after coercion.
        raw_payload: Original row cells, verbatim.
        member_id: Internal id of the roster member the row resolved to, if any.
        source_line: Physical line of the row in the uploaded file.
    """

    reason_code: ReasonCode
    reason: str
    identifier: str
    declared_cohort: int | str | None
    raw_payload: Mapping[str, object | None] = field(default_factory=dict)
    member_id: int | None = None
    source_line: int | None = None

    def as_record(self) -> dict[str, object | None]:
        return {
            "reason": self.reason,
            "reasonCode": self.reason_code,
            "identifier": self.identifier,
            "declaredCohort": self.declared_cohort,
            "memberId": self.member_id,
            "sourceLine": self.source_line,
            "rawPayload": dict(self.raw_payload),
        }


@dataclass(frozen=True)
class ReconciliationResult:
    """Partitioned outcome of one reconciliation pass."""

    present: tuple[RosterMember, ...]
    absent: tuple[RosterMember, ...]
    exempt: tuple[RosterMember, ...]
    unmatched: tuple[ValidationIssue, ...]
    duplicates: tuple[ValidationIssue, ...] = ()
    rows_total: int = 0

    @property
    def matched_count(self) -> int:
        return len(self.present)

    @property
    def unmatched_count(self) -> int:
        return len(self.unmatched)

    @property
    def roster_size(self) -> int:
        return len(self.present) + len(self.absent) + len(self.exempt)

    @property
    def records_processed(self) -> int:
        return self.roster_size + len(self.unmatched)

    def partition_records(self) -> dict[str, list[dict[str, object | None]]]:
        """Serializable form of the four persisted partitions."""

        return {
            "present": [member.as_record() for member in self.present],
            "absent": [member.as_record() for member in self.absent],
            "exempt": [member.as_record() for member in self.exempt],
            "issues": [issue.as_record() for issue in self.unmatched],
        }


def _sort_members(members: Iterable[RosterMember]) -> tuple[RosterMember, ...]:
    return tuple(sorted(members, key=lambda member: (member.canonical_id, member.external_id, member.internal_id)))


def _format_code(code: int | str | None) -> str:
    return "none" if code is None else str(code)


def build_roster_lookup(roster_members: Iterable[RosterMember]) -> dict[str, RosterMember]:
    """
    Map canonical external identifier to roster member.

    Raises:
        ValueError: a member has no identifier, or two members share one.
    """

    lookup: dict[str, RosterMember] = {}
    for member in roster_members:
        canonical = canonicalize_identifier(member.external_id)
        if not canonical:
            raise ValueError(f"Roster member {member.internal_id} has no external identifier.")
        existing = lookup.get(canonical)
        if existing is not None and existing.internal_id != member.internal_id:
            raise ValueError(
                f"Roster members {existing.internal_id} and {member.internal_id} share identifier '{member.external_id}'."
            )
        lookup[canonical] = member
    return lookup


def reconcile(
    rows: Iterable[RawRow],
    roster_members: Iterable[RosterMember],
    exempt_ids: Iterable[int],
    expected_cohort_code: object | None = None,
) -> ReconciliationResult:
    """
    Classify the roster as present/absent/exempt given the scanned rows.

    ``expected_cohort_code`` is the code of the cohort being ingested; it is
    used as the member's cohort when the roster snapshot does not carry one.
    A member who was scanned is present even when an active leave record
    covers the date.
    """

    lookup = build_roster_lookup(roster_members)
    exempt_set = frozenset(exempt_ids)
    fallback_code = coerce_cohort_code(expected_cohort_code)

    present: dict[int, RosterMember] = {}
    unmatched: list[ValidationIssue] = []
    duplicates: list[ValidationIssue] = []
    rows_total = 0

    for row in rows:
        rows_total += 1
        if isinstance(row, MalformedRow) or not row.identifier:
            unmatched.append(
                ValidationIssue(
                    reason_code=REASON_MISSING_IDENTIFIER,
                    reason="missing identifier",
                    identifier="",
                    declared_cohort=row.cohort_code,
                    raw_payload=row.raw_payload,
                    source_line=row.source_line,
                )
            )
            continue

        member = lookup.get(row.identifier)
        if member is None:
            unmatched.append(
                ValidationIssue(
                    reason_code=REASON_UNMATCHED_STUDENT,
                    reason="student not found in roster",
                    identifier=row.identifier,
                    declared_cohort=row.cohort_code,
                    raw_payload=row.raw_payload,
                    source_line=row.source_line,
                )
            )
            continue

        actual_code = coerce_cohort_code(member.cohort_code)
        if actual_code is None:
            actual_code = fallback_code
        if not cohort_codes_match(row.cohort_code, actual_code):
            unmatched.append(
                ValidationIssue(
                    reason_code=REASON_COHORT_MISMATCH,
                    reason=(
                        f"cohort mismatch: expected {_format_code(actual_code)}, "
                        f"got {_format_code(row.cohort_code)}"
                    ),
                    identifier=row.identifier,
                    declared_cohort=row.cohort_code,
                    raw_payload=row.raw_payload,
                    member_id=member.internal_id,
                    source_line=row.source_line,
                )
            )
            continue

        if member.internal_id in present:
            duplicates.append(
                ValidationIssue(
                    reason_code=REASON_DUPLICATE_SCAN,
                    reason=f"duplicate scan of {member.external_id}",
                    identifier=row.identifier,
                    declared_cohort=row.cohort_code,
                    raw_payload=row.raw_payload,
                    member_id=member.internal_id,
                    source_line=row.source_line,
                )
            )
            continue

        present[member.internal_id] = member

    remainder = [member for member in lookup.values() if member.internal_id not in present]
    exempt = [member for member in remainder if member.internal_id in exempt_set]
    absent = [member for member in remainder if member.internal_id not in exempt_set]

    return ReconciliationResult(
        present=_sort_members(present.values()),
        absent=_sort_members(absent),
        exempt=_sort_members(exempt),
        unmatched=tuple(unmatched),
        duplicates=tuple(duplicates),
        rows_total=rows_total,
    )
