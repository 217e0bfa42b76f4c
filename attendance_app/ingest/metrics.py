"""Prometheus metrics helpers for attendance ingestion."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_uploads_counter = Counter(
    "attendance_uploads_total",
    "Attendance uploads registered, by outcome.",
    ["outcome"],
)
_rows_counter = Counter(
    "attendance_reconciled_rows_total",
    "Roster members and raw rows classified during reconciliation, by partition.",
    ["partition"],
)
_batches_counter = Counter(
    "attendance_batches_committed_total",
    "Attendance batches committed.",
)
_version_conflicts_counter = Counter(
    "attendance_batch_version_conflicts_total",
    "Concurrent batch version conflicts encountered during commit.",
)
_fetch_failures_counter = Counter(
    "attendance_reference_fetch_failures_total",
    "Failures reading roster or leave data.",
    ["source"],
)
_reconcile_duration = Histogram(
    "attendance_reconcile_duration_seconds",
    "Duration of parse + reconcile for one upload in seconds.",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)


def record_upload(outcome: Literal["new", "duplicate"]) -> None:
    """Increment the upload counter."""

    _uploads_counter.labels(outcome=outcome).inc()


def record_partition_counts(*, present: int, absent: int, exempt: int, unmatched: int) -> None:
    """Capture partition sizes for one reconciliation."""

    _rows_counter.labels(partition="present").inc(present)
    _rows_counter.labels(partition="absent").inc(absent)
    _rows_counter.labels(partition="exempt").inc(exempt)
    _rows_counter.labels(partition="unmatched").inc(unmatched)


def record_batch_committed() -> None:
    _batches_counter.inc()


def record_version_conflict() -> None:
    _version_conflicts_counter.inc()


def record_fetch_failure(source: Literal["roster", "leave"]) -> None:
    _fetch_failures_counter.labels(source=source).inc()


def observe_reconcile_duration(duration_seconds: float) -> None:
    _reconcile_duration.observe(duration_seconds)
