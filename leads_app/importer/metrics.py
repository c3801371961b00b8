"""Prometheus metrics helpers for the lead importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_runs_created_counter = Counter(
    "leads_import_runs_created_total",
    "Import runs created from uploads by source format and outcome.",
    ["source_format", "outcome"],
)
_rows_classified_counter = Counter(
    "leads_import_rows_classified_total",
    "Import rows finalized during execution by outcome.",
    ["outcome"],
)
_execution_duration = Histogram(
    "leads_import_execution_duration_seconds",
    "Wall-clock duration of a single execute call in seconds.",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)
_resolutions_counter = Counter(
    "leads_import_resolutions_total",
    "Soft-duplicate resolutions by action.",
    ["action"],
)
_merges_counter = Counter(
    "leads_merges_total",
    "Lead merges performed by origin.",
    ["origin"],
)


def record_run_created(source_format: str, outcome: Literal["created", "reused", "rejected"]) -> None:
    """Increment the upload counter."""

    _runs_created_counter.labels(source_format=source_format, outcome=outcome).inc()


def record_row_outcome(outcome: str) -> None:
    _rows_classified_counter.labels(outcome=outcome).inc()


def record_execution(duration_seconds: float) -> None:
    _execution_duration.observe(duration_seconds)


def record_resolution(action: str) -> None:
    _resolutions_counter.labels(action=action).inc()


def record_merge(origin: Literal["manual", "resolution"]) -> None:
    _merges_counter.labels(origin=origin).inc()
