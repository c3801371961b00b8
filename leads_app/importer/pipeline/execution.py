"""
Execution of a mapped import run.

Rows are processed one at a time in ``row_number`` order. Each row is
finalized in its own transaction: the lead insert (if any), the row's status
change and the run counter increments commit together. Row finalization is a
compare-and-set on ``status == PENDING`` so a second executor, or a resumed
run, never processes the same row twice.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from flask import current_app
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leads_app.importer.metrics import record_execution, record_row_outcome
from leads_app.importer.pipeline.dedupe import LeadCandidate, MatchResult, find_best_match
from leads_app.importer.pipeline.mapping import MappedLead, apply_mapping, validate_mapped_lead
from leads_app.importer.pipeline.normalization import normalize_lead_payload
from leads_app.importer.pipeline.run_service import RunSummary, get_run_for_workspace, summarize_run
from leads_app.importer.results import ServiceResult, conflict, internal_error, not_found
from leads_app.models import Lead
from leads_app.models.importer.schema import ImportRow, ImportRowStatus, ImportRun, ImportRunStatus
from leads_app.utils.importer import get_soft_match_threshold

EXECUTABLE_STATUSES = (ImportRunStatus.MAPPED, ImportRunStatus.EXECUTING)

_COUNTER_COLUMNS = {
    ImportRowStatus.CREATED: "created_count",
    ImportRowStatus.HARD_DUPLICATE: "hard_duplicate_count",
    ImportRowStatus.SOFT_DUPLICATE: "soft_duplicate_count",
    ImportRowStatus.ERROR: "error_count",
}


@dataclass
class RowOutcome:
    status: ImportRowStatus
    matched_lead_id: int | None = None
    soft_score: float | None = None
    error_message: str | None = None


@dataclass
class CreatedLeadAccumulator:
    """Leads created earlier in the current execution, consulted alongside the database."""

    candidates: list[LeadCandidate] = field(default_factory=list)

    def add(self, lead_id: int, bag: Mapping[str, Any]) -> None:
        self.candidates.append(LeadCandidate(lead_id=lead_id, bag=dict(bag)))

    def __len__(self) -> int:
        return len(self.candidates)


def build_lead(workspace_id: int, payload: MappedLead, *, import_run_id: int | None = None) -> Lead:
    """Instantiate (but do not add) a lead from a mapped payload."""

    lead = Lead(
        workspace_id=workspace_id,
        business_name=payload.get("business_name") or "",
        contact_name=payload.get("contact_name"),
        email=payload.get("email"),
        phone=payload.get("phone"),
        website=payload.get("website"),
        city=payload.get("city"),
        source=payload.get("source"),
        niche=payload.get("niche"),
        custom_data=dict(payload.custom_data) or None,
        created_by_import_run_id=import_run_id,
    )
    lead.apply_normalized(normalize_lead_payload(payload.fields))
    return lead


def load_lead_candidates(session: Session, workspace_id: int, bag: Mapping[str, Any]) -> list[LeadCandidate]:
    """
    Fetch visible tenant leads that could possibly match ``bag``.

    Hard matches need a shared email/phone/domain and soft matches need an
    equal city, so those columns bound the scan.
    """

    predicates = []
    for key in ("email_norm", "phone_norm", "domain_norm"):
        value = bag.get(key)
        if value:
            predicates.append(getattr(Lead, key) == value)
    if bag.get("name_norm") and bag.get("city_norm"):
        predicates.append(Lead.city_norm == bag["city_norm"])
    if not predicates:
        return []

    leads = (
        session.execute(
            select(Lead)
            .where(Lead.workspace_id == workspace_id, Lead.visible(), or_(*predicates))
            .order_by(Lead.id.asc())
        )
        .scalars()
        .all()
    )
    return [LeadCandidate(lead_id=lead.id, bag=lead.normalized_bag()) for lead in leads]


def _merge_candidate_pools(persisted: list[LeadCandidate], accumulator: CreatedLeadAccumulator) -> list[LeadCandidate]:
    seen = {candidate.lead_id for candidate in persisted}
    pool = list(persisted)
    for candidate in accumulator.candidates:
        if candidate.lead_id not in seen:
            seen.add(candidate.lead_id)
            pool.append(candidate)
    pool.sort(key=lambda candidate: candidate.lead_id)
    return pool


def _finalize_row(session: Session, run_id: int, row_id: int, outcome: RowOutcome) -> bool:
    """Compare-and-set the row out of PENDING and bump the run counters."""

    result = session.execute(
        update(ImportRow)
        .where(ImportRow.id == row_id, ImportRow.status == ImportRowStatus.PENDING)
        .values(
            status=outcome.status,
            matched_lead_id=outcome.matched_lead_id,
            soft_score=outcome.soft_score,
            error_message=outcome.error_message,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    counter = _COUNTER_COLUMNS[outcome.status]
    session.execute(
        update(ImportRun)
        .where(ImportRun.id == run_id)
        .values(
            {
                ImportRun.processed_rows: ImportRun.processed_rows + 1,
                getattr(ImportRun, counter): getattr(ImportRun, counter) + 1,
            }
        )
        .execution_options(synchronize_session=False)
    )
    return True


def _classify_row(
    session: Session,
    run: ImportRun,
    row: ImportRow,
    mapping: Mapping[str, str],
    accumulator: CreatedLeadAccumulator,
    threshold: float,
) -> tuple[RowOutcome, dict[str, Any] | None]:
    payload = apply_mapping(row.raw_json or {}, mapping)
    errors = validate_mapped_lead(payload)
    if errors:
        return RowOutcome(status=ImportRowStatus.ERROR, error_message="; ".join(errors)), None

    bag = normalize_lead_payload(payload.fields)
    pool = _merge_candidate_pools(load_lead_candidates(session, run.workspace_id, bag), accumulator)
    match: MatchResult = find_best_match(bag, pool, threshold=threshold)

    if match.kind == "hard":
        return RowOutcome(status=ImportRowStatus.HARD_DUPLICATE, matched_lead_id=match.lead_id), None
    if match.kind == "soft":
        return (
            RowOutcome(
                status=ImportRowStatus.SOFT_DUPLICATE,
                matched_lead_id=match.lead_id,
                soft_score=match.score,
            ),
            None,
        )

    lead = build_lead(run.workspace_id, payload, import_run_id=run.id)
    session.add(lead)
    session.flush()
    return RowOutcome(status=ImportRowStatus.CREATED, matched_lead_id=lead.id), bag


def _process_row(
    session: Session,
    run: ImportRun,
    row_id: int,
    mapping: Mapping[str, str],
    accumulator: CreatedLeadAccumulator,
    threshold: float,
) -> ImportRowStatus | None:
    row = session.get(ImportRow, row_id)
    if row is None or row.status != ImportRowStatus.PENDING:
        return None

    try:
        outcome, created_bag = _classify_row(session, run, row, mapping, accumulator, threshold)
        if not _finalize_row(session, run.id, row_id, outcome):
            session.rollback()
            return None
        session.commit()
    except Exception as exc:
        session.rollback()
        current_app.logger.warning(
            "Import row failed during execution",
            exc_info=True,
            extra={"import_run_id": run.id, "import_row_id": row_id},
        )
        outcome = RowOutcome(status=ImportRowStatus.ERROR, error_message=f"Row could not be processed: {exc}")
        created_bag = None
        if not _finalize_row(session, run.id, row_id, outcome):
            session.rollback()
            return None
        session.commit()

    if created_bag is not None and outcome.matched_lead_id is not None:
        accumulator.add(outcome.matched_lead_id, created_bag)
    record_row_outcome(outcome.status.value)
    return outcome.status


def _fail_run(session: Session, run: ImportRun, message: str) -> None:
    run.status = ImportRunStatus.FAILED
    run.error_summary = message
    run.finished_at = datetime.now(timezone.utc)
    session.commit()


def _count_rows(session: Session, run_id: int, status: ImportRowStatus | None = None) -> int:
    query = select(func.count(ImportRow.id)).where(ImportRow.run_id == run_id)
    if status is not None:
        query = query.where(ImportRow.status == status)
    return session.execute(query).scalar_one()


def execute_import_run(
    session: Session,
    workspace_id: int,
    run_id: int,
    *,
    threshold: float | None = None,
) -> ServiceResult[RunSummary]:
    """
    Run dedupe over every pending row of a mapped run.

    Completed runs are returned unchanged. A run still awaiting its column
    mapping is rejected. A run whose staged rows are missing or do not match
    ``total_rows`` is marked FAILED.
    """

    run = get_run_for_workspace(session, workspace_id, run_id)
    if run is None:
        return not_found(f"Import run {run_id} not found.")
    if run.status == ImportRunStatus.COMPLETED:
        return ServiceResult.success(summarize_run(run))
    if run.status == ImportRunStatus.FAILED:
        return conflict(f"Import run {run_id} failed and cannot be executed: {run.error_summary}")
    if run.status == ImportRunStatus.PENDING_MAPPING or not run.column_mapping_json:
        return conflict(f"Import run {run_id} has no column mapping yet.")

    resolved_threshold = get_soft_match_threshold() if threshold is None else threshold
    mapping = dict(run.column_mapping_json)
    started = time.perf_counter()

    try:
        claimed = session.execute(
            update(ImportRun)
            .where(ImportRun.id == run.id, ImportRun.status.in_(EXECUTABLE_STATUSES))
            .values(
                status=ImportRunStatus.EXECUTING,
                started_at=func.coalesce(ImportRun.started_at, datetime.now(timezone.utc)),
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            session.rollback()
            return conflict(f"Import run {run_id} is not in an executable state.")
        session.commit()
        session.refresh(run)

        staged_rows = _count_rows(session, run.id)
        if run.total_rows == 0 or staged_rows != run.total_rows:
            message = f"Run has {staged_rows} staged rows but expected {run.total_rows}."
            _fail_run(session, run, message)
            current_app.logger.error(
                "Import run %s failed its pre-execution check", run.id, extra={"import_run_id": run.id}
            )
            return conflict(f"Import run {run_id} cannot be executed: {message}")

        pending_ids = (
            session.execute(
                select(ImportRow.id)
                .where(ImportRow.run_id == run.id, ImportRow.status == ImportRowStatus.PENDING)
                .order_by(ImportRow.row_number.asc())
            )
            .scalars()
            .all()
        )

        accumulator = CreatedLeadAccumulator()
        for row_id in pending_ids:
            _process_row(session, run, row_id, mapping, accumulator, resolved_threshold)

        if _count_rows(session, run.id, ImportRowStatus.PENDING) == 0:
            session.execute(
                update(ImportRun)
                .where(
                    ImportRun.id == run.id,
                    ImportRun.status == ImportRunStatus.EXECUTING,
                    ImportRun.processed_rows == ImportRun.total_rows,
                )
                .values(status=ImportRunStatus.COMPLETED, finished_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            session.commit()
        session.refresh(run)
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.error(
            "Import run execution aborted", exc_info=True, extra={"import_run_id": run_id}
        )
        return internal_error()
    finally:
        record_execution(time.perf_counter() - started)

    current_app.logger.info(
        "Import run %s executed: %s created, %s hard, %s soft, %s errors",
        run.id,
        run.created_count,
        run.hard_duplicate_count,
        run.soft_duplicate_count,
        run.error_count,
        extra={"import_run_id": run.id, "import_run_status": run.status.value},
    )
    return ServiceResult.success(summarize_run(run))
