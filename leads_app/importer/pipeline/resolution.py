"""
Human resolution of rows staged as soft duplicates.

Three actions are available, each terminal:

- ``merge``: the row becomes a lead that is immediately folded into the
  chosen existing lead through ``MergeService``; the row ends HARD_DUPLICATE
  and the surviving lead gets a note naming the run and row.
- ``create``: the candidate match is ignored and a new lead is created; the
  row ends CREATED.
- ``skip``: nothing is written besides the row, which ends SKIPPED.

The row leaves SOFT_DUPLICATE through a compare-and-set update, so of two
concurrent resolvers only one succeeds.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leads_app.importer.metrics import record_resolution
from leads_app.importer.pipeline.execution import build_lead
from leads_app.importer.pipeline.mapping import apply_mapping, infer_default_mapping, validate_mapped_lead
from leads_app.importer.pipeline.merge_service import MergeService, validate_chosen_fields
from leads_app.importer.pipeline.run_service import RowSummary, get_run_for_workspace, summarize_row
from leads_app.importer.results import ServiceResult, conflict, internal_error, not_found, validation_error
from leads_app.models import LeadNote
from leads_app.models.importer.schema import ImportRow, ImportRowStatus


class ResolutionAction(str, enum.Enum):
    MERGE = "merge"
    CREATE = "create"
    SKIP = "skip"


_TARGET_STATUS = {
    ResolutionAction.MERGE: ImportRowStatus.HARD_DUPLICATE,
    ResolutionAction.CREATE: ImportRowStatus.CREATED,
    ResolutionAction.SKIP: ImportRowStatus.SKIPPED,
}


@dataclass(slots=True)
class ResolutionOutcome:
    row: RowSummary
    action: str
    lead_id: int | None = None
    merge_log_id: int | None = None


def _coerce_action(action: object) -> ResolutionAction | None:
    if isinstance(action, ResolutionAction):
        return action
    try:
        return ResolutionAction(str(action).strip().lower())
    except ValueError:
        return None


def resolve_soft_duplicate(
    session: Session,
    workspace_id: int,
    run_id: int,
    row_id: int,
    action: str | ResolutionAction,
    actor_id: int | None,
    *,
    matched_lead_id: int | None = None,
    chosen_fields: Mapping[str, str] | None = None,
    reason: str | None = None,
) -> ServiceResult[ResolutionOutcome]:
    resolved_action = _coerce_action(action)
    if resolved_action is None:
        return validation_error(f"Unknown resolution action '{action}'. Expected merge, create or skip.")
    if resolved_action == ResolutionAction.MERGE:
        if matched_lead_id is None:
            return validation_error("Merge resolution requires matched_lead_id.")
        if chosen_fields is None:
            return validation_error("Merge resolution requires chosen_fields.")
        field_errors = validate_chosen_fields(chosen_fields)
        if field_errors:
            return validation_error("Invalid merge field choices.", errors=field_errors)

    run = get_run_for_workspace(session, workspace_id, run_id)
    if run is None:
        return not_found(f"Import run {run_id} not found.")
    row = session.get(ImportRow, row_id)
    if row is None or row.run_id != run.id:
        return not_found(f"Import row {row_id} not found in run {run_id}.")
    if row.status != ImportRowStatus.SOFT_DUPLICATE:
        return conflict(f"Import row {row_id} is {row.status.value}; only soft duplicates can be resolved.")

    mapping = run.column_mapping_json or infer_default_mapping(run.headers_json or [])
    payload = apply_mapping(row.raw_json or {}, mapping)
    if resolved_action != ResolutionAction.SKIP:
        payload_errors = validate_mapped_lead(payload)
        if payload_errors:
            return validation_error("Row payload cannot become a lead.", errors=payload_errors)

    lead_id: int | None = None
    merge_log_id: int | None = None
    resolved_at = datetime.now(timezone.utc)
    try:
        claimed = session.execute(
            update(ImportRow)
            .where(ImportRow.id == row.id, ImportRow.status == ImportRowStatus.SOFT_DUPLICATE)
            .values(
                status=_TARGET_STATUS[resolved_action],
                resolution_action=resolved_action.value,
                resolution_reason=reason,
                resolved_by_id=actor_id,
                resolved_at=resolved_at,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            session.rollback()
            return conflict(f"Import row {row_id} was already resolved.")

        if resolved_action == ResolutionAction.CREATE:
            lead = build_lead(workspace_id, payload, import_run_id=run.id)
            session.add(lead)
            session.flush()
            lead_id = lead.id
        elif resolved_action == ResolutionAction.MERGE:
            incoming = build_lead(workspace_id, payload, import_run_id=run.id)
            session.add(incoming)
            session.flush()
            merge_result = MergeService(session).merge_lead_records(
                workspace_id,
                matched_lead_id,
                incoming.id,
                chosen_fields,
                actor_id,
                reason=reason,
                import_run_id=run.id,
                commit=False,
                origin="resolution",
            )
            if not merge_result.ok:
                session.rollback()
                return ServiceResult(error=merge_result.error)
            lead_id = merge_result.value.primary_lead_id
            merge_log_id = merge_result.value.merge_log_id
            session.add(
                LeadNote(
                    workspace_id=workspace_id,
                    lead_id=lead_id,
                    author_id=actor_id,
                    body=f"Merged from import run {run.id} row {row.row_number} at {resolved_at.isoformat()}",
                )
            )

        if lead_id is not None:
            session.execute(
                update(ImportRow)
                .where(ImportRow.id == row.id)
                .values(matched_lead_id=lead_id)
                .execution_options(synchronize_session=False)
            )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.error(
            "Soft duplicate resolution failed",
            exc_info=True,
            extra={"import_run_id": run_id, "import_row_id": row_id, "resolution_action": resolved_action.value},
        )
        return internal_error()

    session.refresh(row)
    record_resolution(resolved_action.value)
    current_app.logger.info(
        "Import row %s resolved with %s",
        row_id,
        resolved_action.value,
        extra={"import_run_id": run_id, "import_row_id": row_id, "resolved_lead_id": lead_id},
    )
    return ServiceResult.success(
        ResolutionOutcome(
            row=summarize_row(row),
            action=resolved_action.value,
            lead_id=lead_id,
            merge_log_id=merge_log_id,
        )
    )

