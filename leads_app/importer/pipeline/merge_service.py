"""
Merge service folding one lead into another.

The merged-away lead is tombstoned (``merged_into_lead_id``) rather than
deleted, its notes, tasks and import-row references move to the primary, and
exactly one ``MergeLog`` row records the field choices with before/after
snapshots. All of it happens in one transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leads_app.importer.contracts import MERGEABLE_FIELDS
from leads_app.importer.metrics import record_merge
from leads_app.importer.pipeline.normalization import normalize_lead_payload
from leads_app.importer.results import ServiceResult, conflict, internal_error, not_found, validation_error
from leads_app.models import Lead, LeadNote, LeadTask, MergeLog, db
from leads_app.models.base import utcnow
from leads_app.models.importer.schema import ImportRow

FieldChoice = Literal["existing", "incoming"]
FIELD_CHOICES: tuple[str, ...] = ("existing", "incoming")


@dataclass(slots=True)
class MergeOutcome:
    merge_log_id: int
    primary_lead_id: int
    merged_lead_id: int
    snapshot_after: dict[str, Any]


def lead_snapshot(lead: Lead) -> dict[str, Any]:
    snapshot: dict[str, Any] = {name: getattr(lead, name) for name in MERGEABLE_FIELDS}
    snapshot["custom_data"] = dict(lead.custom_data or {})
    snapshot["normalized"] = lead.normalized_bag()
    return snapshot


def validate_chosen_fields(chosen_fields: object) -> list[str]:
    if chosen_fields is None:
        return []
    if not isinstance(chosen_fields, Mapping):
        return ["chosen_fields must be an object of field -> 'existing' | 'incoming'."]
    errors: list[str] = []
    for name, choice in chosen_fields.items():
        if name not in MERGEABLE_FIELDS:
            errors.append(f"Field '{name}' cannot be merged.")
        elif choice not in FIELD_CHOICES:
            errors.append(f"Field '{name}' must choose 'existing' or 'incoming', got '{choice}'.")
    return errors


def _is_blank(value: object | None) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class MergeService:
    """Service for merging two leads of the same workspace."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def merge_lead_records(
        self,
        workspace_id: int,
        primary_lead_id: int,
        merged_lead_id: int,
        chosen_fields: Mapping[str, FieldChoice] | None,
        actor_id: int | None,
        *,
        reason: str | None = None,
        import_run_id: int | None = None,
        commit: bool = True,
        origin: Literal["manual", "resolution"] = "manual",
    ) -> ServiceResult[MergeOutcome]:
        """
        Fold ``merged_lead_id`` into ``primary_lead_id``.

        Args:
            chosen_fields: field -> ``"existing"`` (keep primary) or
                ``"incoming"`` (take merged lead's value). Fields not listed
                keep the primary's value; an ``"incoming"`` choice with a blank
                incoming value also keeps the primary's value.
            commit: when False the caller owns the transaction and must commit
                or roll back; used by soft-duplicate resolution.

        Returns:
            ServiceResult wrapping ``MergeOutcome``. Validation, not-found and
            conflict failures leave the session untouched.
        """

        if primary_lead_id == merged_lead_id:
            return validation_error("A lead cannot be merged into itself.")
        errors = validate_chosen_fields(chosen_fields)
        if errors:
            return validation_error("Invalid merge field choices.", errors=errors)

        primary = self._get_lead(workspace_id, primary_lead_id)
        merged = self._get_lead(workspace_id, merged_lead_id)
        if primary is None:
            return not_found(f"Lead {primary_lead_id} not found.")
        if merged is None:
            return not_found(f"Lead {merged_lead_id} not found.")
        if primary.is_tombstoned:
            return conflict(f"Lead {primary_lead_id} was already merged into lead {primary.merged_into_lead_id}.")
        if merged.is_tombstoned:
            return conflict(f"Lead {merged_lead_id} was already merged into lead {merged.merged_into_lead_id}.")

        choices = dict(chosen_fields or {})
        try:
            if not self._claim_live_primary(primary.id):
                self.session.rollback()
                return conflict(f"Lead {primary_lead_id} was merged concurrently.")
            outcome = self._apply_merge(primary, merged, choices, actor_id, reason, import_run_id)
            if outcome is None:
                self.session.rollback()
                return conflict(f"Lead {merged_lead_id} was merged concurrently.")
            if commit:
                self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            current_app.logger.error(
                "Lead merge failed",
                exc_info=True,
                extra={
                    "workspace_id": workspace_id,
                    "primary_lead_id": primary_lead_id,
                    "merged_lead_id": merged_lead_id,
                },
            )
            return internal_error()

        record_merge(origin)
        current_app.logger.info(
            "Lead %s merged into lead %s",
            merged_lead_id,
            primary_lead_id,
            extra={"merge_log_id": outcome.merge_log_id, "workspace_id": workspace_id},
        )
        return ServiceResult.success(outcome)

    def _get_lead(self, workspace_id: int, lead_id: int) -> Lead | None:
        lead = self.session.get(Lead, lead_id)
        if lead is None or lead.workspace_id != workspace_id:
            return None
        return lead

    def _claim_live_primary(self, primary_id: int) -> bool:
        """Write-lock the primary, failing if another transaction already tombstoned it."""

        claimed = self.session.execute(
            update(Lead)
            .where(Lead.id == primary_id, Lead.merged_into_lead_id.is_(None))
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return claimed.rowcount == 1

    def _apply_merge(
        self,
        primary: Lead,
        merged: Lead,
        choices: Mapping[str, str],
        actor_id: int | None,
        reason: str | None,
        import_run_id: int | None,
    ) -> MergeOutcome | None:
        tombstoned = self.session.execute(
            update(Lead)
            .where(Lead.id == merged.id, Lead.merged_into_lead_id.is_(None))
            .values(merged_into_lead_id=primary.id)
            .execution_options(synchronize_session=False)
        )
        if tombstoned.rowcount == 0:
            return None

        snapshot_before = {"primary": lead_snapshot(primary), "merged": lead_snapshot(merged)}

        for name in MERGEABLE_FIELDS:
            if choices.get(name) != "incoming":
                continue
            incoming = getattr(merged, name)
            if not _is_blank(incoming):
                setattr(primary, name, incoming)

        if merged.custom_data:
            combined = dict(merged.custom_data)
            combined.update(primary.custom_data or {})
            primary.custom_data = combined
        primary.apply_normalized(normalize_lead_payload({name: getattr(primary, name) for name in MERGEABLE_FIELDS}))

        for model in (LeadNote, LeadTask):
            self.session.execute(
                update(model)
                .where(model.lead_id == merged.id)
                .values(lead_id=primary.id)
                .execution_options(synchronize_session="fetch")
            )
        self.session.execute(
            update(ImportRow)
            .where(ImportRow.matched_lead_id == merged.id)
            .values(matched_lead_id=primary.id)
            .execution_options(synchronize_session="fetch")
        )

        snapshot_after = lead_snapshot(primary)
        log = MergeLog(
            workspace_id=primary.workspace_id,
            import_run_id=import_run_id,
            primary_lead_id=primary.id,
            merged_lead_id=merged.id,
            performed_by_id=actor_id,
            chosen_fields=dict(choices),
            reason=reason,
            snapshot_before=snapshot_before,
            snapshot_after=snapshot_after,
        )
        self.session.add(log)
        self.session.flush()
        # The tombstone went through a bulk update; keep the in-session object consistent.
        self.session.expire(merged, ["merged_into_lead_id"])
        return MergeOutcome(
            merge_log_id=log.id,
            primary_lead_id=primary.id,
            merged_lead_id=merged.id,
            snapshot_after=snapshot_after,
        )
