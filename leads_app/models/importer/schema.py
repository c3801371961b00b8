"""
SQLAlchemy models for lead import runs, their staged rows and merge history.

An import run owns one row per data line of the uploaded file. Rows keep the
raw and normalized field bags captured at upload time; execution and
resolution only ever move a row's status forward. Merge logs are append-only.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    PENDING_MAPPING = "pending_mapping"
    MAPPED = "mapped"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportRowStatus(str, enum.Enum):
    """Outcome recorded for a single staged row."""

    PENDING = "pending"
    CREATED = "created"
    HARD_DUPLICATE = "hard_duplicate"
    SOFT_DUPLICATE = "soft_duplicate"
    SKIPPED = "skipped"
    ERROR = "error"


class ImportRun(BaseModel):
    """A single uploaded file and the progress of its execution."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    workspace_id: Mapped[int] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    uploaded_by_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    filename: Mapped[str] = mapped_column(db.String(255), nullable=False)
    source_format: Mapped[str] = mapped_column(db.String(16), nullable=False, default="csv")
    idempotency_key: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.PENDING_MAPPING,
        index=True,
    )
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    created_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    hard_duplicate_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    soft_duplicate_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    headers_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    column_mapping_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Lead field -> source header mapping applied at execution time.",
    )
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    rows = relationship(
        "ImportRow",
        back_populates="import_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ImportRow.row_number",
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "idempotency_key", name="uq_import_runs_workspace_idempotency_key"),
        Index("idx_import_runs_workspace_status", "workspace_id", "status"),
    )

    def __repr__(self):
        return f"<ImportRun {self.id} {self.status.value if self.status else None}>"


class ImportRow(BaseModel):
    """One data line of an uploaded file, staged for dedupe and creation."""

    __tablename__ = "import_rows"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("import_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workspace_id: Mapped[int] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_number: Mapped[int] = mapped_column(db.Integer, nullable=False)
    raw_json: Mapped[dict] = mapped_column(db.JSON, nullable=False)
    normalized_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    status: Mapped[ImportRowStatus] = mapped_column(
        Enum(ImportRowStatus, name="import_row_status_enum"),
        nullable=False,
        default=ImportRowStatus.PENDING,
        index=True,
    )
    matched_lead_id: Mapped[int | None] = mapped_column(
        ForeignKey("leads.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    soft_score: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    resolution_action: Mapped[str | None] = mapped_column(db.String(16), nullable=True)
    resolution_reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    resolved_by_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    import_run = relationship("ImportRun", back_populates="rows")
    matched_lead = relationship("Lead", foreign_keys=[matched_lead_id])

    __table_args__ = (
        UniqueConstraint("run_id", "row_number", name="uq_import_rows_run_row_number"),
        Index("idx_import_rows_run_status", "run_id", "status"),
    )


class MergeLog(BaseModel):
    """Append-only audit record of one lead folded into another."""

    __tablename__ = "merge_log"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Plain reference: deleting an import run leaves its merge history untouched.
    import_run_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True, index=True)
    primary_lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id"), nullable=False)
    merged_lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id"), nullable=False)
    performed_by_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    chosen_fields: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    snapshot_before: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    snapshot_after: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    primary_lead = relationship("Lead", foreign_keys=[primary_lead_id])
    merged_lead = relationship("Lead", foreign_keys=[merged_lead_id])

    __table_args__ = (
        Index("idx_merge_log_primary_lead", "primary_lead_id"),
        Index("idx_merge_log_merged_lead", "merged_lead_id"),
    )


class MergeLogImmutableError(RuntimeError):
    """Raised when code attempts to rewrite or remove a merge log entry."""


@event.listens_for(MergeLog, "before_update")
def _reject_merge_log_update(mapper, connection, target):
    raise MergeLogImmutableError(f"Merge log {target.id} is append-only and cannot be updated.")


@event.listens_for(MergeLog, "before_delete")
def _reject_merge_log_delete(mapper, connection, target):
    raise MergeLogImmutableError(f"Merge log {target.id} is append-only and cannot be deleted.")
