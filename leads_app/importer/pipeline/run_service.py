"""
Service helpers for the import run lifecycle: upload, mapping, preview and
read access to runs and their rows.

Every public method returns a ``ServiceResult``. Expected failures (bad
input, unknown run, illegal state) are reported before anything is written;
storage failures roll the session back and surface as ``INTERNAL``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from leads_app.importer.adapters import UploadError, parse_upload
from leads_app.importer.metrics import record_run_created
from leads_app.importer.pipeline.mapping import (
    apply_mapping,
    infer_default_mapping,
    validate_mapped_lead,
    validate_mapping,
)
from leads_app.importer.pipeline.normalization import normalize_lead_payload
from leads_app.importer.results import (
    ServiceResult,
    conflict,
    internal_error,
    not_found,
    validation_error,
)
from leads_app.models import Workspace, db
from leads_app.models.importer.schema import ImportRow, ImportRowStatus, ImportRun, ImportRunStatus
from leads_app.utils.importer import get_max_upload_bytes, get_preview_limits

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100

ROW_BUCKETS: dict[str, ImportRowStatus] = {
    "pending": ImportRowStatus.PENDING,
    "created": ImportRowStatus.CREATED,
    "hard": ImportRowStatus.HARD_DUPLICATE,
    "soft": ImportRowStatus.SOFT_DUPLICATE,
    "skipped": ImportRowStatus.SKIPPED,
    "errors": ImportRowStatus.ERROR,
}

MAPPABLE_STATUSES = (ImportRunStatus.PENDING_MAPPING, ImportRunStatus.MAPPED)


@dataclass(frozen=True)
class RunFilters:
    """Canonical filter options for listing a workspace's import runs."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    statuses: tuple[ImportRunStatus, ...] = field(default_factory=tuple)

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> "RunFilters":
        resolved_statuses: list[ImportRunStatus] = []
        for value in statuses or ():
            if value is None or value == "":
                continue
            resolved_statuses.append(_coerce_status(value))
        return cls(
            page=_coerce_page_value(page, fallback=DEFAULT_PAGE, name="page"),
            page_size=_coerce_page_value(
                page_size, fallback=DEFAULT_PAGE_SIZE, name="page_size", maximum=MAX_PAGE_SIZE
            ),
            statuses=tuple(resolved_statuses),
        )


@dataclass(frozen=True)
class RowFilters:
    """Outcome bucket and pagination for a run's rows."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    bucket: str | None = None

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        bucket: str | None = None,
    ) -> "RowFilters":
        resolved_bucket = bucket.strip().lower() if isinstance(bucket, str) and bucket.strip() else None
        if resolved_bucket is not None and resolved_bucket not in ROW_BUCKETS:
            raise ValueError(
                f"Unsupported row bucket '{bucket}'. Expected one of: {', '.join(sorted(ROW_BUCKETS))}."
            )
        return cls(
            page=_coerce_page_value(page, fallback=DEFAULT_PAGE, name="page"),
            page_size=_coerce_page_value(
                page_size, fallback=DEFAULT_PAGE_SIZE, name="page_size", maximum=MAX_PAGE_SIZE
            ),
            bucket=resolved_bucket,
        )


@dataclass(slots=True)
class RunSummary:
    """Serializable view of an import run and its counters."""

    id: int
    workspace_id: int
    filename: str
    source_format: str
    status: str
    idempotency_key: str | None
    total_rows: int
    processed_rows: int
    created_count: int
    hard_duplicate_count: int
    soft_duplicate_count: int
    error_count: int
    headers: list[str]
    column_mapping: dict[str, str] | None
    error_summary: str | None
    created_at: datetime | None
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None

    def as_dict(self) -> dict[str, Any]:
        payload = {name: getattr(self, name) for name in self.__slots__}
        for key in ("created_at", "started_at", "finished_at"):
            value = payload[key]
            payload[key] = value.isoformat() if value else None
        return payload


@dataclass(slots=True)
class UploadOutcome:
    run: RunSummary
    reused: bool = False


@dataclass(slots=True)
class RowSummary:
    id: int
    row_number: int
    status: str
    raw: dict[str, Any]
    normalized: dict[str, Any]
    matched_lead_id: int | None
    soft_score: float | None
    error_message: str | None
    resolution_action: str | None
    resolution_reason: str | None

    def as_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__slots__}


@dataclass(slots=True)
class PreviewRow:
    row_number: int
    raw: dict[str, Any]
    normalized: dict[str, Any]
    mapped: dict[str, Any]
    errors: list[str]

    def as_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__slots__}


@dataclass(slots=True)
class PreviewResult:
    run: RunSummary
    mapping: dict[str, str]
    mapping_is_inferred: bool
    rows: list[PreviewRow]


@dataclass(slots=True)
class PageResult:
    """Paginated result set."""

    items: list[Any]
    total: int
    page: int
    page_size: int
    total_pages: int


class ImportRunService:
    """Facade for creating, mapping and inspecting import runs."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def create_run_from_upload(
        self,
        workspace_id: int,
        uploaded_by: int | None,
        filename: str,
        content: bytes | str,
        *,
        idempotency_key: str | None = None,
    ) -> ServiceResult[UploadOutcome]:
        if self.session.get(Workspace, workspace_id) is None:
            return not_found(f"Workspace {workspace_id} not found.")

        key = idempotency_key.strip() if isinstance(idempotency_key, str) and idempotency_key.strip() else None
        if key is not None:
            existing = self._find_by_idempotency_key(workspace_id, key)
            if existing is not None:
                record_run_created(existing.source_format, "reused")
                return ServiceResult.success(UploadOutcome(run=summarize_run(existing), reused=True))

        try:
            parsed = parse_upload(content, filename=filename, max_bytes=get_max_upload_bytes())
        except UploadError as exc:
            record_run_created("unknown", "rejected")
            return validation_error(str(exc), filename=filename)

        default_mapping = infer_default_mapping(parsed.headers)
        run = ImportRun(
            workspace_id=workspace_id,
            uploaded_by_id=uploaded_by,
            filename=filename,
            source_format=parsed.source_format,
            idempotency_key=key,
            status=ImportRunStatus.PENDING_MAPPING,
            total_rows=len(parsed.rows),
            headers_json=list(parsed.headers),
        )
        try:
            self.session.add(run)
            self.session.flush()
            self.session.add_all(
                ImportRow(
                    run_id=run.id,
                    workspace_id=workspace_id,
                    row_number=row.row_number,
                    raw_json=row.values,
                    normalized_json=normalize_lead_payload(apply_mapping(row.values, default_mapping).fields),
                    status=ImportRowStatus.PENDING,
                )
                for row in parsed.rows
            )
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            if key is not None:
                winner = self._find_by_idempotency_key(workspace_id, key)
                if winner is not None:
                    record_run_created(winner.source_format, "reused")
                    return ServiceResult.success(UploadOutcome(run=summarize_run(winner), reused=True))
            current_app.logger.warning(
                "Import run insert violated a constraint",
                exc_info=True,
                extra={"workspace_id": workspace_id, "import_filename": filename},
            )
            return internal_error()
        except SQLAlchemyError:
            self.session.rollback()
            current_app.logger.error(
                "Failed to persist import run",
                exc_info=True,
                extra={"workspace_id": workspace_id, "import_filename": filename},
            )
            return internal_error()

        record_run_created(parsed.source_format, "created")
        current_app.logger.info(
            "Import run %s created with %s rows",
            run.id,
            run.total_rows,
            extra={
                "import_run_id": run.id,
                "workspace_id": workspace_id,
                "import_source_format": parsed.source_format,
                "import_rows_skipped_blank": parsed.statistics.rows_skipped_blank,
            },
        )
        return ServiceResult.success(UploadOutcome(run=summarize_run(run), reused=False))

    def set_column_mapping(
        self,
        workspace_id: int,
        run_id: int,
        mapping: Mapping[str, str],
    ) -> ServiceResult[RunSummary]:
        run = self._get_run(workspace_id, run_id)
        if run is None:
            return not_found(f"Import run {run_id} not found.")
        if run.status not in MAPPABLE_STATUSES:
            return conflict(f"Import run {run_id} is {run.status.value}; its mapping can no longer change.")

        errors = validate_mapping(mapping, run.headers_json or [])
        if errors:
            return validation_error("Invalid column mapping.", errors=errors)

        try:
            result = self.session.execute(
                update(ImportRun)
                .where(
                    ImportRun.id == run.id,
                    ImportRun.status.in_(MAPPABLE_STATUSES),
                )
                .values(column_mapping_json=dict(mapping), status=ImportRunStatus.MAPPED)
            )
            if result.rowcount == 0:
                self.session.rollback()
                return conflict(f"Import run {run_id} started executing; its mapping can no longer change.")
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            current_app.logger.error(
                "Failed to store column mapping", exc_info=True, extra={"import_run_id": run_id}
            )
            return internal_error()

        self.session.refresh(run)
        return ServiceResult.success(summarize_run(run))

    def preview_rows(self, workspace_id: int, run_id: int, limit: int | None = None) -> ServiceResult[PreviewResult]:
        default_limit, max_limit = get_preview_limits()
        resolved_limit = default_limit if limit is None else limit
        if isinstance(resolved_limit, bool) or not isinstance(resolved_limit, int):
            return validation_error(f"Preview limit must be an integer between 1 and {max_limit}.")
        if not 1 <= resolved_limit <= max_limit:
            return validation_error(f"Preview limit must be between 1 and {max_limit}.")

        run = self._get_run(workspace_id, run_id)
        if run is None:
            return not_found(f"Import run {run_id} not found.")

        mapping_is_inferred = run.column_mapping_json is None
        mapping = dict(run.column_mapping_json or infer_default_mapping(run.headers_json or []))
        rows = (
            self.session.execute(
                select(ImportRow)
                .where(ImportRow.run_id == run.id)
                .order_by(ImportRow.row_number.asc())
                .limit(resolved_limit)
            )
            .scalars()
            .all()
        )
        preview: list[PreviewRow] = []
        for row in rows:
            mapped = apply_mapping(row.raw_json or {}, mapping)
            preview.append(
                PreviewRow(
                    row_number=row.row_number,
                    raw=dict(row.raw_json or {}),
                    normalized=dict(row.normalized_json or {}),
                    mapped=mapped.as_dict(),
                    errors=validate_mapped_lead(mapped),
                )
            )
        return ServiceResult.success(
            PreviewResult(
                run=summarize_run(run),
                mapping=mapping,
                mapping_is_inferred=mapping_is_inferred,
                rows=preview,
            )
        )

    def get_run(self, workspace_id: int, run_id: int) -> ServiceResult[RunSummary]:
        run = self._get_run(workspace_id, run_id)
        if run is None:
            return not_found(f"Import run {run_id} not found.")
        return ServiceResult.success(summarize_run(run))

    def list_runs(self, workspace_id: int, filters: RunFilters | None = None) -> ServiceResult[PageResult]:
        filters = filters or RunFilters()
        predicates = [ImportRun.workspace_id == workspace_id]
        if filters.statuses:
            predicates.append(ImportRun.status.in_(filters.statuses))

        total = self.session.execute(select(func.count(ImportRun.id)).where(*predicates)).scalar_one()
        runs = (
            self.session.execute(
                select(ImportRun)
                .where(*predicates)
                .order_by(ImportRun.created_at.desc(), ImportRun.id.desc())
                .offset((filters.page - 1) * filters.page_size)
                .limit(filters.page_size)
            )
            .scalars()
            .all()
        )
        items = [summarize_run(run) for run in runs]
        return ServiceResult.success(_page(items, total, filters.page, filters.page_size))

    def list_rows(
        self,
        workspace_id: int,
        run_id: int,
        filters: RowFilters | None = None,
    ) -> ServiceResult[PageResult]:
        filters = filters or RowFilters()
        run = self._get_run(workspace_id, run_id)
        if run is None:
            return not_found(f"Import run {run_id} not found.")

        predicates = [ImportRow.run_id == run.id]
        if filters.bucket is not None:
            predicates.append(ImportRow.status == ROW_BUCKETS[filters.bucket])

        total = self.session.execute(select(func.count(ImportRow.id)).where(*predicates)).scalar_one()
        rows = (
            self.session.execute(
                select(ImportRow)
                .where(*predicates)
                .order_by(ImportRow.row_number.asc())
                .offset((filters.page - 1) * filters.page_size)
                .limit(filters.page_size)
            )
            .scalars()
            .all()
        )
        items = [summarize_row(row) for row in rows]
        return ServiceResult.success(_page(items, total, filters.page, filters.page_size))

    def delete_run(self, workspace_id: int, run_id: int) -> ServiceResult[int]:
        """Remove a run and its staged rows. Leads created by the run are kept."""

        run = self._get_run(workspace_id, run_id)
        if run is None:
            return not_found(f"Import run {run_id} not found.")
        if run.status == ImportRunStatus.EXECUTING:
            return conflict(f"Import run {run_id} is executing and cannot be deleted.")

        try:
            self.session.query(ImportRow).filter(ImportRow.run_id == run.id).delete(synchronize_session=False)
            self.session.delete(run)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            current_app.logger.error("Failed to delete import run", exc_info=True, extra={"import_run_id": run_id})
            return internal_error()

        current_app.logger.info("Import run %s deleted", run_id, extra={"import_run_id": run_id})
        return ServiceResult.success(run_id)

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _get_run(self, workspace_id: int, run_id: int) -> ImportRun | None:
        return get_run_for_workspace(self.session, workspace_id, run_id)

    def _find_by_idempotency_key(self, workspace_id: int, key: str) -> ImportRun | None:
        return self.session.execute(
            select(ImportRun).where(ImportRun.workspace_id == workspace_id, ImportRun.idempotency_key == key)
        ).scalar_one_or_none()


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def get_run_for_workspace(session: Session, workspace_id: int, run_id: int) -> ImportRun | None:
    return session.execute(
        select(ImportRun).where(ImportRun.id == run_id, ImportRun.workspace_id == workspace_id)
    ).scalar_one_or_none()


def summarize_run(run: ImportRun) -> RunSummary:
    duration_seconds: float | None = None
    if run.started_at:
        started = _as_aware(run.started_at)
        finished = _as_aware(run.finished_at) if run.finished_at else datetime.now(timezone.utc)
        duration_seconds = (finished - started).total_seconds()

    return RunSummary(
        id=run.id,
        workspace_id=run.workspace_id,
        filename=run.filename,
        source_format=run.source_format,
        status=run.status.value if isinstance(run.status, ImportRunStatus) else str(run.status),
        idempotency_key=run.idempotency_key,
        total_rows=int(run.total_rows or 0),
        processed_rows=int(run.processed_rows or 0),
        created_count=int(run.created_count or 0),
        hard_duplicate_count=int(run.hard_duplicate_count or 0),
        soft_duplicate_count=int(run.soft_duplicate_count or 0),
        error_count=int(run.error_count or 0),
        headers=list(run.headers_json or []),
        column_mapping=dict(run.column_mapping_json) if run.column_mapping_json else None,
        error_summary=run.error_summary,
        created_at=run.created_at,
        started_at=run.started_at,
        finished_at=run.finished_at,
        duration_seconds=duration_seconds,
    )


def summarize_row(row: ImportRow) -> RowSummary:
    return RowSummary(
        id=row.id,
        row_number=row.row_number,
        status=row.status.value if isinstance(row.status, ImportRowStatus) else str(row.status),
        raw=dict(row.raw_json or {}),
        normalized=dict(row.normalized_json or {}),
        matched_lead_id=row.matched_lead_id,
        soft_score=row.soft_score,
        error_message=row.error_message,
        resolution_action=row.resolution_action,
        resolution_reason=row.resolution_reason,
    )


def _as_aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _page(items: list[Any], total: int, page: int, page_size: int) -> PageResult:
    total_pages = (total + page_size - 1) // page_size if total else 0
    return PageResult(items=items, total=total, page=page, page_size=page_size, total_pages=total_pages)


def _coerce_page_value(
    candidate: int | str | None,
    *,
    fallback: int,
    name: str,
    maximum: int | None = None,
) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, bool):
        raise ValueError(f"Expected positive integer for {name}, received '{candidate}'.")
    if isinstance(candidate, int):
        value = candidate
    elif isinstance(candidate, str) and candidate.strip().isdigit():
        value = int(candidate.strip())
    else:
        raise ValueError(f"Expected positive integer for {name}, received '{candidate}'.")
    if value < 1:
        raise ValueError(f"{name} must be at least 1.")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be at most {maximum}.")
    return value


def _coerce_status(value: str | ImportRunStatus) -> ImportRunStatus:
    if isinstance(value, ImportRunStatus):
        return value
    normalized = str(value).strip().lower()
    try:
        return ImportRunStatus(normalized)
    except ValueError:
        raise ValueError(f"Unsupported status filter '{value}'.") from None
