"""
CLI commands for the lead importer (``flask leads ...``).

Each command wraps one service operation, prints its result as JSON and
exits non-zero with the error kind and message when the service rejects the
request.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from flask.cli import ScriptInfo

from leads_app.importer.pipeline.execution import execute_import_run
from leads_app.importer.pipeline.merge_service import MergeService
from leads_app.importer.pipeline.resolution import resolve_soft_duplicate
from leads_app.importer.pipeline.run_service import ImportRunService, RowFilters, RunFilters
from leads_app.importer.results import ServiceResult
from leads_app.models.base import db
from leads_app.utils.importer import is_import_cli_enabled


@click.group(name="leads", invoke_without_command=True)
@click.pass_context
def leads_cli(ctx):
    """Lead import, dedupe and merge commands."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_import_cli_enabled(app):
        raise click.ClickException("Lead import commands are disabled via LEADS_IMPORT_CLI_ENABLED=false.")
    ctx.with_resource(app.app_context())
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _unwrap(result: ServiceResult) -> Any:
    if result.ok:
        return result.value
    error = result.error
    message = f"{error.kind.value}: {error.message}"
    if error.details and error.details.get("errors"):
        message += " " + " ".join(error.details["errors"])
    raise click.ClickException(message)


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, default=str, sort_keys=True))


def _parse_choices(pairs: tuple[str, ...]) -> dict[str, str]:
    choices: dict[str, str] = {}
    for pair in pairs:
        name, separator, choice = pair.partition("=")
        if not separator or not name.strip():
            raise click.BadParameter(f"Expected field=existing|incoming, got '{pair}'.", param_hint="--choose")
        choices[name.strip()] = choice.strip().lower()
    return choices


def _load_mapping(mapping_json: Optional[str], mapping_file: Optional[Path]) -> dict:
    if bool(mapping_json) == bool(mapping_file):
        raise click.UsageError("Provide exactly one of --mapping or --mapping-file.")
    try:
        if mapping_file is not None:
            with mapping_file.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle)
        else:
            loaded = json.loads(mapping_json)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise click.ClickException(f"Unable to parse mapping: {exc}") from exc
    if isinstance(loaded, dict) and isinstance(loaded.get("mapping"), dict):
        loaded = loaded["mapping"]
    if not isinstance(loaded, dict):
        raise click.ClickException("Mapping must be an object of lead field -> source column.")
    return loaded


@leads_cli.command("import")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--workspace", "workspace_id", required=True, type=int, help="Workspace that owns the run.")
@click.option("--uploader", "uploader_id", type=int, help="User id recorded as the uploader.")
@click.option("--idempotency-key", help="Retry-safe key; re-uploads with the same key return the first run.")
def leads_import(file_path: Path, workspace_id: int, uploader_id: Optional[int], idempotency_key: Optional[str]):
    """Create an import run from a CSV or XLSX file."""
    outcome = _unwrap(
        ImportRunService(db.session).create_run_from_upload(
            workspace_id,
            uploader_id,
            file_path.name,
            file_path.read_bytes(),
            idempotency_key=idempotency_key,
        )
    )
    payload = outcome.run.as_dict()
    payload["reused"] = outcome.reused
    _emit(payload)


@leads_cli.command("map")
@click.argument("run_id", type=int)
@click.option("--workspace", "workspace_id", required=True, type=int)
@click.option("--mapping", "mapping_json", help='Inline JSON, e.g. \'{"business_name": "Company"}\'.')
@click.option(
    "--mapping-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="YAML file with lead field -> source column entries.",
)
def leads_map(run_id: int, workspace_id: int, mapping_json: Optional[str], mapping_file: Optional[Path]):
    """Store the column mapping for a run."""
    mapping = _load_mapping(mapping_json, mapping_file)
    summary = _unwrap(ImportRunService(db.session).set_column_mapping(workspace_id, run_id, mapping))
    _emit(summary.as_dict())


@leads_cli.command("preview")
@click.argument("run_id", type=int)
@click.option("--workspace", "workspace_id", required=True, type=int)
@click.option("--limit", type=int, help="Number of rows to show (1-200).")
def leads_preview(run_id: int, workspace_id: int, limit: Optional[int]):
    """Show the first rows of a run under its current mapping."""
    preview = _unwrap(ImportRunService(db.session).preview_rows(workspace_id, run_id, limit))
    _emit(
        {
            "run": preview.run.as_dict(),
            "mapping": preview.mapping,
            "mapping_is_inferred": preview.mapping_is_inferred,
            "rows": [row.as_dict() for row in preview.rows],
        }
    )


@leads_cli.command("execute")
@click.argument("run_id", type=int)
@click.option("--workspace", "workspace_id", required=True, type=int)
@click.option("--threshold", type=float, help="Override the soft-match threshold for this execution.")
def leads_execute(run_id: int, workspace_id: int, threshold: Optional[float]):
    """Run dedupe and lead creation for every pending row."""
    summary = _unwrap(execute_import_run(db.session, workspace_id, run_id, threshold=threshold))
    _emit(summary.as_dict())


@leads_cli.command("runs")
@click.option("--workspace", "workspace_id", required=True, type=int)
@click.option("--status", "statuses", multiple=True, help="Filter by run status (repeatable).")
@click.option("--page", default="1", show_default=True)
@click.option("--page-size", default="25", show_default=True)
def leads_runs(workspace_id: int, statuses: tuple[str, ...], page: str, page_size: str):
    """List a workspace's import runs, newest first."""
    try:
        filters = RunFilters.coerce(page=page, page_size=page_size, statuses=statuses)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    result = _unwrap(ImportRunService(db.session).list_runs(workspace_id, filters))
    _emit(
        {
            "items": [item.as_dict() for item in result.items],
            "total": result.total,
            "page": result.page,
            "page_size": result.page_size,
            "total_pages": result.total_pages,
        }
    )


@leads_cli.command("rows")
@click.argument("run_id", type=int)
@click.option("--workspace", "workspace_id", required=True, type=int)
@click.option("--bucket", help="created, hard, soft, errors, skipped or pending.")
@click.option("--page", default="1", show_default=True)
@click.option("--page-size", default="25", show_default=True)
def leads_rows(run_id: int, workspace_id: int, bucket: Optional[str], page: str, page_size: str):
    """List a run's rows by outcome."""
    try:
        filters = RowFilters.coerce(page=page, page_size=page_size, bucket=bucket)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    result = _unwrap(ImportRunService(db.session).list_rows(workspace_id, run_id, filters))
    _emit(
        {
            "items": [item.as_dict() for item in result.items],
            "total": result.total,
            "page": result.page,
            "page_size": result.page_size,
            "total_pages": result.total_pages,
        }
    )


@leads_cli.command("delete")
@click.argument("run_id", type=int)
@click.option("--workspace", "workspace_id", required=True, type=int)
def leads_delete(run_id: int, workspace_id: int):
    """Delete a run and its staged rows."""
    deleted_id = _unwrap(ImportRunService(db.session).delete_run(workspace_id, run_id))
    _emit({"deleted_run_id": deleted_id})


@leads_cli.command("resolve")
@click.argument("run_id", type=int)
@click.argument("row_id", type=int)
@click.option("--workspace", "workspace_id", required=True, type=int)
@click.option("--actor", "actor_id", required=True, type=int)
@click.option("--action", required=True, type=click.Choice(["merge", "create", "skip"]))
@click.option("--matched-lead", "matched_lead_id", type=int, help="Existing lead to merge into (merge only).")
@click.option("--choose", "choices", multiple=True, help="field=existing|incoming (merge only, repeatable).")
@click.option("--reason")
def leads_resolve(
    run_id: int,
    row_id: int,
    workspace_id: int,
    actor_id: int,
    action: str,
    matched_lead_id: Optional[int],
    choices: tuple[str, ...],
    reason: Optional[str],
):
    """Resolve a soft-duplicate row."""
    chosen_fields = _parse_choices(choices) if action == "merge" else None
    outcome = _unwrap(
        resolve_soft_duplicate(
            db.session,
            workspace_id,
            run_id,
            row_id,
            action,
            actor_id,
            matched_lead_id=matched_lead_id,
            chosen_fields=chosen_fields,
            reason=reason,
        )
    )
    _emit(
        {
            "action": outcome.action,
            "lead_id": outcome.lead_id,
            "merge_log_id": outcome.merge_log_id,
            "row": outcome.row.as_dict(),
        }
    )


@leads_cli.command("merge")
@click.argument("primary_lead_id", type=int)
@click.argument("merged_lead_id", type=int)
@click.option("--workspace", "workspace_id", required=True, type=int)
@click.option("--actor", "actor_id", required=True, type=int)
@click.option("--choose", "choices", multiple=True, help="field=existing|incoming (repeatable).")
@click.option("--reason")
def leads_merge(
    primary_lead_id: int,
    merged_lead_id: int,
    workspace_id: int,
    actor_id: int,
    choices: tuple[str, ...],
    reason: Optional[str],
):
    """Merge one lead into another."""
    outcome = _unwrap(
        MergeService(db.session).merge_lead_records(
            workspace_id,
            primary_lead_id,
            merged_lead_id,
            _parse_choices(choices),
            actor_id,
            reason=reason,
        )
    )
    _emit(
        {
            "merge_log_id": outcome.merge_log_id,
            "primary_lead_id": outcome.primary_lead_id,
            "merged_lead_id": outcome.merged_lead_id,
            "lead": outcome.snapshot_after,
        }
    )
