"""
Lead importer package.

Mounts the ``flask leads`` CLI group and records importer state inside
``app.extensions['leads_importer']``.
"""

from __future__ import annotations

from flask import Flask

from leads_app.utils.importer import get_soft_match_threshold, is_import_cli_enabled

from .cli import leads_cli
from .pipeline.execution import execute_import_run
from .pipeline.merge_service import MergeService
from .pipeline.resolution import resolve_soft_duplicate
from .pipeline.run_service import ImportRunService, RowFilters, RunFilters
from .results import ErrorKind, ServiceError, ServiceResult

IMPORTER_EXTENSION_KEY = "leads_importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "ErrorKind",
    "ImportRunService",
    "MergeService",
    "RowFilters",
    "RunFilters",
    "ServiceError",
    "ServiceResult",
    "execute_import_run",
    "resolve_soft_duplicate",
]


def _set_cli(app: Flask, enabled: bool) -> None:
    command_name = leads_cli.name
    # Avoid duplicate registrations when running tests
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)
    if enabled:
        app.cli.add_command(leads_cli)


def init_importer(app: Flask) -> None:
    """Register the importer CLI according to configuration."""
    enabled = is_import_cli_enabled(app)
    state = app.extensions.setdefault(IMPORTER_EXTENSION_KEY, {})
    state.update(
        {
            "cli_enabled": enabled,
            "soft_match_threshold": get_soft_match_threshold(app),
        }
    )
    _set_cli(app, enabled)
    app.logger.info(
        "Lead importer initialised (cli=%s, soft_match_threshold=%.2f)",
        enabled,
        state["soft_match_threshold"],
    )
