"""
Configuration accessors for the lead importer.
"""

from __future__ import annotations

from flask import current_app

DEFAULT_SOFT_MATCH_THRESHOLD = 0.90
DEFAULT_PREVIEW_LIMIT = 50
MAX_PREVIEW_LIMIT = 200
DEFAULT_MAX_UPLOAD_MB = 25


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_import_cli_enabled(app=None) -> bool:
    """Return True when the ``flask leads`` command group should be mounted."""
    config = _get_config(app)
    return bool(config.get("LEADS_IMPORT_CLI_ENABLED", True))


def get_soft_match_threshold(app=None) -> float:
    """Jaro-Winkler threshold above which same-city names count as soft duplicates."""
    config = _get_config(app)
    try:
        threshold = float(config.get("LEADS_SOFT_MATCH_THRESHOLD", DEFAULT_SOFT_MATCH_THRESHOLD))
    except (TypeError, ValueError):
        return DEFAULT_SOFT_MATCH_THRESHOLD
    if not 0.0 < threshold <= 1.0:
        return DEFAULT_SOFT_MATCH_THRESHOLD
    return threshold


def get_preview_limits(app=None) -> tuple[int, int]:
    """Return ``(default_limit, max_limit)`` for run previews."""
    config = _get_config(app)
    maximum = int(config.get("LEADS_PREVIEW_MAX_LIMIT", MAX_PREVIEW_LIMIT) or MAX_PREVIEW_LIMIT)
    default = int(config.get("LEADS_PREVIEW_DEFAULT_LIMIT", DEFAULT_PREVIEW_LIMIT) or DEFAULT_PREVIEW_LIMIT)
    return min(default, maximum), maximum


def get_max_upload_bytes(app=None) -> int:
    config = _get_config(app)
    try:
        megabytes = int(config.get("LEADS_MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_MB))
    except (TypeError, ValueError):
        megabytes = DEFAULT_MAX_UPLOAD_MB
    return max(1, megabytes) * 1024 * 1024
