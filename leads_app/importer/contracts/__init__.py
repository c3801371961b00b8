"""Canonical ingest contract helpers for the lead importer."""

from __future__ import annotations

from .lead import (
    CUSTOM_FIELD_PREFIX,
    LEAD_CANONICAL_FIELDS,
    MERGEABLE_FIELDS,
    FieldSpec,
    custom_field_key,
    get_lead_alias_map,
    get_lead_field_names,
    get_lead_field_specs,
    get_lead_required_fields,
    is_custom_field,
    is_known_target,
    normalize_header,
)

__all__ = [
    "CUSTOM_FIELD_PREFIX",
    "FieldSpec",
    "LEAD_CANONICAL_FIELDS",
    "MERGEABLE_FIELDS",
    "custom_field_key",
    "get_lead_alias_map",
    "get_lead_field_names",
    "get_lead_field_specs",
    "get_lead_required_fields",
    "is_custom_field",
    "is_known_target",
    "normalize_header",
]
