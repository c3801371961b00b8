"""
Column mapping between uploaded headers and lead fields.

A mapping is ``{target: source_header}`` where ``target`` is a canonical lead
field (``business_name``, ``email``...) or ``custom:<key>`` for values kept in
``Lead.custom_data``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from leads_app.importer.contracts import (
    CUSTOM_FIELD_PREFIX,
    custom_field_key,
    get_lead_alias_map,
    get_lead_field_specs,
    get_lead_required_fields,
    is_custom_field,
    is_known_target,
    normalize_header,
)


@dataclass
class MappedLead:
    """Lead payload produced by applying a column mapping to a raw row."""

    fields: dict[str, str | None]
    custom_data: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.fields)
        payload["custom_data"] = dict(self.custom_data)
        return payload


def infer_default_mapping(headers: Sequence[str]) -> dict[str, str]:
    """
    Guess a mapping from header names.

    Known aliases map onto lead fields (first header wins); every other
    header is kept as ``custom:<token>``.
    """

    alias_map = get_lead_alias_map()
    mapping: dict[str, str] = {}
    for header in headers:
        token = normalize_header(header)
        target = alias_map.get(token)
        if target is None:
            target = f"{CUSTOM_FIELD_PREFIX}{token or header}"
        if target not in mapping:
            mapping[target] = header
    return mapping


def validate_mapping(mapping: object, headers: Sequence[str]) -> list[str]:
    """Return a list of problems with ``mapping``; empty means valid."""

    if not isinstance(mapping, Mapping) or not mapping:
        return ["Mapping must be a non-empty object of lead field -> source column."]

    errors: list[str] = []
    header_set = set(headers)
    for target, source in mapping.items():
        if not isinstance(target, str) or not is_known_target(target):
            errors.append(f"Unknown lead field '{target}'.")
            continue
        if not isinstance(source, str) or not source:
            errors.append(f"Lead field '{target}' must map to a column name.")
            continue
        if source not in header_set:
            errors.append(f"Lead field '{target}' maps to unknown column '{source}'.")

    for required in get_lead_required_fields():
        if required not in mapping:
            errors.append(f"Required lead field '{required}' is not mapped.")
    return errors


def _to_text(value: object | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def apply_mapping(raw: Mapping[str, Any], mapping: Mapping[str, str]) -> MappedLead:
    fields: dict[str, str | None] = {spec.name: None for spec in get_lead_field_specs()}
    custom_data: dict[str, Any] = {}
    for target, source in mapping.items():
        value = raw.get(source)
        if is_custom_field(target):
            if value is not None and not (isinstance(value, str) and not value.strip()):
                custom_data[custom_field_key(target)] = value.strip() if isinstance(value, str) else value
            continue
        if target in fields:
            fields[target] = _to_text(value)
    return MappedLead(fields=fields, custom_data=custom_data)


def validate_mapped_lead(payload: MappedLead) -> list[str]:
    """Row-level checks applied before a lead can be created from ``payload``."""

    errors: list[str] = []
    for spec in get_lead_field_specs():
        value = payload.get(spec.name)
        if spec.required and not value:
            errors.append(f"Missing required field '{spec.name}'.")
        elif value and spec.max_length is not None and len(value) > spec.max_length:
            errors.append(f"Field '{spec.name}' exceeds {spec.max_length} characters.")
    return errors
