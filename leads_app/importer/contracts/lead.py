"""Canonical lead import contract.

Single source of truth for the lead fields an uploaded file can map onto,
which of them a row must supply, and the header aliases used to infer a
default column mapping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Tuple

CUSTOM_FIELD_PREFIX = "custom:"

_HEADER_TOKEN = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical lead field."""

    name: str
    description: str
    required: bool = False
    aliases: Tuple[str, ...] = ()
    max_length: int | None = None

    def headers(self) -> Tuple[str, ...]:
        return (self.name, *self.aliases)


LEAD_CANONICAL_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="business_name",
        description="Trading name of the business.",
        required=True,
        aliases=("businessname", "business", "company", "company_name", "name", "organization"),
        max_length=255,
    ),
    FieldSpec(
        name="contact_name",
        description="Person to reach at the business.",
        aliases=("contactname", "contact", "owner", "full_name"),
        max_length=255,
    ),
    FieldSpec(
        name="email",
        description="Primary email address.",
        aliases=("email_address", "e_mail", "mail"),
        max_length=255,
    ),
    FieldSpec(
        name="phone",
        description="Primary phone number.",
        aliases=("phone_number", "telephone", "tel", "mobile"),
        max_length=50,
    ),
    FieldSpec(
        name="website",
        description="Website URL or bare domain.",
        aliases=("url", "site", "web", "domain"),
        max_length=500,
    ),
    FieldSpec(name="city", description="City or locality.", aliases=("town", "locality"), max_length=120),
    FieldSpec(name="source", description="Where the lead came from.", aliases=("lead_source",), max_length=120),
    FieldSpec(name="niche", description="Industry or vertical.", aliases=("industry", "category"), max_length=120),
)

MERGEABLE_FIELDS: Tuple[str, ...] = tuple(spec.name for spec in LEAD_CANONICAL_FIELDS)


def normalize_header(header: str | None) -> str:
    """Collapse a header to a lower snake-case token for alias lookup."""

    token = (header or "").strip().lstrip("\ufeff").lower()
    return _HEADER_TOKEN.sub("_", token).strip("_")


def get_lead_field_specs() -> Tuple[FieldSpec, ...]:
    return LEAD_CANONICAL_FIELDS


def get_lead_required_fields() -> Tuple[str, ...]:
    return tuple(spec.name for spec in LEAD_CANONICAL_FIELDS if spec.required)


def get_lead_field_names() -> Tuple[str, ...]:
    return MERGEABLE_FIELDS


def get_lead_alias_map() -> Mapping[str, str]:
    """Return normalized header token -> canonical field name."""

    alias_map: dict[str, str] = {}
    for spec in LEAD_CANONICAL_FIELDS:
        for header in spec.headers():
            alias_map[normalize_header(header)] = spec.name
    return alias_map


def is_custom_field(target: str) -> bool:
    return target.startswith(CUSTOM_FIELD_PREFIX) and len(target) > len(CUSTOM_FIELD_PREFIX)


def custom_field_key(target: str) -> str:
    return target[len(CUSTOM_FIELD_PREFIX) :]


def is_known_target(target: str, fields: Iterable[str] | None = None) -> bool:
    known = set(fields) if fields is not None else set(MERGEABLE_FIELDS)
    return target in known or is_custom_field(target)
