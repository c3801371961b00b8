"""
Identity-field normalization used for lead dedupe.

Every helper is total: it accepts any scalar (or ``None``), never raises, and
returns ``None`` when nothing meaningful remains after cleanup.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

_NON_DIGIT = re.compile(r"\D+")
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")
_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://")

LEGAL_SUFFIXES = frozenset(
    {
        "llc",
        "inc",
        "incorporated",
        "co",
        "company",
        "corp",
        "corporation",
        "ltd",
        "limited",
        "plc",
        "llp",
        "lp",
        "pllc",
        "gmbh",
    }
)

NORMALIZED_KEYS = ("email_norm", "phone_norm", "domain_norm", "name_norm", "city_norm")


def _clean_text(value: object | None) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    token = str(value).strip()
    return token or None


def normalize_email(value: object | None) -> str | None:
    """Trim and lower-case an email. No format validation is applied."""

    token = _clean_text(value)
    return token.lower() if token else None


def normalize_phone(value: object | None) -> str | None:
    """
    Reduce a phone number to its digits.

    A North American number written with its ``1`` country code (11 digits
    starting with ``1``) drops the leading ``1`` so it matches the 10-digit form.
    """

    token = _clean_text(value)
    if token is None:
        return None
    if isinstance(value, float) and value.is_integer():
        token = str(int(value))
    digits = _NON_DIGIT.sub("", token)
    if not digits:
        return None
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def normalize_domain(value: object | None) -> str | None:
    """
    Extract a bare lower-case host from an email address or website URL.

    ``Bob@Acme.com`` -> ``acme.com``; ``https://www.acme.com/about`` -> ``acme.com``.
    """

    token = _clean_text(value)
    if token is None:
        return None
    token = token.lower()
    if "@" in token:
        token = token.rsplit("@", 1)[1]
    else:
        token = _SCHEME.sub("", token)
        if token.startswith("www."):
            token = token[4:]
    for separator in ("/", "?", "#"):
        token = token.split(separator, 1)[0]
    token = token.split(":", 1)[0].strip().strip(".")
    return token or None


def normalize_business_name(value: object | None) -> str | None:
    """
    Lower-case a business name, drop punctuation and strip trailing legal suffixes.

    Suffixes are removed repeatedly so ``Acme Co., Inc.`` becomes ``acme``. A
    name made only of suffixes keeps its last token.
    """

    token = _clean_text(value)
    if token is None:
        return None
    cleaned = _PUNCTUATION.sub(" ", token.lower())
    words = _WHITESPACE.split(cleaned.strip())
    words = [word for word in words if word]
    while len(words) > 1 and words[-1] in LEGAL_SUFFIXES:
        words.pop()
    result = " ".join(words)
    return result or None


def normalize_city(value: object | None) -> str | None:
    token = _clean_text(value)
    if token is None:
        return None
    return _WHITESPACE.sub(" ", token.lower())


def normalize_lead_payload(record: Mapping[str, Any]) -> dict[str, str | None]:
    """Build the normalized identity bag for a lead-shaped mapping."""

    email_norm = normalize_email(record.get("email"))
    domain_norm = normalize_domain(email_norm) or normalize_domain(record.get("website"))
    return {
        "email_norm": email_norm,
        "phone_norm": normalize_phone(record.get("phone")),
        "domain_norm": domain_norm,
        "name_norm": normalize_business_name(record.get("business_name")),
        "city_norm": normalize_city(record.get("city")),
    }
