"""Lead import pipeline helpers."""

from __future__ import annotations

from .dedupe import (
    DEFAULT_SOFT_MATCH_THRESHOLD,
    LeadCandidate,
    MatchResult,
    find_best_match,
    is_hard_duplicate,
    is_soft_duplicate,
    name_similarity,
    soft_duplicate_score,
)
from .execution import execute_import_run
from .mapping import MappedLead, apply_mapping, infer_default_mapping, validate_mapped_lead, validate_mapping
from .merge_service import MergeOutcome, MergeService
from .normalization import (
    normalize_business_name,
    normalize_city,
    normalize_domain,
    normalize_email,
    normalize_lead_payload,
    normalize_phone,
)
from .resolution import ResolutionAction, ResolutionOutcome, resolve_soft_duplicate
from .run_service import ImportRunService, RowFilters, RunFilters, RunSummary

__all__ = [
    "DEFAULT_SOFT_MATCH_THRESHOLD",
    "ImportRunService",
    "LeadCandidate",
    "MappedLead",
    "MatchResult",
    "MergeOutcome",
    "MergeService",
    "ResolutionAction",
    "ResolutionOutcome",
    "RowFilters",
    "RunFilters",
    "RunSummary",
    "apply_mapping",
    "execute_import_run",
    "find_best_match",
    "infer_default_mapping",
    "is_hard_duplicate",
    "is_soft_duplicate",
    "name_similarity",
    "normalize_business_name",
    "normalize_city",
    "normalize_domain",
    "normalize_email",
    "normalize_lead_payload",
    "normalize_phone",
    "resolve_soft_duplicate",
    "soft_duplicate_score",
    "validate_mapped_lead",
    "validate_mapping",
]
