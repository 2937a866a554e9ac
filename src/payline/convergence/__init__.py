"""Convergence: binding plan requirements to imported data."""

from payline.convergence.derive import DerivationOutcome, generate_derivations
from payline.convergence.matcher import (
    DEFAULT_CURATED_PATTERNS,
    BindingMatch,
    CuratedPattern,
    load_curated_patterns,
    match_requirements,
)
from payline.convergence.service import converge, converge_rows, format_convergence_summary

__all__ = [
    "BindingMatch",
    "CuratedPattern",
    "DEFAULT_CURATED_PATTERNS",
    "DerivationOutcome",
    "converge",
    "converge_rows",
    "format_convergence_summary",
    "generate_derivations",
    "load_curated_patterns",
    "match_requirements",
]
