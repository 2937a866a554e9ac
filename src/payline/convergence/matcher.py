"""Binding of plan components to imported data types.

Two tiers, first hit wins per component:

1. Curated patterns: ordered (component pattern, data type pattern) pairs.
   A component whose name matches is bound to the first data type matching
   the paired pattern, at a fixed confidence.
2. Token overlap: the component name and every data type name are tokenized
   and the best-scoring data type is taken if it clears the threshold.

Components with an unknown operation are never matched.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

from payline.errors import ConfigurationError
from payline.io.profile import DataCapability
from payline.planning.requirements import PlanRequirement
from payline.scoring.tokens import token_overlap, tokenize

logger = logging.getLogger(__name__)

CURATED_CONFIDENCE = 0.85
TOKEN_SCORE_THRESHOLD = 0.2
TOKEN_CONFIDENCE_BASE = 0.4
TOKEN_CONFIDENCE_SLOPE = 0.4
TOKEN_CONFIDENCE_CAP = 0.80


@dataclass(frozen=True)
class CuratedPattern:
    label: str
    component_patterns: tuple[str, ...]
    data_type_patterns: tuple[str, ...]

    def matches_component(self, name: str) -> bool:
        return any(re.search(p, name, re.IGNORECASE) for p in self.component_patterns)

    def matches_data_type(self, data_type: str) -> bool:
        return any(re.search(p, data_type, re.IGNORECASE) for p in self.data_type_patterns)


DEFAULT_CURATED_PATTERNS: tuple[CuratedPattern, ...] = (
    CuratedPattern(
        "optical sales",
        (r"optical.*sales", r"individual.*sales", r"venta.*optica"),
        (r"venta.*individual", r"individual.*venta", r"optical.*sales"),
    ),
    CuratedPattern(
        "store sales",
        (r"store.*sales", r"tienda"),
        (r"venta.*tienda", r"tienda.*venta", r"store.*sales"),
    ),
    CuratedPattern(
        "new customers",
        (r"new.*customer", r"clientes.*nuevos"),
        (r"clientes.*nuevos", r"new.*customer", r"nuevos.*clientes"),
    ),
    CuratedPattern(
        "collections",
        (r"collection", r"cobranza"),
        (r"cobranza", r"collection", r"cobro"),
    ),
    CuratedPattern(
        "insurance",
        (r"insurance", r"proteccion", r"seguro"),
        (r"club.*proteccion", r"proteccion", r"insurance", r"seguro"),
    ),
    CuratedPattern(
        "warranty",
        (r"service", r"warranty", r"garantia"),
        (r"garantia.*extendida", r"warranty", r"garantia"),
    ),
    CuratedPattern("mortgage", (r"mortgage", r"hipoteca"), (r"mortgage", r"closing", r"hipoteca")),
    CuratedPattern(
        "loan disbursement",
        (r"loan.*commission", r"lending", r"prestamo"),
        (r"loan.*disbursement", r"disbursement", r"desembolso", r"prestamo"),
    ),
    CuratedPattern("deposits", (r"deposit", r"deposito"), (r"deposit", r"balance", r"deposito")),
    CuratedPattern("referrals", (r"referral", r"referido"), (r"referral", r"referido")),
)


@dataclass
class BindingMatch:
    """A requirement bound to one data type, with the evidence for it."""

    requirement: PlanRequirement
    data_type: str
    confidence: float
    reason: str


def load_curated_patterns(path: Path | str) -> tuple[CuratedPattern, ...]:
    """Load curated patterns from a JSON or YAML list.

    Each entry: ``{"label": ..., "componentPatterns": [...], "dataTypePatterns": [...]}``.
    Files ending in ``.yaml`` or ``.yml`` are read with ``yaml.safe_load``.

    Raises:
        ConfigurationError: If the file is unreadable or an entry is malformed
    """
    try:
        target = Path(path)
        text = target.read_text()
        if target.suffix.lower() in (".yaml", ".yml"):
            entries = yaml.safe_load(text)
        else:
            entries = json.loads(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(
            f"Cannot read curated patterns: {exc}", config_field="PL_CURATED_PATTERNS_FILE"
        ) from exc
    if not isinstance(entries, list):
        raise ConfigurationError(
            "Curated patterns file must hold a list", config_field="PL_CURATED_PATTERNS_FILE"
        )

    patterns = []
    for i, entry in enumerate(entries):
        try:
            component = tuple(str(p) for p in entry["componentPatterns"])
            data_type = tuple(str(p) for p in entry["dataTypePatterns"])
            for p in component + data_type:
                re.compile(p)
        except (KeyError, TypeError, re.error) as exc:
            raise ConfigurationError(
                f"Curated pattern #{i} is invalid: {exc}",
                config_field="PL_CURATED_PATTERNS_FILE",
            ) from exc
        patterns.append(CuratedPattern(str(entry.get("label") or f"pattern {i}"), component, data_type))
    return tuple(patterns)


def token_confidence(score: float) -> float:
    return min(TOKEN_CONFIDENCE_CAP, TOKEN_CONFIDENCE_BASE + score * TOKEN_CONFIDENCE_SLOPE)


def match_curated(
    requirement: PlanRequirement,
    data_types: list[str],
    patterns: Iterable[CuratedPattern] = DEFAULT_CURATED_PATTERNS,
) -> BindingMatch | None:
    for pattern in patterns:
        if not pattern.matches_component(requirement.name):
            continue
        for data_type in data_types:
            if pattern.matches_data_type(data_type):
                return BindingMatch(
                    requirement=requirement,
                    data_type=data_type,
                    confidence=CURATED_CONFIDENCE,
                    reason=f"Curated pattern: {pattern.label}",
                )
    return None


def match_by_tokens(requirement: PlanRequirement, data_types: list[str]) -> BindingMatch | None:
    """Bind by token overlap between the component name and data type names."""
    component_tokens = tokenize(requirement.name)
    best_type = ""
    best_score = 0.0
    for data_type in data_types:
        score = token_overlap(component_tokens, tokenize(data_type))
        if score > best_score:
            best_score = score
            best_type = data_type

    if not best_type or best_score <= TOKEN_SCORE_THRESHOLD:
        return None
    return BindingMatch(
        requirement=requirement,
        data_type=best_type,
        confidence=token_confidence(best_score),
        reason=f"Token overlap: {best_score * 100:.0f}%",
    )


def match_requirements(
    requirements: list[PlanRequirement],
    capabilities: list[DataCapability],
    patterns: Iterable[CuratedPattern] = DEFAULT_CURATED_PATTERNS,
) -> list[BindingMatch]:
    """Bind every calculable requirement to at most one data type.

    Returns:
        Matches in requirement order; unmatched requirements are absent
    """
    data_types = [c.data_type for c in capabilities]
    patterns = tuple(patterns)
    matches = []
    for requirement in requirements:
        if not requirement.is_calculable:
            continue
        match = match_curated(requirement, data_types, patterns) or match_by_tokens(requirement, data_types)
        if match is None:
            logger.info("No data type matched component '%s'", requirement.name)
            continue
        logger.debug(
            "Matched '%s' -> %s (%.2f, %s)",
            requirement.name, match.data_type, match.confidence, match.reason,
        )
        matches.append(match)
    return matches
