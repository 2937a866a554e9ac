"""Derivation rule generation.

Turns confident binding matches into executable aggregation rules.

Single component per data type: sum the numeric field with the highest
sampled average, or count rows when the component pays a fixed per-unit rate.

Several components on one data type ("shared base"): each component counts
only its own slice of rows, selected by the categorical value that best
matches its name (falling back to its metric names), plus the data type's
boolean "qualified" gate when there is one. Sibling slices never repeat.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field

from payline.contracts import DerivationFilter, MetricDerivationRule
from payline.convergence.matcher import BindingMatch
from payline.io.profile import DataCapability, NumericField
from payline.planning.requirements import PlanRequirement
from payline.scoring.tokens import token_overlap, tokenize

logger = logging.getLogger(__name__)

MIN_RULE_CONFIDENCE = 0.5
# Below this, a name-based category pick is retried with metric-name tokens.
CATEGORY_NAME_SCORE_MIN = 0.3
# Runner-up average at or above this share of the winner's is flagged as ambiguous.
AMBIGUOUS_FIELD_SHARE = 0.5
# A fixed scalar_multiply rate above this is money per unit, so rows are counted.
PER_UNIT_RATE_MIN = 1.0


@dataclass
class CategoryPick:
    field: str
    value: str
    score: float
    basis: str


@dataclass
class DerivationOutcome:
    """Rules plus per-component notes for the convergence report."""

    rules: list[MetricDerivationRule] = field(default_factory=list)
    notes: dict[int, str] = field(default_factory=dict)

    def rules_for(self, requirement: PlanRequirement) -> list[MetricDerivationRule]:
        return [r for r in self.rules if r.metric in requirement.expected_metrics]


def choose_sum_field(capability: DataCapability) -> tuple[NumericField | None, str | None]:
    """Pick the numeric field to sum: the one with the highest sampled average.

    This is a proxy for "the monetary amount column". When the runner-up is
    close enough that the choice is doubtful, a note naming both fields is
    returned so operators can review it.
    """
    ranked = capability.ranked_numeric_fields()
    if not ranked:
        return None, None
    best = ranked[0]
    if len(ranked) > 1 and ranked[1].avg >= best.avg * AMBIGUOUS_FIELD_SHARE:
        runner_up = ranked[1]
        return best, (
            f"ambiguous amount field: summed '{best.field}' (avg {best.avg:,.2f}) "
            f"over '{runner_up.field}' (avg {runner_up.avg:,.2f})"
        )
    return best, None


def pick_category(
    requirement: PlanRequirement,
    capability: DataCapability,
    claimed: set[tuple[str, str]] | None = None,
) -> CategoryPick | None:
    """Find the categorical (field, value) pair that best describes a component.

    Every distinct value of every categorical field is scored against the
    component name tokens. If nothing scores above ``CATEGORY_NAME_SCORE_MIN``
    the component's metric names are tried as well. Pairs in ``claimed`` are
    skipped so sibling components never share a slice.
    """
    claimed = claimed or set()
    best: CategoryPick | None = None

    def consider(tokens: list[str], basis: str) -> None:
        nonlocal best
        for cat in capability.categorical_fields:
            for value in cat.distinct_values:
                if (cat.field, value.lower()) in claimed:
                    continue
                # Share of the value's tokens covered by the name, at most 1.0.
                # Several name tokens hitting one value token count once, so
                # "Auto Autoloan" ties "auto" and "auto loan" and the first value wins.
                score = token_overlap(tokenize(value), tokens)
                if score > 0 and (best is None or score > best.score):
                    best = CategoryPick(field=cat.field, value=value, score=score, basis=basis)

    consider(tokenize(requirement.name), "component name")
    if best is None or best.score < CATEGORY_NAME_SCORE_MIN:
        for metric in requirement.expected_metrics:
            consider(tokenize(metric), f"metric '{metric}'")
    return best


def _single_rules(
    requirement: PlanRequirement,
    data_type: str,
    capability: DataCapability,
) -> tuple[list[MetricDerivationRule], str | None]:
    per_unit = (
        requirement.calculation_op == "scalar_multiply"
        and requirement.calculation_rate is not None
        and requirement.calculation_rate > PER_UNIT_RATE_MIN
    )
    if per_unit:
        rules = [
            MetricDerivationRule(metric=m, operation="count", source_pattern=data_type)
            for m in requirement.expected_metrics
        ]
        return rules, f"per-unit rate {requirement.calculation_rate:g}: counting rows"

    best, note = choose_sum_field(capability)
    if best is None:
        return [], "data type has no aggregable numeric field"
    rules = [
        MetricDerivationRule(
            metric=m, operation="sum", source_pattern=data_type, source_field=best.field
        )
        for m in requirement.expected_metrics
    ]
    return rules, note


def _shared_base_rules(
    requirements: list[PlanRequirement],
    data_type: str,
    capability: DataCapability,
    outcome: DerivationOutcome,
) -> None:
    claimed: set[tuple[str, str]] = set()
    gate = capability.boolean_fields[0] if capability.boolean_fields else None

    for requirement in requirements:
        pick = pick_category(requirement, capability, claimed)
        if pick is None:
            outcome.notes[requirement.index] = (
                f"shared base '{data_type}': no unclaimed category value matches this component"
            )
            logger.warning("Shared base %s: no filter found for '%s'", data_type, requirement.name)
            continue

        claimed.add((pick.field, pick.value.lower()))
        filters = [DerivationFilter(field=pick.field, operator="eq", value=pick.value)]
        if gate is not None:
            filters.append(DerivationFilter(field=gate.field, operator="eq", value=gate.true_value))

        for metric in requirement.expected_metrics:
            outcome.rules.append(MetricDerivationRule(
                metric=metric,
                operation="count",
                source_pattern=data_type,
                filters=[f.model_copy() for f in filters],
            ))
        outcome.notes[requirement.index] = (
            f"shared base: counting {pick.field}={pick.value} (by {pick.basis}, "
            f"score {pick.score:.2f})" + (f" where {gate.field}={gate.true_value}" if gate else "")
        )


def generate_derivations(
    matches: list[BindingMatch],
    capabilities: list[DataCapability],
    *,
    min_confidence: float = MIN_RULE_CONFIDENCE,
) -> DerivationOutcome:
    """Generate the plan's rule set from its binding matches.

    Args:
        matches: Output of the binding matcher
        capabilities: The inventory the matches were made against
        min_confidence: Matches below this produce no rules

    Returns:
        DerivationOutcome whose rules each produce one of the originating
        component's expected metrics
    """
    by_type = {c.data_type: c for c in capabilities}
    outcome = DerivationOutcome()

    groups: OrderedDict[str, list[BindingMatch]] = OrderedDict()
    for match in matches:
        if match.confidence < min_confidence:
            continue
        if match.data_type not in by_type:
            logger.warning("Match for '%s' names unknown data type %s", match.requirement.name, match.data_type)
            continue
        groups.setdefault(match.data_type, []).append(match)

    for data_type, group in groups.items():
        capability = by_type[data_type]
        if len(group) > 1 and capability.categorical_fields:
            _shared_base_rules([m.requirement for m in group], data_type, capability, outcome)
            continue

        if len(group) > 1:
            logger.info("Shared base %s has no categorical fields; deriving per component", data_type)
        for match in group:
            rules, note = _single_rules(match.requirement, data_type, capability)
            outcome.rules.extend(rules)
            if note:
                outcome.notes[match.requirement.index] = note

    logger.info("Generated %d derivation rule(s) across %d data type(s)", len(outcome.rules), len(groups))
    return outcome
