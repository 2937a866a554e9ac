"""Convergence: bind a plan's requirements to a tenant's data.

Pipeline (all pure, in-memory):
    inventory -> requirements -> binding matches -> derivation rules -> report

Nothing here raises on data problems. Missing data, unknown components and
weak matches all end up in the report's gap list for operators to resolve.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from payline.contracts import (
    ConvergenceGap,
    ConvergenceReport,
    ConvergenceSignal,
    MatchReportEntry,
    RawRow,
)
from payline.convergence.derive import MIN_RULE_CONFIDENCE, generate_derivations
from payline.convergence.matcher import (
    DEFAULT_CURATED_PATTERNS,
    CuratedPattern,
    match_requirements,
)
from payline.io.profile import (
    INVENTORY_ROW_LIMIT,
    SAMPLES_PER_TYPE,
    DataCapability,
    inventory_capabilities,
)
from payline.planning.requirements import PlanRequirement, extract_requirements

logger = logging.getLogger(__name__)
summary_logger = logging.getLogger("payline.summary")


def _gap(requirement: PlanRequirement, reason: str, resolution: str, metrics: list[str] | None = None) -> ConvergenceGap:
    return ConvergenceGap(
        component=requirement.name,
        component_index=requirement.index,
        required_metrics=list(requirement.expected_metrics if metrics is None else metrics),
        calculation_op=requirement.calculation_op,
        reason=reason,
        resolution=resolution,
    )


def _unmatched_gap(requirement: PlanRequirement) -> ConvergenceGap:
    if requirement.calculation_op in ("ratio", "bounded_lookup_1d"):
        hint = "ratio/lookup calculations need structured data with numerator and denominator fields"
    else:
        hint = f"{requirement.calculation_op} calculation requires matching data"
    resolution = "no data type resembles this component's name; import data or rename"
    if requirement.expected_metrics:
        resolution += f" (metrics: {', '.join(requirement.expected_metrics)})"
    return _gap(requirement, f"No matching data type found; {hint}", resolution)


def converge(
    plan_config: Any,
    capabilities: list[DataCapability],
    *,
    tenant_id: str,
    plan_id: str,
    patterns: Iterable[CuratedPattern] = DEFAULT_CURATED_PATTERNS,
    min_confidence: float = MIN_RULE_CONFIDENCE,
) -> ConvergenceReport:
    """Produce derivation rules and the gap/match report for one plan.

    Args:
        plan_config: Plan JSON (components of the first variant are used)
        capabilities: Tenant capability inventory
        tenant_id: Tenant the inventory belongs to
        plan_id: Plan identifier recorded on the report
        patterns: Curated binding patterns, tried before token overlap
        min_confidence: Matches below this confidence become gaps

    Returns:
        ConvergenceReport
    """
    report = ConvergenceReport(tenant_id=tenant_id, plan_id=plan_id)
    requirements = extract_requirements(plan_config)
    if not requirements:
        logger.warning("Plan %s has no enabled components", plan_id)
        return report

    if not capabilities:
        for requirement in requirements:
            report.gaps.append(_gap(
                requirement,
                "No committed data found for this tenant",
                "Import data for this plan's components",
            ))
        summary_logger.info("Plan %s not converged: tenant %s has no data", plan_id, tenant_id)
        return report

    matches = match_requirements(requirements, capabilities, patterns)
    outcome = generate_derivations(matches, capabilities, min_confidence=min_confidence)
    report.derivations = outcome.rules

    matched = {}
    for match in matches:
        matched[match.requirement.index] = match
        reason = match.reason
        note = outcome.notes.get(match.requirement.index)
        if note and match.confidence >= min_confidence:
            reason = f"{reason}; {note}"
        report.match_report.append(MatchReportEntry(
            component=match.requirement.name,
            component_index=match.requirement.index,
            data_type=match.data_type,
            confidence=round(match.confidence, 4),
            reason=reason,
        ))

    for rule in outcome.rules:
        confidence = next(
            (m.confidence for m in matches if m.data_type == rule.source_pattern
             and rule.metric in m.requirement.expected_metrics),
            0.0,
        )
        report.signals.append(ConvergenceSignal(
            data_type=rule.source_pattern,
            field_name=rule.source_field or "row_count",
            semantic_type="amount" if rule.operation == "sum" else "count",
            confidence=round(confidence, 4),
        ))

    for requirement in requirements:
        if not requirement.is_calculable:
            report.gaps.append(_gap(
                requirement,
                "no calculation method found",
                "Add a calculation intent or calculation method to this component",
            ))
            continue

        match = matched.get(requirement.index)
        if match is None:
            report.gaps.append(_unmatched_gap(requirement))
            continue

        if match.confidence < min_confidence:
            report.gaps.append(_gap(
                requirement,
                f"Best match '{match.data_type}' has confidence {match.confidence:.2f}, "
                f"below {min_confidence:.2f} ({match.reason})",
                "Confirm the binding manually or rename the component or data type",
            ))
            continue

        if not requirement.expected_metrics:
            report.gaps.append(_gap(
                requirement,
                f"Matched data type '{match.data_type}' but the component declares no metrics",
                "Reference a metric from the component's calculation intent",
            ))
            continue

        resolved = {r.metric for r in outcome.rules_for(requirement)}
        unresolved = [m for m in requirement.expected_metrics if m not in resolved]
        if unresolved:
            note = outcome.notes.get(requirement.index)
            reason = f"Matched data type but {len(unresolved)} metric(s) could not be derived"
            if note:
                reason += f" ({note})"
            report.gaps.append(_gap(
                requirement,
                reason,
                f"Import data containing fields that map to: {', '.join(unresolved)}",
                metrics=unresolved,
            ))

    summary_logger.info(
        "Plan %s: %d derivation(s), %d gap(s) from %d match(es)",
        plan_id, len(report.derivations), len(report.gaps), len(matches),
    )
    return report


def converge_rows(
    plan_config: Any,
    rows: Iterable[RawRow],
    *,
    tenant_id: str,
    plan_id: str,
    patterns: Iterable[CuratedPattern] = DEFAULT_CURATED_PATTERNS,
    min_confidence: float = MIN_RULE_CONFIDENCE,
    row_limit: int = INVENTORY_ROW_LIMIT,
    samples_per_type: int = SAMPLES_PER_TYPE,
) -> ConvergenceReport:
    """Inventory ``rows`` (most recent first) and converge the plan against them."""
    capabilities = inventory_capabilities(rows, row_limit=row_limit, samples_per_type=samples_per_type)
    return converge(
        plan_config,
        capabilities,
        tenant_id=tenant_id,
        plan_id=plan_id,
        patterns=patterns,
        min_confidence=min_confidence,
    )


def format_convergence_summary(report: ConvergenceReport) -> str:
    """Human-readable convergence report for the CLI."""
    status = "converged" if report.converged else "not converged"
    lines = [
        f"Plan {report.plan_id} ({report.tenant_id}): {status}",
        f"Derivations: {len(report.derivations)}  Gaps: {len(report.gaps)}",
        "",
    ]
    if report.match_report:
        lines.append("Matches:")
        for entry in report.match_report:
            lines.append(
                f"  [{entry.component_index}] {entry.component} -> {entry.data_type} "
                f"({entry.confidence:.2f}) {entry.reason}"
            )
        lines.append("")
    if report.derivations:
        lines.append("Rules:")
        for rule in report.derivations:
            target = f"sum({rule.source_field})" if rule.operation == "sum" else "count(*)"
            where = " and ".join(f"{f.field} {f.operator} {f.value}" for f in rule.filters)
            lines.append(
                f"  {rule.metric} = {target} over '{rule.source_pattern}'" + (f" where {where}" if where else "")
            )
        lines.append("")
    if report.gaps:
        lines.append("Gaps:")
        for gap in report.gaps:
            lines.append(f"  [{gap.component_index}] {gap.component}: {gap.reason}")
            lines.append(f"      -> {gap.resolution}")
    return "\n".join(lines).rstrip()
