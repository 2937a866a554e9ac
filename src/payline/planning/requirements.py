"""Plan requirement extraction.

Walks a plan's components and records, per enabled component, which metric
names it needs, which operation will consume them, and any fixed rate. Only
the first variant of a plan is read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from payline.planning.intent import (
    OPERATION_KINDS,
    ComponentIntent,
    Literal,
    legacy_intent_json,
    metric_references,
    parse_intent,
    strip_metric_prefix,
)

logger = logging.getLogger(__name__)

UNKNOWN_OPERATION = "unknown"

# Legacy component types written before calculation intents existed.
LEGACY_METHOD_KINDS = {
    "tier_lookup": "bounded_lookup_1d",
    "matrix_lookup": "bounded_lookup_2d",
    "percentage": "scalar_multiply",
    "conditional_percentage": "conditional_gate",
}


@dataclass
class PlanRequirement:
    """What one enabled plan component needs from the data."""

    name: str
    index: int
    expected_metrics: list[str] = field(default_factory=list)
    calculation_op: str = UNKNOWN_OPERATION
    calculation_rate: float | None = None
    intent: ComponentIntent | None = None

    @property
    def is_calculable(self) -> bool:
        return self.calculation_op != UNKNOWN_OPERATION


def plan_components(plan_config: Any) -> list[dict[str, Any]]:
    """Return the component list of the plan's first variant.

    Accepts ``{"variants": [...]}``, ``{"components": {"variants": [...]}}``
    or ``{"components": [...]}``.
    """
    if not isinstance(plan_config, dict):
        return []
    container = plan_config
    components = plan_config.get("components")
    if isinstance(components, dict):
        container = components
    elif isinstance(components, list):
        return [c for c in components if isinstance(c, dict)]

    variants = container.get("variants") or []
    if not isinstance(variants, list) or not variants:
        return []
    if len(variants) > 1:
        logger.warning("Plan has %d variants; only the first is used", len(variants))
    first = variants[0] if isinstance(variants[0], dict) else {}
    return [c for c in first.get("components") or [] if isinstance(c, dict)]


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _add(metrics: list[str], value: Any) -> None:
    if value is None:
        return
    name = strip_metric_prefix(value) if isinstance(value, str) else ""
    if name and name not in metrics:
        metrics.append(name)


def _operation_kind(intent_raw: dict[str, Any], method: dict[str, Any], component: dict[str, Any]) -> str:
    declared = intent_raw.get("operation")
    if not declared and isinstance(intent_raw.get("intent"), dict):
        declared = intent_raw["intent"].get("operation")
    if declared:
        return declared if declared in OPERATION_KINDS else UNKNOWN_OPERATION

    legacy = method.get("type") or component.get("componentType")
    if legacy:
        legacy = LEGACY_METHOD_KINDS.get(legacy, legacy)
        return legacy if legacy in OPERATION_KINDS else UNKNOWN_OPERATION
    return UNKNOWN_OPERATION


def extract_requirement(component: dict[str, Any], index: int) -> PlanRequirement:
    """Derive the requirement of one component.

    Metric names are collected from every source below, in priority order,
    without duplicates:

    1. ``tierConfig.metric``
    2. ``calculationIntent.input.sourceSpec.field`` / ``.metric``
    3. ``calculationIntent.input.sourceSpec.numerator`` / ``.denominator``
    4. ``calculationMethod.metric``
    5. legacy matrix/percentage/conditional config metrics
    6. any other metric referenced inside the intent tree or its modifiers
    """
    name = str(component.get("name") or component.get("id") or f"Component {index}")
    intent_raw = _dict(component.get("calculationIntent"))
    method = _dict(component.get("calculationMethod"))
    tier_config = _dict(component.get("tierConfig"))

    metrics: list[str] = []
    _add(metrics, tier_config.get("metric"))

    input_spec = _dict(_dict(intent_raw.get("input")).get("sourceSpec"))
    _add(metrics, input_spec.get("field"))
    _add(metrics, input_spec.get("metric"))
    _add(metrics, input_spec.get("numerator"))
    _add(metrics, input_spec.get("denominator"))

    _add(metrics, method.get("metric"))

    matrix_config = _dict(component.get("matrixConfig"))
    _add(metrics, matrix_config.get("rowMetric"))
    _add(metrics, matrix_config.get("columnMetric"))
    _add(metrics, _dict(component.get("percentageConfig")).get("appliedTo"))
    _add(metrics, _dict(component.get("conditionalConfig")).get("appliedTo"))

    calculation_op = _operation_kind(intent_raw, method, component)
    intent = None
    rate = None
    if not intent_raw and calculation_op != UNKNOWN_OPERATION:
        intent_raw = legacy_intent_json(component) or {}
        if not intent_raw:
            logger.warning("Component '%s' has an incomplete legacy calculation config", name)
            calculation_op = UNKNOWN_OPERATION
    if intent_raw:
        intent = parse_intent(intent_raw, component.get("modifiers"))
        for ref in metric_references(intent.root):
            _add(metrics, ref)
        for modifier in intent.modifiers:
            for operand in (modifier.numerator, modifier.denominator):
                for ref in metric_references(operand):
                    _add(metrics, ref)
        rate_operand = getattr(intent.root, "rate", None)
        if isinstance(rate_operand, Literal):
            rate = rate_operand.value

    return PlanRequirement(
        name=name,
        index=index,
        expected_metrics=metrics,
        calculation_op=calculation_op,
        calculation_rate=rate,
        intent=intent,
    )


def extract_requirements(plan_config: Any) -> list[PlanRequirement]:
    """Extract requirements for every enabled component of the first variant.

    The ``index`` of each requirement is the component's position in the
    variant, so disabled components leave holes in the numbering.
    """
    requirements = []
    for i, component in enumerate(plan_components(plan_config)):
        if component.get("enabled") is False:
            continue
        requirement = extract_requirement(component, i)
        if not requirement.is_calculable:
            logger.info("Component '%s' has no calculation method", requirement.name)
        requirements.append(requirement)
    return requirements
