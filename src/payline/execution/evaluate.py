"""Intent evaluation.

Walks a parsed intent tree depth-first, resolving literals directly and
metric references through the entity's MetricContext, and records a trace
node per operation: its resolved operand values, the branch or tier taken
and its output. The trace is part of the result, not logging; dispute and
approval workflows read it.

Evaluation never raises for data problems: unresolved metrics and missing
operands read as 0, a zero denominator yields 0, and unknown or malformed
operations yield 0 with a ``no_operation`` trace entry.
"""

from __future__ import annotations

import logging
from typing import Sequence

from payline.contracts import EvaluationResult, ModifierApplication, TraceStep
from payline.execution.resolve import MetricContext
from payline.planning.intent import (
    Boundary,
    BoundedLookup1D,
    BoundedLookup2D,
    ComponentIntent,
    ConditionalGate,
    IntentNode,
    Literal,
    MetricRef,
    Modifier,
    NoOperation,
    Operand,
    Ratio,
    ScalarMultiply,
)
from payline.planning.requirements import PlanRequirement

logger = logging.getLogger(__name__)


def find_boundary_index(boundaries: Sequence[Boundary], value: float) -> int:
    """Index of the first bracket containing ``value``, or -1."""
    for i, boundary in enumerate(boundaries):
        if boundary.contains(value):
            return i
    return -1


def _add_note(step: TraceStep, note: str) -> None:
    step.note = f"{step.note}; {note}" if step.note else note


class IntentEvaluator:
    """Evaluates intent trees against one entity's metric context."""

    def __init__(self, metrics: MetricContext):
        self.metrics = metrics

    # ------------------------------------------------------------------
    # Operands
    # ------------------------------------------------------------------

    def operand(self, operand: Operand, label: str, step: TraceStep) -> float:
        if operand is None:
            _add_note(step, f"missing operand '{label}' read as 0")
            step.inputs[label] = 0.0
            return 0.0
        if isinstance(operand, Literal):
            step.inputs[label] = operand.value
            return operand.value
        if isinstance(operand, MetricRef):
            value, resolved = self.metrics.resolve(operand.name)
            step.inputs[label] = value
            if not resolved:
                _add_note(step, f"unresolved metric '{operand.name}' read as 0")
            return value

        value, child = self.node(operand)
        step.children.append(child)
        step.inputs[label] = value
        return value

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def node(self, node: IntentNode) -> tuple[float, TraceStep]:
        if isinstance(node, ScalarMultiply):
            return self._scalar_multiply(node)
        if isinstance(node, BoundedLookup1D):
            return self._lookup_1d(node)
        if isinstance(node, BoundedLookup2D):
            return self._lookup_2d(node)
        if isinstance(node, ConditionalGate):
            return self._conditional_gate(node)
        if isinstance(node, Ratio):
            return self._ratio(node)
        if isinstance(node, (Literal, MetricRef)):
            step = TraceStep(operation="constant" if isinstance(node, Literal) else "aggregate")
            step.output = self.operand(node, "value", step)
            return step.output, step

        kind = node.kind if isinstance(node, NoOperation) else type(node).__name__
        reason = node.reason if isinstance(node, NoOperation) else "unrecognized node"
        step = TraceStep(operation="no_operation", note=f"no operation ({kind}): {reason}".rstrip(": "))
        return 0.0, step

    def _scalar_multiply(self, node: ScalarMultiply) -> tuple[float, TraceStep]:
        step = TraceStep(operation="scalar_multiply")
        value = self.operand(node.input, "input", step)
        rate = self.operand(node.rate, "rate", step)
        step.output = value * rate
        return step.output, step

    def _lookup_1d(self, node: BoundedLookup1D) -> tuple[float, TraceStep]:
        step = TraceStep(operation="bounded_lookup_1d")
        value = self.operand(node.input, "input", step)
        idx = find_boundary_index(node.boundaries, value)
        if idx < 0:
            step.branch = "no_match"
            step.output = 0.0
            return 0.0, step

        rate = node.outputs[idx] if idx < len(node.outputs) else 0.0
        if idx >= len(node.outputs):
            _add_note(step, f"tier {idx} has no output; read as 0")
        step.branch = f"tier {idx} {node.boundaries[idx].label()}"
        step.inputs["tier_output"] = rate
        if node.is_marginal:
            step.output = rate * value
            _add_note(step, "marginal: tier output x input")
        else:
            step.output = rate
        return step.output, step

    def _lookup_2d(self, node: BoundedLookup2D) -> tuple[float, TraceStep]:
        step = TraceStep(operation="bounded_lookup_2d")
        row_value = self.operand(node.row_input, "row_input", step)
        col_value = self.operand(node.col_input, "col_input", step)
        row_idx = find_boundary_index(node.row_boundaries, row_value)
        col_idx = find_boundary_index(node.col_boundaries, col_value)

        row_label = f"row {row_idx} {node.row_boundaries[row_idx].label()}" if row_idx >= 0 else "row no_match"
        col_label = f"col {col_idx} {node.col_boundaries[col_idx].label()}" if col_idx >= 0 else "col no_match"
        step.branch = f"{row_label} / {col_label}"
        if row_idx < 0 or col_idx < 0:
            step.output = 0.0
            return 0.0, step

        row = node.matrix[row_idx] if row_idx < len(node.matrix) else ()
        if col_idx >= len(row):
            _add_note(step, f"matrix has no cell ({row_idx}, {col_idx}); read as 0")
            step.output = 0.0
        else:
            step.output = row[col_idx]
        return step.output, step

    def _conditional_gate(self, node: ConditionalGate) -> tuple[float, TraceStep]:
        step = TraceStep(operation="conditional_gate")
        left = self.operand(node.condition.left, "left", step)
        right = self.operand(node.condition.right, "right", step)
        operator = node.condition.operator

        if operator == ">=":
            passed = left >= right
        elif operator == ">":
            passed = left > right
        elif operator == "<=":
            passed = left <= right
        elif operator == "<":
            passed = left < right
        elif operator == "==":
            passed = left == right
        elif operator == "!=":
            passed = left != right
        else:
            passed = False
            _add_note(step, f"unknown comparison '{operator}' treated as false")

        step.branch = "pass" if passed else "fail"
        if passed:
            step.output = self.operand(node.on_true, "on_true", step)
        else:
            step.output = self.operand(node.on_false, "on_false", step)
        return step.output, step

    def _ratio(self, node: Ratio) -> tuple[float, TraceStep]:
        step = TraceStep(operation="ratio")
        numerator = self.operand(node.numerator, "numerator", step)
        denominator = self.operand(node.denominator, "denominator", step)
        if denominator == 0:
            step.branch = "zero_denominator"
            step.output = 0.0
        else:
            step.output = numerator / denominator
        return step.output, step

    # ------------------------------------------------------------------
    # Modifiers
    # ------------------------------------------------------------------

    def apply_modifiers(self, value: float, modifiers: Sequence[Modifier]) -> tuple[float, list[ModifierApplication]]:
        applied = []
        result = value
        for modifier in modifiers:
            before = result
            if modifier.kind == "cap" and modifier.value is not None:
                result = min(result, modifier.value)
            elif modifier.kind == "floor" and modifier.value is not None:
                result = max(result, modifier.value)
            elif modifier.kind == "proration":
                scratch = TraceStep(operation="proration")
                numerator = self.operand(modifier.numerator, "numerator", scratch)
                denominator = self.operand(modifier.denominator, "denominator", scratch)
                result = result * (numerator / denominator) if denominator != 0 else 0.0
            else:
                logger.debug("Modifier '%s' not applied", modifier.kind)
            applied.append(ModifierApplication(modifier=modifier.kind, before=before, after=result))
        return result, applied

    def evaluate(self, intent: ComponentIntent) -> tuple[float, TraceStep, list[ModifierApplication]]:
        value, trace = self.node(intent.root)
        value, applied = self.apply_modifiers(value, intent.modifiers)
        return value, trace, applied


def evaluate_component(
    requirement: PlanRequirement,
    metrics: MetricContext,
    *,
    tenant_id: str,
    plan_id: str,
    entity_id: str | None = None,
    period: str | None = None,
) -> EvaluationResult:
    """Compute one component's payout for one entity and period.

    Args:
        requirement: Extracted component requirement (carries the parsed intent)
        metrics: The entity's shared metric context
        tenant_id, plan_id, entity_id, period: Keys recorded on the result

    Returns:
        EvaluationResult with payout, trace and the metric values it used
    """
    evaluator = IntentEvaluator(metrics)

    if requirement.intent is None:
        payout = 0.0
        trace = TraceStep(operation="no_operation", note="no operation: component has no calculation intent")
        applied: list[ModifierApplication] = []
    else:
        payout, trace, applied = evaluator.evaluate(requirement.intent)

    resolved = metrics.snapshot()
    used = {name: resolved[name] for name in requirement.expected_metrics if name in resolved}
    unresolved = [name for name in used if not metrics.has_rule(name)]

    return EvaluationResult(
        tenant_id=tenant_id,
        plan_id=plan_id,
        entity_id=entity_id,
        period=period,
        component=requirement.name,
        component_index=requirement.index,
        payout=payout,
        trace=trace,
        metrics_used=used,
        unresolved_metrics=unresolved,
        modifiers=applied,
    )
