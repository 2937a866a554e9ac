"""Tests for intent evaluation and component payouts."""

from __future__ import annotations

import pytest

from conftest import make_row

from payline.contracts import MetricDerivationRule
from payline.execution.evaluate import IntentEvaluator, evaluate_component, find_boundary_index
from payline.execution.resolve import MetricContext
from payline.planning.intent import parse_boundaries, parse_intent
from payline.planning.requirements import extract_requirement


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _context(**values: float) -> MetricContext:
    """Metric context whose metrics each sum one field of a single row."""
    rules = [
        MetricDerivationRule(metric=name, operation="sum", source_pattern="facts", source_field=name)
        for name in values
    ]
    return MetricContext(rules, [make_row("facts", "E1", **values)])


def _evaluate(intent: dict, **values: float):
    evaluator = IntentEvaluator(_context(**values))
    return evaluator.evaluate(parse_intent(intent))


LOOKUP = {
    "operation": "bounded_lookup_1d",
    "input": "metric:revenue",
    "boundaries": [0, 100000, 200000],
    "outputs": [0.01, 0.02, 0.03],
}


class TestLookup1D:
    def test_marginal_lookup_multiplies_by_input(self):
        payout, trace, _ = _evaluate({**LOOKUP, "isMarginal": True}, revenue=120000)
        assert payout == pytest.approx(2400)
        assert trace.branch == "tier 1 [100000, 200000)"
        assert trace.inputs["input"] == 120000

    def test_unset_marginal_matches_false(self):
        unset, _, _ = _evaluate(LOOKUP, revenue=120000)
        explicit, _, _ = _evaluate({**LOOKUP, "isMarginal": False}, revenue=120000)
        assert unset == explicit == 0.02

    def test_value_outside_every_tier(self):
        payout, trace, _ = _evaluate(LOOKUP, revenue=-5)
        assert payout == 0
        assert trace.branch == "no_match"

    def test_last_tier_is_open_ended(self):
        assert find_boundary_index(parse_boundaries([0, 10]), 1e9) == 1


class TestOtherOperations:
    def test_scalar_multiply(self):
        payout, trace, _ = _evaluate(
            {"operation": "scalar_multiply", "input": "metric:sales", "rate": 0.05}, sales=1000,
        )
        assert payout == 50
        assert trace.inputs == {"input": 1000, "rate": 0.05}

    def test_lookup_2d(self):
        intent = {
            "operation": "bounded_lookup_2d",
            "rowInput": "metric:attainment",
            "colInput": "metric:store_sales",
            "rowBoundaries": [0, 0.8, 1.0],
            "colBoundaries": [0, 50000],
            "matrix": [[0, 0], [100, 200], [300, 400]],
        }
        payout, trace, _ = _evaluate(intent, attainment=0.9, store_sales=60000)
        assert payout == 200
        assert trace.branch.startswith("row 1") and "col 1" in trace.branch

    def test_conditional_gate_evaluates_only_the_taken_branch(self):
        intent = {
            "operation": "conditional_gate",
            "condition": {"left": "metric:attainment", "operator": ">=", "right": 1},
            "onTrue": {"operation": "scalar_multiply", "input": "metric:sales", "rate": 0.1},
            "onFalse": {"operation": "scalar_multiply", "input": "metric:ghost", "rate": 1},
        }
        context = _context(attainment=1.2, sales=500)
        payout, trace, _ = IntentEvaluator(context).evaluate(parse_intent(intent))
        assert payout == 50
        assert trace.branch == "pass"
        assert [c.operation for c in trace.children] == ["scalar_multiply"]
        assert context.unresolved == []

    def test_failed_gate(self):
        intent = {
            "operation": "conditional_gate",
            "condition": {"left": "metric:attainment", "operator": ">=", "right": 1},
            "onTrue": 500,
            "onFalse": 0,
        }
        payout, trace, _ = _evaluate(intent, attainment=0.7)
        assert payout == 0
        assert trace.branch == "fail"

    def test_ratio_by_zero_is_zero(self):
        payout, trace, _ = _evaluate(
            {"operation": "ratio", "numerator": "metric:actual", "denominator": "metric:target"},
            actual=50, target=0,
        )
        assert payout == 0
        assert trace.branch == "zero_denominator"

    def test_unknown_operation_is_a_traced_no_op(self):
        payout, trace, _ = _evaluate({"operation": "weighted_blend"})
        assert payout == 0
        assert trace.operation == "no_operation"
        assert "weighted_blend" in trace.note

    def test_unresolved_metric_reads_as_zero_with_note(self):
        payout, trace, _ = _evaluate({"operation": "scalar_multiply", "input": "metric:ghost", "rate": 2})
        assert payout == 0
        assert "unresolved metric 'ghost'" in trace.note


class TestModifiers:
    def test_cap_then_proration(self):
        intent = {
            "operation": "scalar_multiply",
            "input": "metric:sales",
            "rate": 0.1,
            "modifiers": [
                {"modifier": "cap", "maxValue": 800},
                {"modifier": "proration", "numerator": "metric:days", "denominator": 30},
            ],
        }
        payout, _, applied = _evaluate(intent, sales=10000, days=15)
        assert payout == pytest.approx(400)
        assert [(m.modifier, m.before, m.after) for m in applied] == [
            ("cap", 1000, 800),
            ("proration", 800, 400),
        ]

    def test_floor(self):
        intent = {"operation": "scalar_multiply", "input": "metric:sales", "rate": 0.1,
                  "modifiers": [{"modifier": "floor", "minValue": 25}]}
        payout, _, _ = _evaluate(intent, sales=100)
        assert payout == 25


class TestEvaluateComponent:
    def test_result_carries_trace_and_metrics(self):
        requirement = extract_requirement({
            "name": "Sales Bonus",
            "calculationIntent": {"operation": "scalar_multiply", "input": "metric:sales", "rate": 0.05},
        }, 2)
        result = evaluate_component(
            requirement, _context(sales=2000), tenant_id="acme", plan_id="p1", entity_id="E1", period="2025-01",
        )
        assert result.payout == 100
        assert result.component_index == 2
        assert result.metrics_used == {"sales": 2000}
        assert result.unresolved_metrics == []
        assert result.to_json_dict()["trace"]["operation"] == "scalar_multiply"

    def test_unresolved_metrics_are_reported(self):
        requirement = extract_requirement({
            "name": "Ghost Bonus",
            "calculationIntent": {"operation": "scalar_multiply", "input": "metric:ghost", "rate": 3},
        }, 0)
        result = evaluate_component(requirement, _context(), tenant_id="acme", plan_id="p1")
        assert result.payout == 0
        assert result.unresolved_metrics == ["ghost"]

    def test_component_without_calculation_method(self):
        requirement = extract_requirement({"name": "Old", "componentType": "tier_lookup",
                                           "tierConfig": {"metric": "sales"}}, 0)
        result = evaluate_component(requirement, _context(sales=1), tenant_id="acme", plan_id="p1")
        assert not requirement.is_calculable
        assert result.payout == 0
        assert result.trace.operation == "no_operation"


class TestLegacyComponents:
    def _payout(self, component: dict, **values: float):
        requirement = extract_requirement({"name": "Legacy", **component}, 0)
        return evaluate_component(requirement, _context(**values), tenant_id="acme", plan_id="p1")

    def test_tier_lookup(self):
        tiers = {"metric": "sales_total", "tiers": [
            {"min": 0, "max": 500, "value": 10},
            {"min": 500, "max": None, "value": 99},
        ]}
        result = self._payout({"componentType": "tier_lookup", "tierConfig": tiers}, sales_total=1000)
        assert result.payout == 99
        assert result.trace.branch == "tier 1 [500, inf)"

    def test_tier_bounds_are_inclusive_and_first_match_wins(self):
        tiers = {"metric": "attainment", "tiers": [
            {"min": 0, "max": 100, "value": 0},
            {"min": 100, "max": None, "value": 150},
        ]}
        assert self._payout({"componentType": "tier_lookup", "tierConfig": tiers}, attainment=100).payout == 0

    def test_matrix_lookup(self):
        matrix = {
            "rowMetric": "attainment",
            "columnMetric": "store_sales",
            "rowBands": [{"min": 0, "max": 79.99}, {"min": 80, "max": None}],
            "columnBands": [{"min": 0, "max": 49999}, {"min": 50000, "max": None}],
            "values": [[0, 0], [100, 250]],
        }
        result = self._payout({"componentType": "matrix_lookup", "matrixConfig": matrix},
                              attainment=95, store_sales=60000)
        assert result.payout == 250

    @pytest.mark.parametrize("sales, expected", [(800, 0), (2000, 100), (10000, 300)])
    def test_percentage_threshold_and_cap(self, sales, expected):
        config = {"appliedTo": "sales", "rate": 0.05, "minThreshold": 1000, "maxPayout": 300}
        result = self._payout({"componentType": "percentage", "percentageConfig": config}, sales=sales)
        assert result.payout == pytest.approx(expected)

    @pytest.mark.parametrize("attainment, expected", [(0.5, 0), (0.9, 30), (1.1, 50)])
    def test_conditional_percentage_same_metric(self, attainment, expected):
        config = {"appliedTo": "sales", "conditions": [
            {"metric": "attainment", "min": 0.8, "max": 1.0, "rate": 0.03},
            {"metric": "attainment", "min": 1.0, "max": None, "rate": 0.05},
        ]}
        result = self._payout({"componentType": "conditional_percentage", "conditionalConfig": config},
                              sales=1000, attainment=attainment)
        assert result.payout == pytest.approx(expected)

    def test_conditional_percentage_mixed_metrics_first_match(self):
        config = {"appliedTo": "sales", "conditions": [
            {"metric": "store_attainment", "min": 1.0, "max": 1.5, "rate": 0.05},
            {"metric": "individual_attainment", "min": 0.9, "rate": 0.02},
        ]}
        component = {"componentType": "conditional_percentage", "conditionalConfig": config}
        above_max = self._payout(component, sales=1000, store_attainment=2.0, individual_attainment=1.0)
        in_range = self._payout(component, sales=1000, store_attainment=1.2, individual_attainment=1.0)
        assert above_max.payout == pytest.approx(20)
        assert in_range.payout == pytest.approx(50)


class TestValueNodes:
    def test_constant_on_true_is_a_flat_bonus(self):
        intent = {
            "operation": "conditional_gate",
            "condition": {"left": "metric:att", "operator": ">=", "right": 1},
            "onTrue": {"operation": "constant", "value": 500},
            "onFalse": {"operation": "constant", "value": 0},
        }
        payout, trace, _ = _evaluate(intent, att=2)
        assert payout == 500
        assert trace.children == []

    def test_constant_root(self):
        payout, trace, _ = _evaluate({"operation": "constant", "value": 75})
        assert payout == 75
        assert trace.operation == "constant"

    def test_aggregate_reads_the_metric(self):
        payout, trace, _ = _evaluate(
            {"operation": "aggregate", "source": {"source": "metric", "sourceSpec": {"field": "claims"}}},
            claims=12,
        )
        assert payout == 12
        assert (trace.operation, trace.inputs) == ("aggregate", {"value": 12})
