"""Tests for the DuckDB-backed store."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import PERIOD, TENANT, make_row

from payline.contracts import EvaluationResult, MetricDerivationRule, TraceStep
from payline.errors import PlanNotFoundError
from payline.storage.store import PaylineStore


def test_store_creates_parent_directories(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "store.duckdb"
    PaylineStore(db_path)
    assert db_path.exists()


class TestRows:
    def test_recent_rows_are_newest_first(self, store, sales_rows, policy_rows):
        store.add_rows(sales_rows)
        store.add_rows(policy_rows)
        recent = store.recent_rows(TENANT, limit=3)
        assert [r.data_type for r in recent] == ["policy_issuance"] * 3
        assert recent[0].row_data == policy_rows[-1].row_data

    def test_rows_are_scoped_to_tenant(self, store, sales_rows):
        store.add_rows(sales_rows)
        store.add_rows([make_row("sales_q4", "E9", tenant_id="other", amount=1)])
        assert len(store.recent_rows(TENANT)) == len(sales_rows)
        assert len(store.recent_rows("other")) == 1

    def test_rows_for_entity_and_period(self, store, sales_rows):
        store.add_rows(sales_rows)
        store.add_rows([make_row("sales_q4", "E1", period="2025-02", amount=999)])
        rows = store.rows_for(TENANT, "E1", PERIOD)
        assert [r.row_data["amount"] for r in rows] == [400, 600]

    def test_entity_periods(self, store, sales_rows):
        store.add_rows(sales_rows)
        store.add_rows([
            make_row("sales_q4", "E1", period="2025-02", amount=1),
            make_row("sales_q4", None, amount=1),
        ])
        assert store.entity_periods(TENANT) == [("E1", "2025-01"), ("E1", "2025-02"), ("E2", "2025-01")]
        assert store.entity_periods(TENANT, "2025-02") == [("E1", "2025-02")]


class TestPlansAndRules:
    def test_plan_round_trip_and_replace(self, store, sales_plan):
        store.save_plan(TENANT, "p1", sales_plan)
        sales_plan["name"] = "Renamed"
        store.save_plan(TENANT, "p1", sales_plan)
        assert store.load_plan(TENANT, "p1")["name"] == "Renamed"

    def test_missing_plan(self, store):
        with pytest.raises(PlanNotFoundError) as exc:
            store.load_plan(TENANT, "nope")
        assert exc.value.context == {"tenant_id": TENANT, "plan_id": "nope"}

    def test_rules_absent_versus_empty(self, store):
        assert store.load_rules(TENANT, "p1") is None
        store.save_rules(TENANT, "p1", [])
        assert store.load_rules(TENANT, "p1") == []

    def test_rules_replace_previous_set(self, store):
        first = MetricDerivationRule(metric="a", operation="count", source_pattern="x")
        second = MetricDerivationRule(metric="b", operation="sum", source_pattern="y", source_field="amount")
        store.save_rules(TENANT, "p1", [first])
        store.save_rules(TENANT, "p1", [second])
        assert store.load_rules(TENANT, "p1") == [second]


class TestResults:
    def test_results_round_trip(self, store):
        result = EvaluationResult(
            tenant_id=TENANT,
            plan_id="p1",
            entity_id="E1",
            period=PERIOD,
            component="Sales Bonus",
            component_index=0,
            payout=50.0,
            trace=TraceStep(operation="scalar_multiply", inputs={"input": 1000, "rate": 0.05}, output=50.0),
            metrics_used={"sales_total": 1000},
        )
        assert store.save_results([result]) == 1
        assert store.save_results([]) == 0
        (loaded,) = store.load_results(TENANT, "p1")
        assert loaded == result
        assert store.load_results(TENANT, "p1", period="2025-02") == []

    def test_recalculation_replaces_the_period(self, store):
        def result(entity_id: str, period: str, payout: float) -> EvaluationResult:
            return EvaluationResult(
                tenant_id=TENANT,
                plan_id="p1",
                entity_id=entity_id,
                period=period,
                component="Sales Bonus",
                component_index=0,
                payout=payout,
                trace=TraceStep(operation="scalar_multiply", output=payout),
            )

        store.save_results([result("E1", PERIOD, 50.0), result("E1", "2025-02", 10.0)])
        store.save_results([result("E1", PERIOD, 60.0)])

        assert [(r.period, r.payout) for r in store.load_results(TENANT, "p1", period=PERIOD)] == [(PERIOD, 60.0)]
        assert len(store.load_results(TENANT, "p1")) == 2
