"""Shared test fixtures for the payline test suite.

Provides row builders, two sample plans and a throwaway DuckDB store:

* ``sales_rows``   -- one data type (``sales_q4``) with a single amount field
* ``policy_rows``  -- a shared-base data type split by ``tier`` and gated by ``qualified``
* ``sales_plan``   -- one scalar_multiply component ("Sales Bonus", 5%)
* ``tier_plan``    -- two sibling components counting policies per tier
* ``store``        -- empty ``PaylineStore`` under ``tmp_path``
* ``settings``     -- ``Settings`` pointing at that store with two workers
"""

from __future__ import annotations

from pathlib import Path

import pytest

from payline.config import Settings
from payline.contracts import RawRow
from payline.storage.store import PaylineStore

TENANT = "acme"
PERIOD = "2025-01"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_row(
    data_type: str,
    entity_id: str | None = None,
    period: str | None = PERIOD,
    tenant_id: str = TENANT,
    **row_data,
) -> RawRow:
    return RawRow(
        tenant_id=tenant_id,
        data_type=data_type,
        entity_id=entity_id,
        period=period,
        row_data=row_data,
    )


def metric_input(name: str) -> dict:
    return {"source": "metric", "sourceSpec": {"field": f"metric:{name}"}}


def plan_with(*components: dict) -> dict:
    return {"name": "Test Plan", "variants": [{"name": "default", "components": list(components)}]}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sales_rows() -> list[RawRow]:
    return [
        make_row("sales_q4", "E1", amount=400, region="north"),
        make_row("sales_q4", "E1", amount=600, region="north"),
        make_row("sales_q4", "E2", amount=300, region="south"),
        make_row("sales_q4", "E2", amount=700, region="south"),
        make_row("sales_q4", "E2", amount=500, region="south"),
    ]


@pytest.fixture
def policy_rows() -> list[RawRow]:
    rows = []
    for tier, qualified, count in (
        ("premium", "yes", 3),
        ("premium", "no", 1),
        ("standard", "yes", 2),
        ("standard", "no", 2),
    ):
        for i in range(count):
            rows.append(make_row(
                "policy_issuance", "E1", premium_value=1500 + i * 10, tier=tier, qualified=qualified,
            ))
    return rows


@pytest.fixture
def sales_plan() -> dict:
    return plan_with({
        "name": "Sales Bonus",
        "enabled": True,
        "calculationIntent": {
            "operation": "scalar_multiply",
            "input": metric_input("sales_total"),
            "rate": 0.05,
        },
    })


@pytest.fixture
def tier_plan() -> dict:
    def tier_component(name: str, metric: str, rate: float) -> dict:
        return {
            "name": name,
            "calculationIntent": {
                "operation": "scalar_multiply",
                "input": metric_input(metric),
                "rate": rate,
            },
        }

    return plan_with(
        tier_component("Premium Tier Bonus", "premium_count", 50),
        tier_component("Standard Tier Bonus", "standard_count", 20),
    )


@pytest.fixture
def store(tmp_path: Path) -> PaylineStore:
    return PaylineStore(tmp_path / "data" / "payline.duckdb")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "data" / "payline.duckdb",
        max_workers=2,
        log_dir=tmp_path / "logs",
    )
