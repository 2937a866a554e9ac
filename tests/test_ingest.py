"""Tests for file ingestion into the store."""

from __future__ import annotations

import json

import pytest

from payline.errors import PaylineError
from payline.io.ingest import ingest_file, sanitize_data_type


class TestSanitizeDataType:
    def test_basic_names(self):
        assert sanitize_data_type("Sales Q4 (final).xlsx") == "sales_q4_final"
        assert sanitize_data_type("2025 claims.csv") == "t_2025_claims"
        assert sanitize_data_type("---.csv") == "data"


class TestIngestFile:
    def test_csv_rows_with_entity_and_period(self, store, tmp_path):
        path = tmp_path / "Sales Q4.csv"
        path.write_text(
            "rep,month,amount,region\n"
            "E1,2025-01,400,north\n"
            "E1,2025-01,,north\n"
            "E2,2025-01,700,south\n"
        )
        result = ingest_file(store, path, "acme", entity_column="rep", period_column="month")

        assert result["data_type"] == "sales_q4"
        assert result["rows"] == 3
        rows = store.rows_for("acme", "E1", "2025-01")
        assert [r.row_data["amount"] for r in rows] == [400.0, None]
        assert rows[0].row_data["region"] == "north"

    def test_json_records_with_explicit_data_type(self, store, tmp_path):
        path = tmp_path / "claims.json"
        path.write_text(json.dumps([
            {"agent": 101, "status": "approved"},
            {"agent": 102, "status": "rejected"},
        ]))
        ingest_file(store, path, "acme", data_type="component_data:claims", entity_column="agent")
        assert store.entity_periods("acme") == [("101", None), ("102", None)]
        assert store.recent_rows("acme")[0].data_type == "component_data:claims"

    def test_unknown_column(self, store, tmp_path):
        path = tmp_path / "s.csv"
        path.write_text("amount\n1\n")
        with pytest.raises(PaylineError, match="Column 'rep' not found"):
            ingest_file(store, path, "acme", entity_column="rep")

    def test_unsupported_suffix(self, store, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        with pytest.raises(PaylineError, match="Unsupported file type"):
            ingest_file(store, path, "acme")
