"""Tests for field classification and the capability inventory."""

from __future__ import annotations

from conftest import make_row

from payline.io.profile import (
    classify_fields,
    format_inventory_summary,
    inventory_capabilities,
    is_aggregable_average,
)


class TestAggregableAverage:
    def test_small_averages_look_like_codes(self):
        assert not is_aggregable_average(12)
        assert not is_aggregable_average(100)

    def test_serial_date_band_is_excluded(self):
        assert not is_aggregable_average(45000)

    def test_amounts_are_aggregable(self):
        assert is_aggregable_average(500)
        assert is_aggregable_average(120000)


class TestClassifyFields:
    def test_numeric_categorical_and_boolean(self):
        samples = [
            {"amount": 400, "tier": "premium", "qualified": "yes", "_row": 1},
            {"amount": 600, "tier": "standard", "qualified": "no", "_row": 2},
        ]
        cap = classify_fields("policy_issuance", samples)

        assert [f.field for f in cap.numeric_fields] == ["amount"]
        assert cap.numeric_fields[0].avg == 500
        assert [f.field for f in cap.categorical_fields] == ["tier"]
        assert cap.categorical_fields[0].distinct_values == ["premium", "standard"]
        assert [(b.field, b.true_value, b.false_value) for b in cap.boolean_fields] == [
            ("qualified", "yes", "no")
        ]

    def test_underscore_fields_are_ignored(self):
        cap = classify_fields("x", [{"_sheet": "A", "amount": 500}, {"_sheet": "B", "amount": 700}])
        assert all(not f.field.startswith("_") for f in cap.numeric_fields + cap.categorical_fields)

    def test_identifier_like_numbers_are_not_amounts(self):
        cap = classify_fields("x", [{"store_id": 7}, {"store_id": 9}])
        assert cap.numeric_fields == []

    def test_booleans_are_not_numeric(self):
        cap = classify_fields("x", [{"flag": True}, {"flag": False}])
        assert cap.numeric_fields == []

    def test_single_value_text_is_not_categorical(self):
        cap = classify_fields("x", [{"region": "north"}, {"region": "north"}])
        assert cap.categorical_fields == []

    def test_numeric_majority_wins(self):
        cap = classify_fields("x", [{"amount": 500}, {"amount": 700}, {"amount": "n/a"}])
        assert [f.field for f in cap.numeric_fields] == ["amount"]
        assert cap.numeric_fields[0].non_null_count == 2

    def test_empty_sample(self):
        cap = classify_fields("x", [])
        assert cap.row_count == 0
        assert not cap.numeric_fields and not cap.categorical_fields


class TestInventory:
    def test_groups_by_data_type_in_first_seen_order(self, sales_rows, policy_rows):
        caps = inventory_capabilities(policy_rows + sales_rows)
        assert [c.data_type for c in caps] == ["policy_issuance", "sales_q4"]
        assert caps[0].row_count == len(policy_rows)

    def test_row_limit_truncates(self, sales_rows, policy_rows):
        caps = inventory_capabilities(sales_rows + policy_rows, row_limit=len(sales_rows))
        assert [c.data_type for c in caps] == ["sales_q4"]

    def test_samples_per_type_caps_classifier_input(self):
        rows = [make_row("sales", amount=200) for _ in range(5)] + [make_row("sales", amount=10_000)]
        caps = inventory_capabilities(rows, samples_per_type=5)
        assert caps[0].row_count == 6
        assert caps[0].numeric_fields[0].avg == 200

    def test_no_rows_yields_empty_catalog(self):
        assert inventory_capabilities([]) == []
        assert "No committed data" in format_inventory_summary([])

    def test_summary_lists_fields(self, policy_rows):
        text = format_inventory_summary(inventory_capabilities(policy_rows))
        assert "policy_issuance" in text
        assert "tier" in text and "qualified" in text
