"""Metric resolution: apply derivation rules to one entity's rows.

``resolve_metric`` is a pure function of (rule, rows). ``MetricContext``
wraps a plan's rule set and one entity/period's rows, resolving each metric
at most once no matter how many components read it.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from payline.contracts import DerivationFilter, MetricDerivationRule, RawRow
from payline.utils.numbers import safe_number

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower()


def filter_passes(row_data: dict[str, Any], flt: DerivationFilter) -> bool:
    """Case-insensitive string comparison of one row field against a filter."""
    actual = _normalize(row_data.get(flt.field))
    expected = _normalize(flt.value)
    if flt.operator == "eq":
        return actual == expected
    if flt.operator == "neq":
        return actual != expected
    if flt.operator == "contains":
        return expected in actual
    return False


def source_matches(data_type: str, source_pattern: str) -> bool:
    pattern = (source_pattern or "").strip().lower()
    return bool(pattern) and pattern in (data_type or "").lower()


def select_rows(rule: MetricDerivationRule, rows: Iterable[RawRow]) -> list[RawRow]:
    """Rows whose data type contains the rule's pattern and that pass every filter."""
    return [
        row for row in rows
        if source_matches(row.data_type, rule.source_pattern)
        and all(filter_passes(row.row_data, f) for f in rule.filters)
    ]


def resolve_metric(rule: MetricDerivationRule, rows: Sequence[RawRow]) -> float:
    """Execute one derivation rule.

    ``count`` returns the number of selected rows. ``sum`` adds the rule's
    source field over the selected rows, reading anything non-numeric or
    missing as 0. A pattern that matches no data type simply yields 0.
    """
    selected = select_rows(rule, rows)
    if not selected:
        if not any(source_matches(r.data_type, rule.source_pattern) for r in rows):
            logger.debug("Metric %s: no rows with data type like '%s'", rule.metric, rule.source_pattern)
        return 0.0

    if rule.operation == "count":
        return float(len(selected))
    if not rule.source_field:
        logger.warning("Sum rule for %s has no source field; resolving to 0", rule.metric)
        return 0.0
    return float(sum(safe_number(row.row_data.get(rule.source_field)) for row in selected))


class MetricContext:
    """Resolved metric values for one entity and period.

    Values are computed lazily on first access and cached. A metric with no
    derivation rule resolves to 0 and is remembered as unresolved.
    """

    def __init__(self, rules: Iterable[MetricDerivationRule], rows: Sequence[RawRow]):
        self.rows = list(rows)
        self._rules: dict[str, MetricDerivationRule] = {}
        for rule in rules:
            if rule.metric in self._rules:
                logger.warning("Duplicate derivation for metric %s; keeping the first", rule.metric)
                continue
            self._rules[rule.metric] = rule
        self._values: dict[str, float] = {}
        self.unresolved: list[str] = []

    def has_rule(self, metric: str) -> bool:
        return metric in self._rules

    def resolve(self, metric: str) -> tuple[float, bool]:
        """Return (value, resolved). Unknown metrics give (0.0, False)."""
        if metric in self._values:
            return self._values[metric], metric in self._rules
        rule = self._rules.get(metric)
        if rule is None:
            if metric not in self.unresolved:
                self.unresolved.append(metric)
                logger.debug("No derivation rule for metric %s", metric)
            value = 0.0
        else:
            value = resolve_metric(rule, self.rows)
        self._values[metric] = value
        return value, rule is not None

    def value(self, metric: str) -> float:
        return self.resolve(metric)[0]

    def snapshot(self) -> dict[str, float]:
        """Every metric resolved so far (including unresolved zeros)."""
        return dict(self._values)
