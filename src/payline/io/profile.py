"""Sampled field profiling of raw imported rows.

The classifier looks at a small sample of rows for one data type and decides
which fields can be aggregated (numeric), which can partition rows
(categorical) and which act as a yes/no gate (boolean-like). The inventory
runs it across every data type a tenant has imported.

Capabilities are always a sampled approximation: they are recomputed from
the most recent rows on every convergence run and never persisted.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from numbers import Real
from typing import Any, Iterable, Mapping

from payline.contracts import RawRow

logger = logging.getLogger(__name__)

INVENTORY_ROW_LIMIT = 500
SAMPLES_PER_TYPE = 30

# Averages inside this band look like spreadsheet serial dates (2017-2031).
SERIAL_DATE_MIN = 43000
SERIAL_DATE_MAX = 48000
# Averages at or below this look like identifiers, flags or small codes.
IDENTIFIER_MAX_AVG = 100

MAJORITY_SHARE = 0.5
CATEGORICAL_MIN_DISTINCT = 2
CATEGORICAL_MAX_DISTINCT = 20

AFFIRMATIVE_VALUES = frozenset({"yes", "sí", "si", "true", "qualified"})


@dataclass
class NumericField:
    field: str
    avg: float
    non_null_count: int


@dataclass
class CategoricalField:
    field: str
    distinct_values: list[str]
    count: int


@dataclass
class BooleanField:
    field: str
    true_value: str
    false_value: str


@dataclass
class DataCapability:
    """What aggregations one data type structurally supports."""

    data_type: str
    row_count: int = 0
    numeric_fields: list[NumericField] = field(default_factory=list)
    categorical_fields: list[CategoricalField] = field(default_factory=list)
    boolean_fields: list[BooleanField] = field(default_factory=list)

    def ranked_numeric_fields(self) -> list[NumericField]:
        """Numeric fields by descending sampled average (ties keep sample order)."""
        return sorted(self.numeric_fields, key=lambda f: f.avg, reverse=True)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _is_number(value: Any) -> bool:
    # bool is an int subclass; flags are not amounts
    return isinstance(value, Real) and not isinstance(value, bool)


def is_aggregable_average(avg: float) -> bool:
    """False for averages that look like serial dates or identifiers."""
    if avg <= IDENTIFIER_MAX_AVG:
        return False
    return not (SERIAL_DATE_MIN <= avg <= SERIAL_DATE_MAX)


def _boolean_like(distinct_values: list[str]) -> BooleanField | None:
    if len(distinct_values) != 2:
        return None
    true_value = next(
        (v for v in distinct_values if v.strip().lower() in AFFIRMATIVE_VALUES), None
    )
    if true_value is None:
        return None
    false_value = next(v for v in distinct_values if v != true_value)
    return BooleanField(field="", true_value=true_value, false_value=false_value)


def classify_fields(
    data_type: str,
    samples: Iterable[Mapping[str, Any]],
    row_count: int | None = None,
) -> DataCapability:
    """Classify each field of a data type's sampled rows.

    Args:
        data_type: Label the samples were grouped under
        samples: Sampled ``row_data`` mappings (usually <= 30)
        row_count: Rows seen for this data type; defaults to the sample size

    Returns:
        DataCapability; an empty sample yields an empty capability
    """
    sample_list = [s for s in samples if s]
    capability = DataCapability(
        data_type=data_type,
        row_count=row_count if row_count is not None else len(sample_list),
    )
    if not sample_list:
        return capability

    # field order follows first appearance so ties resolve deterministically
    keys: OrderedDict[str, None] = OrderedDict()
    for sample in sample_list:
        for key in sample:
            if not str(key).startswith("_"):
                keys.setdefault(key, None)

    for key in keys:
        values = [s.get(key) for s in sample_list]
        values = [v for v in values if v is not None]
        if not values:
            continue

        numeric_values = [float(v) for v in values if _is_number(v)]
        string_values = [v for v in values if isinstance(v, str)]

        if len(numeric_values) > len(values) * MAJORITY_SHARE:
            avg = sum(numeric_values) / len(numeric_values)
            if is_aggregable_average(avg):
                capability.numeric_fields.append(
                    NumericField(field=key, avg=avg, non_null_count=len(numeric_values))
                )
            else:
                logger.debug("%s.%s skipped as numeric: avg %.2f looks like an id/date", data_type, key, avg)
            continue

        if len(string_values) > len(values) * MAJORITY_SHARE:
            distinct = list(OrderedDict.fromkeys(string_values))
            if not CATEGORICAL_MIN_DISTINCT <= len(distinct) <= CATEGORICAL_MAX_DISTINCT:
                continue
            boolean = _boolean_like(distinct)
            if boolean is not None:
                boolean.field = key
                capability.boolean_fields.append(boolean)
                continue
            capability.categorical_fields.append(
                CategoricalField(field=key, distinct_values=distinct, count=len(string_values))
            )

    return capability


def inventory_capabilities(
    rows: Iterable[RawRow],
    *,
    row_limit: int = INVENTORY_ROW_LIMIT,
    samples_per_type: int = SAMPLES_PER_TYPE,
) -> list[DataCapability]:
    """Build the capability catalog for one tenant.

    Args:
        rows: The tenant's raw rows, most recent first
        row_limit: Only the first ``row_limit`` rows are considered
        samples_per_type: Classifier sample size per data type

    Returns:
        One DataCapability per distinct data type, in first-seen order.
        No rows means an empty list, which downstream treats as
        "no derivations possible".
    """
    samples_by_type: OrderedDict[str, list[dict[str, Any]]] = OrderedDict()
    counts: dict[str, int] = {}

    for i, row in enumerate(rows):
        if i >= row_limit:
            break
        if not row.data_type:
            continue
        bucket = samples_by_type.setdefault(row.data_type, [])
        counts[row.data_type] = counts.get(row.data_type, 0) + 1
        if len(bucket) < samples_per_type and row.row_data:
            bucket.append(row.row_data)

    capabilities = [
        classify_fields(data_type, samples, row_count=counts[data_type])
        for data_type, samples in samples_by_type.items()
    ]
    logger.info(
        "Inventoried %d data type(s) from %d row(s)",
        len(capabilities),
        sum(counts.values()),
    )
    return capabilities


def format_inventory_summary(capabilities: list[DataCapability]) -> str:
    """Human-readable catalog for the CLI."""
    if not capabilities:
        return "No committed data found for this tenant."

    lines = [f"Data types: {len(capabilities)}", ""]
    for cap in capabilities:
        lines.append(f"{cap.data_type} ({cap.row_count} rows sampled)")
        for nf in cap.ranked_numeric_fields():
            lines.append(f"  numeric     {nf.field:<24} avg={nf.avg:,.2f} n={nf.non_null_count}")
        for cf in cap.categorical_fields:
            values = ", ".join(cf.distinct_values[:8])
            more = f" (+{len(cf.distinct_values) - 8})" if len(cf.distinct_values) > 8 else ""
            lines.append(f"  categorical {cf.field:<24} [{values}]{more}")
        for bf in cap.boolean_fields:
            lines.append(f"  boolean     {bf.field:<24} true={bf.true_value} false={bf.false_value}")
    return "\n".join(lines)
