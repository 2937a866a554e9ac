"""Calculation intent model.

A component's ``calculationIntent`` JSON is parsed into a closed set of node
classes, one per operation kind. Each node carries only its own operands. An
operand is a literal number, a metric reference, or another node.

Parsing never raises: anything that does not fit a known node shape becomes
``NoOperation`` (which evaluates to 0 with a trace entry), and an operand that
cannot be understood becomes ``None`` (which resolves to 0).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

from payline.utils.numbers import is_numeric_literal, safe_number

logger = logging.getLogger(__name__)

METRIC_PREFIX = "metric:"

OPERATION_KINDS = (
    "scalar_multiply",
    "bounded_lookup_1d",
    "bounded_lookup_2d",
    "conditional_gate",
    "ratio",
)

COMPARISON_OPERATORS = (">=", ">", "<=", "<", "==", "!=")


def strip_metric_prefix(name: str) -> str:
    name = str(name).strip()
    if name.startswith(METRIC_PREFIX):
        return name[len(METRIC_PREFIX):].strip()
    return name


# =============================================================================
# Operands
# =============================================================================

@dataclass(frozen=True)
class Literal:
    value: float


@dataclass(frozen=True)
class MetricRef:
    name: str


@dataclass(frozen=True)
class Boundary:
    """One tier bracket; ``None`` means unbounded on that side."""

    min: Optional[float] = None
    max: Optional[float] = None
    min_inclusive: bool = True
    max_inclusive: bool = False

    def contains(self, value: float) -> bool:
        if self.min is not None:
            if value < self.min or (value == self.min and not self.min_inclusive):
                return False
        if self.max is not None:
            if value > self.max or (value == self.max and not self.max_inclusive):
                return False
        return True

    def label(self) -> str:
        lo = "-inf" if self.min is None else f"{self.min:g}"
        hi = "inf" if self.max is None else f"{self.max:g}"
        left = "[" if self.min_inclusive and self.min is not None else "("
        right = "]" if self.max_inclusive and self.max is not None else ")"
        return f"{left}{lo}, {hi}{right}"


# =============================================================================
# Nodes
# =============================================================================

@dataclass(frozen=True)
class ScalarMultiply:
    input: "Operand"
    rate: "Operand"


@dataclass(frozen=True)
class BoundedLookup1D:
    input: "Operand"
    boundaries: tuple[Boundary, ...]
    outputs: tuple[float, ...]
    is_marginal: bool = False


@dataclass(frozen=True)
class BoundedLookup2D:
    row_input: "Operand"
    col_input: "Operand"
    row_boundaries: tuple[Boundary, ...]
    col_boundaries: tuple[Boundary, ...]
    matrix: tuple[tuple[float, ...], ...]


@dataclass(frozen=True)
class Condition:
    left: "Operand"
    operator: str
    right: "Operand"


@dataclass(frozen=True)
class ConditionalGate:
    condition: Condition
    on_true: "Operand"
    on_false: "Operand"


@dataclass(frozen=True)
class Ratio:
    numerator: "Operand"
    denominator: "Operand"


@dataclass(frozen=True)
class NoOperation:
    """Fallback for unknown or malformed nodes."""

    kind: str = "unknown"
    reason: str = ""


# ``constant`` and ``aggregate`` operation nodes parse straight to their
# Literal or MetricRef operand, so a tree root may also be one of those.
IntentNode = Union[
    ScalarMultiply, BoundedLookup1D, BoundedLookup2D, ConditionalGate, Ratio, NoOperation, Literal, MetricRef,
]
Operand = Union[IntentNode, None]


@dataclass(frozen=True)
class Modifier:
    kind: str
    value: Optional[float] = None
    numerator: Operand = None
    denominator: Operand = None


@dataclass(frozen=True)
class ComponentIntent:
    """Parsed intent tree plus the modifiers applied to its outcome."""

    root: IntentNode
    modifiers: tuple[Modifier, ...] = field(default_factory=tuple)


# =============================================================================
# Parsing
# =============================================================================

def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def parse_operand(raw: Any) -> Operand:
    """Parse one operand; returns None when nothing usable is present."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        return None
    if is_numeric_literal(raw):
        return Literal(safe_number(raw))
    if isinstance(raw, str):
        name = strip_metric_prefix(raw)
        return MetricRef(name) if name else None
    if not isinstance(raw, dict):
        return None

    if "operation" in raw or "intent" in raw:
        return parse_node(raw)

    source = raw.get("source")
    spec = raw.get("sourceSpec") if isinstance(raw.get("sourceSpec"), dict) else {}
    if source == "constant":
        return Literal(safe_number(raw.get("value")))
    if source == "ratio":
        return Ratio(
            numerator=parse_operand(spec.get("numerator")),
            denominator=parse_operand(spec.get("denominator")),
        )
    name = _first(spec, "field", "metric") or raw.get("metric") or raw.get("field")
    if source in (None, "metric", "aggregate") and isinstance(name, str) and name.strip():
        return MetricRef(strip_metric_prefix(name))
    if "value" in raw and is_numeric_literal(raw["value"]):
        return Literal(safe_number(raw["value"]))
    return None


def parse_boundaries(raw: Any) -> tuple[Boundary, ...]:
    """Parse either ascending breakpoints or explicit bracket objects.

    ``[0, 100, 200]`` becomes ``[0,100) [100,200) [200,inf)``.
    """
    if not isinstance(raw, (list, tuple)) or not raw:
        return ()
    if all(is_numeric_literal(b) for b in raw):
        points = [safe_number(b) for b in raw]
        return tuple(
            Boundary(min=lo, max=points[i + 1] if i + 1 < len(points) else None)
            for i, lo in enumerate(points)
        )

    boundaries = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        lo, hi = item.get("min"), item.get("max")
        boundaries.append(Boundary(
            min=safe_number(lo) if is_numeric_literal(lo) else None,
            max=safe_number(hi) if is_numeric_literal(hi) else None,
            min_inclusive=item.get("minInclusive", True) is not False,
            max_inclusive=item.get("maxInclusive", False) is True,
        ))
    return tuple(boundaries)


def _parse_condition(raw: Any) -> Condition | None:
    if not isinstance(raw, dict):
        return None
    operator = str(raw.get("operator", "")).strip()
    if operator not in COMPARISON_OPERATORS:
        logger.debug("Unknown comparison operator %r; the gate will fail", operator)
    return Condition(
        left=parse_operand(raw.get("left")),
        operator=operator,
        right=parse_operand(raw.get("right")),
    )


def parse_node(raw: Any) -> IntentNode:
    """Parse one operation node of an intent tree."""
    if not isinstance(raw, dict):
        return NoOperation(kind=type(raw).__name__, reason="intent is not an object")
    if "operation" not in raw and isinstance(raw.get("intent"), dict):
        raw = raw["intent"]

    kind = str(raw.get("operation") or "unknown")

    if kind == "scalar_multiply":
        if "input" not in raw or "rate" not in raw:
            return NoOperation(kind=kind, reason="scalar_multiply needs input and rate")
        return ScalarMultiply(input=parse_operand(raw["input"]), rate=parse_operand(raw["rate"]))

    if kind == "bounded_lookup_1d":
        boundaries = parse_boundaries(raw.get("boundaries"))
        if not boundaries:
            return NoOperation(kind=kind, reason="bounded_lookup_1d has no boundaries")
        return BoundedLookup1D(
            input=parse_operand(raw.get("input")),
            boundaries=boundaries,
            outputs=tuple(safe_number(v) for v in raw.get("outputs") or ()),
            is_marginal=raw.get("isMarginal") is True,
        )

    if kind == "bounded_lookup_2d":
        inputs = raw.get("inputs") if isinstance(raw.get("inputs"), dict) else {}
        inputs_aliased = {"rowInput": inputs.get("row"), "colInput": inputs.get("column")}
        row_b = parse_boundaries(_first(raw, "rowBoundaries"))
        col_b = parse_boundaries(_first(raw, "colBoundaries", "columnBoundaries"))
        grid = _first(raw, "matrix", "outputGrid") or ()
        if not row_b or not col_b:
            return NoOperation(kind=kind, reason="bounded_lookup_2d needs row and column boundaries")
        return BoundedLookup2D(
            row_input=parse_operand(_first({**inputs_aliased, **raw}, "rowInput")),
            col_input=parse_operand(_first({**inputs_aliased, **raw}, "colInput", "columnInput")),
            row_boundaries=row_b,
            col_boundaries=col_b,
            matrix=tuple(
                tuple(safe_number(v) for v in row) if isinstance(row, (list, tuple)) else ()
                for row in grid
            ),
        )

    if kind == "conditional_gate":
        condition = _parse_condition(raw.get("condition"))
        if condition is None:
            return NoOperation(kind=kind, reason="conditional_gate has no condition")
        return ConditionalGate(
            condition=condition,
            on_true=parse_operand(_first(raw, "onTrue", "pass")),
            on_false=parse_operand(_first(raw, "onFalse", "fail")),
        )

    if kind == "ratio":
        return Ratio(
            numerator=parse_operand(raw.get("numerator")),
            denominator=parse_operand(raw.get("denominator")),
        )

    if kind == "constant":
        if not is_numeric_literal(raw.get("value")):
            return NoOperation(kind=kind, reason="constant has no numeric value")
        return Literal(safe_number(raw["value"]))

    if kind == "aggregate":
        source = parse_operand(raw.get("source"))
        if source is None:
            return NoOperation(kind=kind, reason="aggregate has no usable source")
        return source

    return NoOperation(kind=kind, reason=f"unsupported operation '{kind}'")


def _parse_modifier(raw: Any) -> Modifier | None:
    if not isinstance(raw, dict):
        return None
    kind = str(raw.get("modifier") or raw.get("type") or "").strip()
    if not kind:
        return None
    if kind == "cap":
        return Modifier(kind=kind, value=safe_number(raw.get("maxValue")))
    if kind == "floor":
        return Modifier(kind=kind, value=safe_number(raw.get("minValue")))
    if kind == "proration":
        return Modifier(
            kind=kind,
            numerator=parse_operand(raw.get("numerator")),
            denominator=parse_operand(raw.get("denominator")),
        )
    return Modifier(kind=kind)


def parse_intent(raw: Any, extra_modifiers: Any = None) -> ComponentIntent:
    """Parse a component's full calculation intent.

    Args:
        raw: The ``calculationIntent`` JSON (an operation node, or a wrapper
            holding it under ``intent``)
        extra_modifiers: Component-level ``modifiers`` list, applied after
            any modifiers declared on the intent itself

    Returns:
        ComponentIntent; malformed input yields a NoOperation root
    """
    root = parse_node(raw)
    if isinstance(root, NoOperation) and root.reason:
        logger.debug("Intent parsed as no-op: %s", root.reason)

    modifiers: list[Modifier] = []
    sources = []
    if isinstance(raw, dict):
        sources.append(raw.get("modifiers"))
    sources.append(extra_modifiers)
    for source in sources:
        if isinstance(source, list):
            modifiers.extend(m for m in (_parse_modifier(r) for r in source) if m is not None)
    return ComponentIntent(root=root, modifiers=tuple(modifiers))


# =============================================================================
# Legacy component configs
# =============================================================================

def _metric(name: Any) -> dict[str, Any]:
    return {"source": "metric", "sourceSpec": {"field": name}}


def _bands(raw: Any) -> list[dict[str, Any]]:
    """Legacy bands match ``min <= value <= max``; the first matching band wins."""
    return [
        {"min": b.get("min"), "max": b.get("max"), "minInclusive": True, "maxInclusive": True}
        for b in raw or () if isinstance(b, dict)
    ]


def _gate(metric: Any, operator: str, bound: float, on_true: Any, on_false: Any) -> dict[str, Any]:
    return {
        "operation": "conditional_gate",
        "condition": {"left": _metric(metric), "operator": operator, "right": bound},
        "onTrue": on_true,
        "onFalse": on_false,
    }


def _tier_intent(config: dict[str, Any]) -> dict[str, Any] | None:
    tiers = [t for t in config.get("tiers") or () if isinstance(t, dict)]
    if not config.get("metric") or not tiers:
        return None
    return {
        "operation": "bounded_lookup_1d",
        "input": _metric(config["metric"]),
        "boundaries": _bands(tiers),
        "outputs": [t.get("value") for t in tiers],
    }


def _matrix_intent(config: dict[str, Any]) -> dict[str, Any] | None:
    if not (config.get("rowMetric") and config.get("columnMetric")):
        return None
    if not (config.get("rowBands") and config.get("columnBands")):
        return None
    return {
        "operation": "bounded_lookup_2d",
        "inputs": {"row": _metric(config["rowMetric"]), "column": _metric(config["columnMetric"])},
        "rowBoundaries": _bands(config["rowBands"]),
        "columnBoundaries": _bands(config["columnBands"]),
        "outputGrid": config.get("values") or [],
    }


def _percentage_intent(config: dict[str, Any]) -> dict[str, Any] | None:
    applied_to = config.get("appliedTo")
    if not applied_to or not is_numeric_literal(config.get("rate")):
        return None
    intent: dict[str, Any] = {"operation": "scalar_multiply", "input": _metric(applied_to), "rate": config["rate"]}
    threshold = safe_number(config.get("minThreshold"))
    if threshold:
        intent = _gate(applied_to, ">=", threshold, intent, {"operation": "constant", "value": 0})
    max_payout = safe_number(config.get("maxPayout"))
    if max_payout:
        intent["modifiers"] = [{"modifier": "cap", "maxValue": max_payout}]
    return intent


def _conditional_intent(config: dict[str, Any]) -> dict[str, Any] | None:
    """Chain one gate per condition, falling through to a constant 0.

    When every condition reads the same metric, gates test ``>= min`` from
    the highest threshold down. Otherwise conditions are tried in order and
    each checks ``>= min`` and then ``<= max`` where those bounds are set.
    """
    applied_to = config.get("appliedTo")
    if not applied_to:
        return None
    conditions = [c for c in config.get("conditions") or () if isinstance(c, dict)]
    fallback: dict[str, Any] = {"operation": "constant", "value": 0}

    def payout(condition: dict[str, Any]) -> dict[str, Any]:
        return {"operation": "scalar_multiply", "input": _metric(applied_to), "rate": condition.get("rate")}

    if conditions and all(c.get("metric") == conditions[0].get("metric") for c in conditions):
        ordered = sorted(conditions, key=lambda c: safe_number(c.get("min")))
        for condition in ordered:
            threshold = safe_number(condition.get("min"))
            fallback = _gate(condition.get("metric"), ">=", threshold, payout(condition), fallback)
        return fallback

    for condition in reversed(conditions):
        branch = payout(condition)
        if is_numeric_literal(condition.get("max")):
            branch = _gate(condition.get("metric"), "<=", safe_number(condition["max"]), branch, fallback)
        if is_numeric_literal(condition.get("min")):
            branch = _gate(condition.get("metric"), ">=", safe_number(condition["min"]), branch, fallback)
        fallback = branch
    return fallback


LEGACY_BUILDERS = {
    "tier_lookup": ("tierConfig", _tier_intent),
    "matrix_lookup": ("matrixConfig", _matrix_intent),
    "percentage": ("percentageConfig", _percentage_intent),
    "conditional_percentage": ("conditionalConfig", _conditional_intent),
}


def legacy_intent_json(component: dict[str, Any]) -> dict[str, Any] | None:
    """Build ``calculationIntent`` JSON from a component's legacy config.

    The legacy type comes from ``calculationMethod.type`` or
    ``componentType``. Returns None for other types or when the matching
    ``tierConfig`` / ``matrixConfig`` / ``percentageConfig`` /
    ``conditionalConfig`` is missing or incomplete.
    """
    method = component.get("calculationMethod")
    legacy = (method.get("type") if isinstance(method, dict) else None) or component.get("componentType")
    if legacy not in LEGACY_BUILDERS:
        return None
    config_key, build = LEGACY_BUILDERS[legacy]
    config = component.get(config_key)
    if not isinstance(config, dict):
        return None
    return build(config)


# =============================================================================
# Tree walking
# =============================================================================

def iter_operands(node: Operand) -> Iterator[Operand]:
    """Yield the direct operands of a node in evaluation order."""
    if isinstance(node, ScalarMultiply):
        yield from (node.input, node.rate)
    elif isinstance(node, BoundedLookup1D):
        yield node.input
    elif isinstance(node, BoundedLookup2D):
        yield from (node.row_input, node.col_input)
    elif isinstance(node, ConditionalGate):
        yield from (node.condition.left, node.condition.right, node.on_true, node.on_false)
    elif isinstance(node, Ratio):
        yield from (node.numerator, node.denominator)


def metric_references(node: Operand) -> list[str]:
    """All metric names referenced anywhere under ``node``, depth-first, unique."""
    found: list[str] = []

    def walk(current: Operand) -> None:
        if isinstance(current, MetricRef):
            if current.name not in found:
                found.append(current.name)
            return
        for child in iter_operands(current):
            walk(child)

    walk(node)
    return found
