"""Pydantic schemas for everything payline hands to its collaborators.

Contracts:
- RawRow: one imported operational row (input from the storage collaborator)
- MetricDerivationRule: an executable sum/count aggregation for one metric
- ConvergenceReport: derivations + match report + gaps for one plan
- TraceStep / EvaluationResult: the audited payout for one component
- EntityFailure / BatchResult: per-entity isolation for batch runs

Rules and results are persisted as JSON using the camelCase aliases the plan
configuration already uses; both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Raw data
# =============================================================================

class RawRow(_CamelModel):
    """A single committed row for one tenant, grouped by free-text data type."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    tenant_id: str = Field(..., description="Owning tenant")
    data_type: str = Field(..., description="Free-text origin label, e.g. 'component_data:claims'")
    row_data: dict[str, Any] = Field(default_factory=dict, description="Field name -> scalar value")
    entity_id: str | None = Field(None, description="Entity this row belongs to")
    period: str | None = Field(None, description="Period label")
    row_id: str | None = Field(None, description="Storage identifier")


# =============================================================================
# Derivation rules
# =============================================================================

FilterOperator = Literal["eq", "neq", "contains"]


class DerivationFilter(_CamelModel):
    field: str
    operator: FilterOperator = "eq"
    value: str


class MetricDerivationRule(_CamelModel):
    """Concrete aggregation satisfying one metric requirement of a plan."""

    metric: str = Field(..., description="Plan metric name this rule produces")
    operation: Literal["sum", "count"] = Field(..., description="Aggregation kind")
    source_pattern: str = Field(..., description="Substring matched against the row data type")
    source_field: str | None = Field(None, description="Field summed by 'sum' rules")
    filters: list[DerivationFilter] = Field(default_factory=list)

    def filter_key(self) -> tuple[tuple[str, str, str], ...]:
        """Hashable identity of the filter set, used to compare sibling rules."""
        return tuple(sorted((f.field, f.operator, f.value.lower()) for f in self.filters))


# =============================================================================
# Convergence report
# =============================================================================

class MatchReportEntry(_CamelModel):
    component: str
    component_index: int
    data_type: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str


class ConvergenceGap(_CamelModel):
    component: str
    component_index: int
    required_metrics: list[str] = Field(default_factory=list)
    calculation_op: str
    reason: str
    resolution: str


class ConvergenceSignal(_CamelModel):
    data_type: str
    field_name: str
    semantic_type: Literal["amount", "count"]
    confidence: float


class ConvergenceReport(_CamelModel):
    """Operator-facing outcome of one convergence run."""

    tenant_id: str
    plan_id: str
    derivations: list[MetricDerivationRule] = Field(default_factory=list)
    match_report: list[MatchReportEntry] = Field(default_factory=list)
    signals: list[ConvergenceSignal] = Field(default_factory=list)
    gaps: list[ConvergenceGap] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def converged(self) -> bool:
        return bool(self.derivations) and not self.gaps

    def to_json_dict(self) -> dict[str, Any]:
        data = super().to_json_dict()
        data["converged"] = self.converged
        return data


# =============================================================================
# Evaluation
# =============================================================================

class TraceStep(_CamelModel):
    """One node of the evaluation trace, mirroring the intent tree."""

    operation: str
    inputs: dict[str, float] = Field(default_factory=dict)
    branch: str | None = None
    output: float = 0.0
    note: str | None = None
    children: list["TraceStep"] = Field(default_factory=list)


class ModifierApplication(_CamelModel):
    modifier: str
    before: float
    after: float


class EvaluationResult(_CamelModel):
    """Payout for one (entity, period, component) with its audit trace."""

    tenant_id: str
    plan_id: str
    entity_id: str | None
    period: str | None
    component: str
    component_index: int
    payout: float
    trace: TraceStep
    metrics_used: dict[str, float] = Field(default_factory=dict)
    unresolved_metrics: list[str] = Field(default_factory=list)
    modifiers: list[ModifierApplication] = Field(default_factory=list)


class EntityFailure(_CamelModel):
    entity_id: str | None
    period: str | None
    error: str
    error_type: str


class BatchResult(_CamelModel):
    tenant_id: str
    plan_id: str
    results: list[EvaluationResult] = Field(default_factory=list)
    failures: list[EntityFailure] = Field(default_factory=list)
    entity_count: int = 0
    elapsed_ms: float = 0.0

    @property
    def total_payout(self) -> float:
        return sum(r.payout for r in self.results)


TraceStep.model_rebuild()
