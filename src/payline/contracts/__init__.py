"""Data contracts exchanged with the storage, reporting and results collaborators."""

from payline.contracts.payout_contracts import (
    BatchResult,
    ConvergenceGap,
    ConvergenceReport,
    ConvergenceSignal,
    DerivationFilter,
    EntityFailure,
    EvaluationResult,
    MatchReportEntry,
    MetricDerivationRule,
    ModifierApplication,
    RawRow,
    TraceStep,
)

__all__ = [
    "BatchResult",
    "ConvergenceGap",
    "ConvergenceReport",
    "ConvergenceSignal",
    "DerivationFilter",
    "EntityFailure",
    "EvaluationResult",
    "MatchReportEntry",
    "MetricDerivationRule",
    "ModifierApplication",
    "RawRow",
    "TraceStep",
]
