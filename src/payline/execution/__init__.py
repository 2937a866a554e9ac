"""Execution: metric resolution and intent evaluation."""

from payline.execution.evaluate import IntentEvaluator, evaluate_component, find_boundary_index
from payline.execution.resolve import MetricContext, resolve_metric, select_rows

__all__ = [
    "IntentEvaluator",
    "MetricContext",
    "evaluate_component",
    "find_boundary_index",
    "resolve_metric",
    "select_rows",
]
