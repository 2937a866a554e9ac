"""Batch orchestration over the store."""

from payline.orchestrator.runtime import CalculationRunner, EntityRun

__all__ = ["CalculationRunner", "EntityRun"]
