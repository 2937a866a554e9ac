"""Batch runtime: convergence and per-entity calculation against the store.

Flow for one calculation run:
    rules (stored or freshly converged) -> (entity, period) pairs ->
    worker per pair: rows -> MetricContext -> evaluate each component

Key features:
- Bounded concurrency via a thread pool sized by settings
- Metrics resolved once per entity and shared by all its components
- One entity's failure is recorded and never aborts the batch
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from payline.config import Settings
from payline.contracts import (
    BatchResult,
    ConvergenceReport,
    EntityFailure,
    EvaluationResult,
    MetricDerivationRule,
)
from payline.convergence.matcher import (
    DEFAULT_CURATED_PATTERNS,
    CuratedPattern,
    load_curated_patterns,
)
from payline.convergence.service import converge_rows
from payline.execution.evaluate import evaluate_component
from payline.execution.resolve import MetricContext
from payline.planning.requirements import PlanRequirement, extract_requirements
from payline.storage.store import PaylineStore

logger = logging.getLogger(__name__)
summary_logger = logging.getLogger("payline.summary")


@dataclass
class EntityRun:
    """Outcome of evaluating one (entity, period) pair."""

    entity_id: str
    period: str | None
    results: list[EvaluationResult] = field(default_factory=list)
    failure: EntityFailure | None = None


class CalculationRunner:
    """Runs convergence and batch calculation for one store."""

    def __init__(self, store: PaylineStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or Settings()
        self.patterns: tuple[CuratedPattern, ...] = (
            load_curated_patterns(self.settings.curated_patterns_file)
            if self.settings.curated_patterns_file
            else DEFAULT_CURATED_PATTERNS
        )

    def converge(self, tenant_id: str, plan_id: str) -> ConvergenceReport:
        """Generate and persist the plan's rule set from the tenant's recent rows."""
        plan_config = self.store.load_plan(tenant_id, plan_id)
        rows = self.store.recent_rows(tenant_id, limit=self.settings.inventory_row_limit)
        report = converge_rows(
            plan_config,
            rows,
            tenant_id=tenant_id,
            plan_id=plan_id,
            patterns=self.patterns,
            min_confidence=self.settings.min_match_confidence,
            row_limit=self.settings.inventory_row_limit,
            samples_per_type=self.settings.sample_per_type,
        )
        self.store.save_rules(tenant_id, plan_id, report.derivations)
        return report

    def _rules(self, tenant_id: str, plan_id: str) -> list[MetricDerivationRule]:
        rules = self.store.load_rules(tenant_id, plan_id)
        if rules is None:
            logger.info("No stored rules for plan %s; converging first", plan_id)
            rules = self.converge(tenant_id, plan_id).derivations
        return rules

    def evaluate_entity(
        self,
        tenant_id: str,
        plan_id: str,
        entity_id: str,
        period: str | None,
        requirements: list[PlanRequirement],
        rules: list[MetricDerivationRule],
    ) -> EntityRun:
        run = EntityRun(entity_id=entity_id, period=period)
        try:
            rows = self.store.rows_for(tenant_id, entity_id, period)
            metrics = MetricContext(rules, rows)
            for requirement in requirements:
                run.results.append(evaluate_component(
                    requirement,
                    metrics,
                    tenant_id=tenant_id,
                    plan_id=plan_id,
                    entity_id=entity_id,
                    period=period,
                ))
        except Exception as exc:
            logger.exception("Entity %s (%s) failed", entity_id, period)
            run.results = []
            run.failure = EntityFailure(
                entity_id=entity_id,
                period=period,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return run

    def calculate(self, tenant_id: str, plan_id: str, period: str | None = None) -> BatchResult:
        """Evaluate every component for every entity with data in ``period``.

        Args:
            tenant_id: Tenant to calculate
            plan_id: Stored plan to evaluate
            period: Restrict to one period label (default: all periods)

        Returns:
            BatchResult with per-component results and per-entity failures
        """
        started = time.perf_counter()
        plan_config = self.store.load_plan(tenant_id, plan_id)
        requirements = extract_requirements(plan_config)
        rules = self._rules(tenant_id, plan_id)
        pairs = self.store.entity_periods(tenant_id, period)

        batch = BatchResult(tenant_id=tenant_id, plan_id=plan_id, entity_count=len(pairs))
        if not pairs:
            logger.warning("Tenant %s has no entity rows%s", tenant_id, f" for {period}" if period else "")
            return batch

        runs: dict[tuple[str, str | None], EntityRun] = {}
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            futures = {
                pool.submit(
                    self.evaluate_entity, tenant_id, plan_id, entity_id, entity_period, requirements, rules
                ): (entity_id, entity_period)
                for entity_id, entity_period in pairs
            }
            for future in as_completed(futures):
                runs[futures[future]] = future.result()

        for pair in pairs:
            run = runs[pair]
            if run.failure is not None:
                batch.failures.append(run.failure)
            batch.results.extend(run.results)

        self.store.save_results(batch.results)
        batch.elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        summary_logger.info(
            "Plan %s: %d entities, %d result(s), %d failure(s), total payout %.2f in %.0f ms",
            plan_id, len(pairs), len(batch.results), len(batch.failures), batch.total_payout, batch.elapsed_ms,
        )
        return batch
