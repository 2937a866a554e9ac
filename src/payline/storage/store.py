"""DuckDB-backed storage for raw rows, plans, rule sets and results.

This stands in for the platform's relational store. Every public method
opens its own connection under a process-wide lock, so one store object can
be shared by the batch runner's worker threads.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import duckdb

from payline.contracts import EvaluationResult, MetricDerivationRule, RawRow
from payline.errors import PlanNotFoundError, StorageError

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    # DuckDB TIMESTAMP columns hold naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class PaylineStore:
    """Thread-safe persistence for one payline deployment."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path).expanduser()
        self._lock = threading.RLock()
        self._ensure_tables()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            return duckdb.connect(str(self.db_path), read_only=False)
        except (OSError, duckdb.Error) as exc:
            raise StorageError(
                f"Cannot open DuckDB store at {self.db_path}: {exc}",
                context={"db_path": str(self.db_path)},
            ) from exc

    def _ensure_tables(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS payline_raw_rows (
                        row_id VARCHAR,
                        seq BIGINT,
                        tenant_id VARCHAR,
                        entity_id VARCHAR,
                        period VARCHAR,
                        data_type VARCHAR,
                        row_json VARCHAR,
                        imported_at TIMESTAMP
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS payline_plans (
                        tenant_id VARCHAR,
                        plan_id VARCHAR,
                        name VARCHAR,
                        config_json VARCHAR,
                        updated_at TIMESTAMP
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS payline_derivation_rules (
                        tenant_id VARCHAR,
                        plan_id VARCHAR,
                        rules_json VARCHAR,
                        generated_at TIMESTAMP
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS payline_evaluation_results (
                        result_id VARCHAR,
                        created_at TIMESTAMP,
                        tenant_id VARCHAR,
                        plan_id VARCHAR,
                        entity_id VARCHAR,
                        period VARCHAR,
                        component VARCHAR,
                        component_index BIGINT,
                        payout DOUBLE,
                        result_json VARCHAR
                    )
                    """
                )
            except duckdb.Error as exc:
                raise StorageError(f"Cannot initialise store schema: {exc}") from exc
            finally:
                conn.close()

    # ------------------------------------------------------------------
    # Raw rows
    # ------------------------------------------------------------------

    def add_rows(self, rows: Iterable[RawRow]) -> int:
        """Append committed rows; returns how many were written."""
        now = _utc_now()
        with self._lock:
            conn = self._connect()
            try:
                start = conn.execute("SELECT COALESCE(MAX(seq), 0) FROM payline_raw_rows").fetchone()[0]
                payload = [
                    (
                        row.row_id or uuid.uuid4().hex,
                        start + i + 1,
                        row.tenant_id,
                        row.entity_id,
                        row.period,
                        row.data_type,
                        json.dumps(row.row_data, default=_json_default),
                        now,
                    )
                    for i, row in enumerate(rows)
                ]
                if payload:
                    conn.executemany(
                        "INSERT INTO payline_raw_rows VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        payload,
                    )
            except duckdb.Error as exc:
                raise StorageError(f"Cannot write raw rows: {exc}") from exc
            finally:
                conn.close()
        logger.info("Stored %d raw row(s)", len(payload))
        return len(payload)

    @staticmethod
    def _to_row(record: tuple) -> RawRow:
        row_id, tenant_id, entity_id, period, data_type, row_json = record
        return RawRow(
            row_id=row_id,
            tenant_id=tenant_id,
            entity_id=entity_id,
            period=period,
            data_type=data_type,
            row_data=json.loads(row_json or "{}"),
        )

    def _select_rows(self, where: str, params: list[Any], suffix: str = "") -> list[RawRow]:
        with self._lock:
            conn = self._connect()
            try:
                records = conn.execute(
                    f"""
                    SELECT row_id, tenant_id, entity_id, period, data_type, row_json
                    FROM payline_raw_rows
                    WHERE {where}
                    {suffix}
                    """,
                    params,
                ).fetchall()
            except duckdb.Error as exc:
                raise StorageError(f"Cannot read raw rows: {exc}") from exc
            finally:
                conn.close()
        return [self._to_row(r) for r in records]

    def recent_rows(self, tenant_id: str, *, limit: int = 500) -> list[RawRow]:
        """Most recently committed rows for a tenant, newest first."""
        return self._select_rows(
            "tenant_id = ? AND data_type IS NOT NULL",
            [tenant_id],
            f"ORDER BY seq DESC LIMIT {int(limit)}",
        )

    def rows_for(self, tenant_id: str, entity_id: str | None, period: str | None) -> list[RawRow]:
        """All rows of one entity and period, in commit order."""
        return self._select_rows(
            "tenant_id = ? AND entity_id IS NOT DISTINCT FROM ? AND period IS NOT DISTINCT FROM ?",
            [tenant_id, entity_id, period],
            "ORDER BY seq",
        )

    def entity_periods(self, tenant_id: str, period: str | None = None) -> list[tuple[str, str | None]]:
        """Distinct (entity, period) pairs with data; rows without an entity are skipped."""
        where = "tenant_id = ? AND entity_id IS NOT NULL"
        params: list[Any] = [tenant_id]
        if period is not None:
            where += " AND period = ?"
            params.append(period)
        with self._lock:
            conn = self._connect()
            try:
                pairs = conn.execute(
                    f"""
                    SELECT DISTINCT entity_id, period
                    FROM payline_raw_rows
                    WHERE {where}
                    ORDER BY entity_id, period
                    """,
                    params,
                ).fetchall()
            except duckdb.Error as exc:
                raise StorageError(f"Cannot list entities: {exc}") from exc
            finally:
                conn.close()
        return [(str(e), p) for e, p in pairs]

    # ------------------------------------------------------------------
    # Plans and rule sets
    # ------------------------------------------------------------------

    def save_plan(self, tenant_id: str, plan_id: str, config: dict[str, Any], name: str | None = None) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    "DELETE FROM payline_plans WHERE tenant_id = ? AND plan_id = ?",
                    [tenant_id, plan_id],
                )
                conn.execute(
                    "INSERT INTO payline_plans VALUES (?, ?, ?, ?, ?)",
                    [tenant_id, plan_id, name or config.get("name") or plan_id, json.dumps(config), _utc_now()],
                )
            except duckdb.Error as exc:
                raise StorageError(f"Cannot save plan {plan_id}: {exc}") from exc
            finally:
                conn.close()

    def load_plan(self, tenant_id: str, plan_id: str) -> dict[str, Any]:
        with self._lock:
            conn = self._connect()
            try:
                record = conn.execute(
                    "SELECT config_json FROM payline_plans WHERE tenant_id = ? AND plan_id = ?",
                    [tenant_id, plan_id],
                ).fetchone()
            except duckdb.Error as exc:
                raise StorageError(f"Cannot read plan {plan_id}: {exc}") from exc
            finally:
                conn.close()
        if record is None:
            raise PlanNotFoundError(tenant_id, plan_id)
        return json.loads(record[0])

    def save_rules(self, tenant_id: str, plan_id: str, rules: list[MetricDerivationRule]) -> None:
        """Replace the plan's rule set; rule sets are regenerated, never patched."""
        payload = json.dumps([r.to_json_dict() for r in rules])
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    "DELETE FROM payline_derivation_rules WHERE tenant_id = ? AND plan_id = ?",
                    [tenant_id, plan_id],
                )
                conn.execute(
                    "INSERT INTO payline_derivation_rules VALUES (?, ?, ?, ?)",
                    [tenant_id, plan_id, payload, _utc_now()],
                )
            except duckdb.Error as exc:
                raise StorageError(f"Cannot save rules for {plan_id}: {exc}") from exc
            finally:
                conn.close()

    def load_rules(self, tenant_id: str, plan_id: str) -> list[MetricDerivationRule] | None:
        """The stored rule set, or None if convergence never ran for the plan."""
        with self._lock:
            conn = self._connect()
            try:
                record = conn.execute(
                    "SELECT rules_json FROM payline_derivation_rules WHERE tenant_id = ? AND plan_id = ?",
                    [tenant_id, plan_id],
                ).fetchone()
            except duckdb.Error as exc:
                raise StorageError(f"Cannot read rules for {plan_id}: {exc}") from exc
            finally:
                conn.close()
        if record is None:
            return None
        return [MetricDerivationRule.model_validate(r) for r in json.loads(record[0])]

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def save_results(self, results: Iterable[EvaluationResult]) -> int:
        """Store a calculation run, replacing earlier results for the same plan periods."""
        now = _utc_now()
        results = list(results)
        replaced = sorted({(r.tenant_id, r.plan_id, r.period) for r in results}, key=str)
        payload = [
            (
                uuid.uuid4().hex,
                now,
                r.tenant_id,
                r.plan_id,
                r.entity_id,
                r.period,
                r.component,
                r.component_index,
                r.payout,
                json.dumps(r.to_json_dict()),
            )
            for r in results
        ]
        if not payload:
            return 0
        with self._lock:
            conn = self._connect()
            try:
                for tenant_id, plan_id, period in replaced:
                    conn.execute(
                        """
                        DELETE FROM payline_evaluation_results
                        WHERE tenant_id = ? AND plan_id = ? AND period IS NOT DISTINCT FROM ?
                        """,
                        [tenant_id, plan_id, period],
                    )
                conn.executemany(
                    "INSERT INTO payline_evaluation_results VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    payload,
                )
            except duckdb.Error as exc:
                raise StorageError(f"Cannot write results: {exc}") from exc
            finally:
                conn.close()
        return len(payload)

    def load_results(self, tenant_id: str, plan_id: str, period: str | None = None) -> list[EvaluationResult]:
        where = "tenant_id = ? AND plan_id = ?"
        params: list[Any] = [tenant_id, plan_id]
        if period is not None:
            where += " AND period = ?"
            params.append(period)
        with self._lock:
            conn = self._connect()
            try:
                records = conn.execute(
                    f"""
                    SELECT result_json FROM payline_evaluation_results
                    WHERE {where}
                    ORDER BY created_at, entity_id, component_index
                    """,
                    params,
                ).fetchall()
            except duckdb.Error as exc:
                raise StorageError(f"Cannot read results: {exc}") from exc
            finally:
                conn.close()
        return [EvaluationResult.model_validate(json.loads(r[0])) for r in records]
