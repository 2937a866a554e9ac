"""File to raw-row ingestion utilities."""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import Any

import pandas as pd

from payline.contracts import RawRow
from payline.errors import PaylineError
from payline.storage.store import PaylineStore

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".xlsx", ".xls", ".json")


def sanitize_data_type(filename: str) -> str:
    """
    Sanitize a filename into a data type label.

    Rules:
    - Lowercase
    - Non-alphanumeric -> underscore
    - Collapse multiple underscores
    - Prefix with t_ if starts with digit
    """
    name = Path(filename).stem.lower()
    name = re.sub(r"[^a-z0-9]+", "_", name)
    name = re.sub(r"_+", "_", name).strip("_")
    if name and name[0].isdigit():
        name = f"t_{name}"
    return name or "data"


def _plain(value: Any) -> Any:
    """Convert a pandas cell into a JSON-safe Python scalar."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _label(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def read_frame(path: Path, sheet: str | int | None = None) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix in (".xlsx", ".xls"):
        return pd.read_excel(path, sheet_name=sheet if sheet is not None else 0)
    if suffix == ".json":
        return pd.read_json(path, orient="records")
    raise PaylineError(
        f"Unsupported file type '{suffix}' for {path.name}",
        suggestions=[f"Use one of: {', '.join(SUPPORTED_SUFFIXES)}"],
    )


def frame_to_rows(
    df: pd.DataFrame,
    *,
    tenant_id: str,
    data_type: str,
    entity_column: str | None = None,
    period_column: str | None = None,
) -> list[RawRow]:
    """Turn a data frame into raw rows; entity and period columns stay in row data too."""
    for column in (entity_column, period_column):
        if column and column not in df.columns:
            raise PaylineError(
                f"Column '{column}' not found",
                context={"columns": [str(c) for c in df.columns]},
            )

    rows = []
    for record in df.to_dict(orient="records"):
        data = {str(k): _plain(v) for k, v in record.items()}
        entity = data.get(entity_column) if entity_column else None
        period = data.get(period_column) if period_column else None
        rows.append(RawRow(
            tenant_id=tenant_id,
            data_type=data_type,
            row_data=data,
            entity_id=_label(entity),
            period=_label(period),
        ))
    return rows


def ingest_file(
    store: PaylineStore,
    path: Path | str,
    tenant_id: str,
    data_type: str | None = None,
    entity_column: str | None = None,
    period_column: str | None = None,
    sheet: str | int | None = None,
) -> dict:
    """
    Load one CSV/XLSX/JSON file into the store as committed raw rows.

    Args:
        store: Target store
        path: File to read
        tenant_id: Owning tenant
        data_type: Data type label (default: sanitized file stem)
        entity_column: Column holding the entity identifier
        period_column: Column holding the period label
        sheet: Sheet name or index for spreadsheets (default: first sheet)

    Returns:
        Dictionary with ingestion results
    """
    path = Path(path)
    if not path.exists():
        raise PaylineError(f"File not found: {path}")

    label = data_type or sanitize_data_type(path.name)
    try:
        df = read_frame(path, sheet)
    except (ValueError, OSError) as exc:
        raise PaylineError(f"Cannot read {path.name}: {exc}") from exc

    rows = frame_to_rows(
        df,
        tenant_id=tenant_id,
        data_type=label,
        entity_column=entity_column,
        period_column=period_column,
    )
    written = store.add_rows(rows)
    logger.info("Ingested %s as '%s': %d row(s)", path.name, label, written)
    return {
        "file": path.name,
        "data_type": label,
        "rows": written,
        "columns": len(df.columns),
        "with_entity": sum(1 for r in rows if r.entity_id is not None),
    }
