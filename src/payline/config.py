"""Runtime settings for payline.

Settings come from ``PL_*`` environment variables. A local ``.env`` file is
loaded first on a best-effort basis; variables already present in the
environment always win.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

from payline.errors import ConfigurationError

DEFAULT_DB_PATH = "./data/payline.duckdb"
DEFAULT_LOG_DIR = "./logs"


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one payline process."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    max_workers: int = 4
    inventory_row_limit: int = 500
    sample_per_type: int = 30
    min_match_confidence: float = 0.5
    curated_patterns_file: Path | None = None
    log_level: str = "INFO"
    log_dir: Path = Path(DEFAULT_LOG_DIR)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {k: str(v) if isinstance(v, Path) else v for k, v in data.items()}


def load_dotenv_file(path: Path | str = ".env") -> None:
    """Best-effort env loader for local runs."""
    env_path = Path(path)
    if not env_path.exists():
        return

    for raw in env_path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _int_var(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"Expected an integer, got '{raw}'", config_field=name
        ) from None
    if value < minimum:
        raise ConfigurationError(f"Must be >= {minimum}, got {value}", config_field=name)
    return value


def _float_var(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"Expected a number, got '{raw}'", config_field=name) from None
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"Must be within [0, 1], got {value}", config_field=name)
    return value


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    env_file: Path | str | None = ".env",
) -> Settings:
    """Build settings from the environment.

    Args:
        env: Mapping to read instead of ``os.environ`` (tests pass a dict)
        env_file: Optional dotenv file loaded into ``os.environ`` first;
            ignored when ``env`` is given

    Returns:
        Settings with defaults filled in

    Raises:
        ConfigurationError: If a variable holds an invalid value
    """
    if env is None:
        if env_file:
            load_dotenv_file(env_file)
        env = os.environ

    log_level = env.get("PL_LOG_LEVEL", "INFO").strip().upper() or "INFO"
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError(f"Unknown log level '{log_level}'", config_field="PL_LOG_LEVEL")

    patterns_file = env.get("PL_CURATED_PATTERNS_FILE", "").strip()
    patterns_path = Path(patterns_file).expanduser() if patterns_file else None
    if patterns_path is not None and not patterns_path.exists():
        raise ConfigurationError(
            f"Curated patterns file does not exist: {patterns_path}",
            config_field="PL_CURATED_PATTERNS_FILE",
        )

    return Settings(
        db_path=Path(env.get("PL_DB_PATH", DEFAULT_DB_PATH)).expanduser(),
        max_workers=_int_var(env, "PL_MAX_WORKERS", 4),
        inventory_row_limit=_int_var(env, "PL_INVENTORY_ROW_LIMIT", 500),
        sample_per_type=_int_var(env, "PL_SAMPLE_PER_TYPE", 30),
        min_match_confidence=_float_var(env, "PL_MIN_MATCH_CONFIDENCE", 0.5),
        curated_patterns_file=patterns_path,
        log_level=log_level,
        log_dir=Path(env.get("PL_LOG_DIR", DEFAULT_LOG_DIR)).expanduser(),
    )
