"""Exception hierarchy for payline.

Only the edges raise these: configuration loading, the DuckDB store and the
CLI. The convergence and evaluation stages absorb data problems into zero
values, gaps and trace notes instead of raising.
"""

from __future__ import annotations

from typing import Any


class PaylineError(Exception):
    """Base exception for all payline errors."""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}
        self.suggestions: list[str] = suggestions or []

    def __str__(self) -> str:
        base = self.message or ""
        if self.suggestions:
            return f"{base} -- Suggestions: {'; '.join(self.suggestions)}"
        return base


class ConfigurationError(PaylineError):
    def __init__(self, message: str, *, config_field: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.config_field = config_field

    def __str__(self) -> str:
        base = super().__str__()
        if self.config_field:
            return f"[{self.config_field}] {base}"
        return base


class StorageError(PaylineError):
    """The DuckDB store could not be read or written."""


class PlanNotFoundError(StorageError):
    def __init__(self, tenant_id: str, plan_id: str):
        super().__init__(
            f"Plan '{plan_id}' not found for tenant '{tenant_id}'",
            context={"tenant_id": tenant_id, "plan_id": plan_id},
            suggestions=["Import the plan with 'payline plan import' first"],
        )
