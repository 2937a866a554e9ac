"""Numeric coercion shared by the resolver and the intent parser."""

from __future__ import annotations

import math
from numbers import Real
from typing import Any


def safe_number(value: Any) -> float:
    """Coerce a raw cell value to float; anything unusable becomes 0.0.

    Numbers pass through, booleans count as 1/0, numeric strings are parsed,
    and None, blanks, non-numeric text, NaN and infinities all yield 0.0.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, Real):
        result = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            result = float(text)
        except ValueError:
            return 0.0
    else:
        return 0.0
    return result if math.isfinite(result) else 0.0


def is_numeric_literal(value: Any) -> bool:
    """True for real numbers and strings that parse as finite floats."""
    if isinstance(value, bool):
        return False
    if isinstance(value, Real):
        return math.isfinite(float(value))
    if isinstance(value, str) and value.strip():
        try:
            return math.isfinite(float(value.strip()))
        except ValueError:
            return False
    return False
