"""Utility helpers shared across the formulation services."""

from __future__ import annotations

import math
from typing import Any, Iterable

# Accepted recipe statuses, stored exactly as written here.
_RECIPE_STATUSES: set[str] = {"Completed", "Incomplete"}

COMPLETE_TOLERANCE = 0.01


def to_number(value: Any) -> float:
    """Return *value* as a float, treating blanks and junk as 0.

    Mirrors how form inputs are read: ``""``, ``None``, ``"abc"``, NaN and
    infinities all count as 0 so that aggregate maths never raises.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def is_numeric(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return not (math.isnan(value) or math.isinf(value))
    try:
        number = float(str(value).strip())
    except ValueError:
        return False
    return not (math.isnan(number) or math.isinf(number))


def strip_leading_zero(value: Any) -> Any:
    """Drop a single leading zero from typed input ("05" -> "5", "0.5" kept)."""
    if isinstance(value, str) and len(value) > 1 and value.startswith("0") and value[1] != ".":
        return value[1:]
    return value


def safe_ratio(numerator: float, denominator: float) -> float:
    """Divide, returning 0 instead of raising or producing NaN/inf."""
    if not denominator:
        return 0.0
    result = numerator / denominator
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


def recipe_status(percentages: Iterable[Any]) -> str:
    """Return ``Completed`` when the percentages add up to 100, else ``Incomplete``."""
    total = sum(to_number(value) for value in percentages)
    return "Completed" if abs(total - 100) < COMPLETE_TOLERANCE else "Incomplete"


def normalize_recipe_status(value: str | None, *, default: str = "Incomplete") -> str:
    """Return a canonical recipe status value.

    Matching is case-insensitive; anything else falls back to *default*
    (which is validated to ensure it is part of the allowed statuses).
    """
    if default not in _RECIPE_STATUSES:
        raise ValueError(f"Invalid default status '{default}'")

    if value is None:
        return default

    normalized = value.strip().capitalize()
    return normalized if normalized in _RECIPE_STATUSES else default


__all__ = [
    "COMPLETE_TOLERANCE",
    "is_numeric",
    "normalize_recipe_status",
    "recipe_status",
    "safe_ratio",
    "strip_leading_zero",
    "to_number",
]
