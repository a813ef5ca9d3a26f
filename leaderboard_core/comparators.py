"""Result comparators per scoring mode.

Rules:
- A missing result always sorts after any present result.
- time: "mm:ss" style, colon-separated integer segments in base 60; lower is better.
- reps / weight: integer; higher is better.
- Values that cannot be parsed under the mode are treated as missing.
- Equal values compare as 0; callers sort stably so input order breaks ties.
"""
from __future__ import annotations

from typing import Any

from .types import ScoringMode


class _Missing:
    """Sentinel for "no recorded value"; presentation decides how to render it."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Missing":
        return self

    def __deepcopy__(self, memo: dict) -> "_Missing":
        return self


MISSING = _Missing()


def coerce_mode(mode: Any) -> ScoringMode:
    """Normalize a scoring mode value (enum, wire value or long spelling).

    Examples:
        - "time" / "elapsed-time" → ScoringMode.TIME
        - "reps" / "repetition-count" → ScoringMode.REPS
        - "weight" / "load-lifted" → ScoringMode.WEIGHT

    Raises:
        ValueError: unknown mode
    """
    if isinstance(mode, ScoringMode):
        return mode
    if isinstance(mode, str):
        lowered = mode.strip().lower()
        aliases = {
            "time": ScoringMode.TIME,
            "elapsed-time": ScoringMode.TIME,
            "for-time": ScoringMode.TIME,
            "reps": ScoringMode.REPS,
            "repetition-count": ScoringMode.REPS,
            "weight": ScoringMode.WEIGHT,
            "load-lifted": ScoringMode.WEIGHT,
        }
        if lowered in aliases:
            return aliases[lowered]
    raise ValueError(f"unknown scoring mode: {mode!r}")


def _parse_int(raw: str) -> int | None:
    stripped = raw.strip()
    if not stripped:
        return None
    # int() accepts "1_000" and surrounding whitespace; only plain digits count here
    sign = 1
    if stripped[0] in "+-":
        sign = -1 if stripped[0] == "-" else 1
        stripped = stripped[1:]
    if not stripped.isdigit():
        return None
    return sign * int(stripped)


def parse_elapsed_time(raw: Any) -> int | None:
    """Parse an elapsed time to total seconds.

    Examples:
        - "7:32" → 452
        - "1:02:03" → 3723
        - "95" → 95
        - "7:xx" → None
    """
    if raw is None or raw is MISSING:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw >= 0 else None
    if not isinstance(raw, str):
        return None
    total = 0
    for segment in raw.split(":"):
        value = _parse_int(segment)
        if value is None or value < 0:
            return None
        total = total * 60 + value
    return total


def parse_count(raw: Any) -> int | None:
    """Parse a repetition count or load to an integer, or None if unparsable."""
    if raw is None or raw is MISSING:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        return None
    return _parse_int(raw)


def parse_value(raw: Any, mode: Any) -> int | None:
    """Numeric value of a raw result under `mode`; None means missing."""
    if coerce_mode(mode) is ScoringMode.TIME:
        return parse_elapsed_time(raw)
    return parse_count(raw)


def sort_key(raw: Any, mode: Any) -> tuple[int, int]:
    """Ascending sort key: present values first, best value first."""
    scoring_mode = coerce_mode(mode)
    value = parse_value(raw, scoring_mode)
    if value is None:
        return (1, 0)
    if scoring_mode is ScoringMode.TIME:
        return (0, value)
    return (0, -value)


def compare(a: Any, b: Any, mode: Any) -> int:
    """Compare two raw results under `mode`.

    Returns -1 when `a` ranks better, 1 when `b` ranks better, 0 when equal
    (including both missing).
    """
    key_a = sort_key(a, mode)
    key_b = sort_key(b, mode)
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


__all__ = [
    "MISSING",
    "coerce_mode",
    "compare",
    "parse_count",
    "parse_elapsed_time",
    "parse_value",
    "sort_key",
]
