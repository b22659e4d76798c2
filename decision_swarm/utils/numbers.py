"""Numeric token extraction with Chinese and English magnitude units."""

from __future__ import annotations

import re

_MULTIPLIERS: dict[str, float] = {
    "万亿": 1e12,
    "亿": 1e8,
    "万": 1e4,
    "千": 1e3,
    "k": 1e3,
    "thousand": 1e3,
    "m": 1e6,
    "million": 1e6,
    "b": 1e9,
    "billion": 1e9,
    "%": 1.0,
}

NUMBER_RE = re.compile(
    r"(?<![\d.])(\d+(?:,\d{3})*(?:\.\d+)?)\s*"
    r"(万亿|亿|万|千|%|thousand\b|million\b|billion\b|[kmb]\b)?",
    re.IGNORECASE,
)


def to_float(number: str) -> float:
    return float(number.replace(",", ""))


def scale(number: str, unit: str | None) -> float:
    """Apply a magnitude unit to a numeric string: ("12", "万") -> 120000.0."""
    value = to_float(number)
    if not unit:
        return value
    return value * _MULTIPLIERS.get(unit.lower(), 1.0)


def extract_numbers(text: str) -> list[tuple[float, float]]:
    """Every numeric token in ``text`` as (raw value, unit-scaled value)."""
    found: list[tuple[float, float]] = []
    for m in NUMBER_RE.finditer(text):
        try:
            raw = to_float(m.group(1))
        except ValueError:
            continue
        found.append((raw, scale(m.group(1), m.group(2))))
    return found


def format_wan(value: float) -> str:
    """Render a yuan amount in 万 without trailing zeros: 130000 -> "13"."""
    return f"{value / 1e4:g}"
