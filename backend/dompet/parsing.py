"""Parsers for the free-text fields collected by conversation flows."""

from __future__ import annotations

import re
from datetime import date

AMOUNT_MULTIPLIERS: dict[str, int] = {
    "k": 1_000,
    "rb": 1_000,
    "ribu": 1_000,
    "jt": 1_000_000,
    "j": 1_000_000,
    "juta": 1_000_000,
    "m": 1_000_000,
    "b": 1_000_000_000,
    "t": 1_000_000_000,
    "miliar": 1_000_000_000,
}

_NUMBER_RE = re.compile(r"\d[\d.,]*")
_SUFFIX_RE = re.compile(r"\s*([a-z]+)")
_DATE_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")


def _normalise_number(raw: str, has_multiplier: bool) -> float | None:
    dots, commas = raw.count("."), raw.count(",")
    if dots and commas:
        decimal = "." if raw.rfind(".") > raw.rfind(",") else ","
        thousands = "," if decimal == "." else "."
        cleaned = raw.replace(thousands, "").replace(decimal, ".")
    elif dots or commas:
        separator = "." if dots else ","
        if dots + commas > 1:
            cleaned = raw.replace(separator, "")
        else:
            head, tail = raw.split(separator)
            # "25.000" is twenty-five thousand, "1.5jt" is one and a half million.
            if len(tail) == 3 and not has_multiplier:
                cleaned = head + tail
            else:
                cleaned = f"{head}.{tail}"
    else:
        cleaned = raw
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_amount(text: str) -> float | None:
    """Parse amounts such as ``25rb``, ``1.5jt``, ``Rp 25.000`` or ``2,5 juta``.

    Exactly one multiplier is applied, chosen from the word directly after the
    number. Returns ``None`` when the text holds no usable number.
    """
    lowered = text.strip().lower()
    match = _NUMBER_RE.search(lowered)
    if not match:
        return None
    raw = match.group(0).rstrip(".,")
    suffix = _SUFFIX_RE.match(lowered[match.end():])
    multiplier = AMOUNT_MULTIPLIERS.get(suffix.group(1), 1) if suffix else 1
    value = _normalise_number(raw, has_multiplier=multiplier != 1)
    if value is None:
        return None
    return round(value * multiplier, 2)


def parse_date(text: str) -> date | None:
    """Parse ``DD-MM-YYYY`` (or ``DD/MM/YYYY``) into a date."""
    match = _DATE_RE.match(text.strip())
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_keywords(text: str) -> list[str]:
    return [item.strip().lower() for item in text.split(",") if item.strip()]
