"""Numeric cell parsing shared by the aggregation engine and column detection."""

from __future__ import annotations

import math
import re

_CURRENCY_SYMBOLS = "$€£¥"
_STRIP_RE = re.compile(r"[$€£¥,]")


def parse_number(raw: object) -> float:
    """Parse a spreadsheet-style numeric cell into a float.

    Handles currency symbols, thousands separators, a leading sign, and
    accounting parentheses (``"(1,234.50)"`` is ``-1234.5``). Signs, currency
    symbols and parentheses may appear in any order, e.g. ``"-$(12)"``.

    Raises ``ValueError`` when the residual text is not a finite number; an
    empty cell is a failure, not zero.
    """

    if raw is None:
        raise ValueError("number is required")
    s = str(raw).strip()
    if not s:
        raise ValueError("number is empty")

    negative = False
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        if s and s[0] in _CURRENCY_SYMBOLS:
            s = s[1:].lstrip()
            changed = True
        if len(s) >= 2 and s.startswith("(") and s.endswith(")"):
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = _STRIP_RE.sub("", s).strip()
    try:
        value = float(s)
    except ValueError as exc:
        raise ValueError(f"invalid number: {raw!r}") from exc
    if not math.isfinite(value):
        raise ValueError(f"invalid number: {raw!r}")
    return -abs(value) if negative else value


def is_numeric(raw: object) -> bool:
    """Return ``True`` when :func:`parse_number` would accept ``raw``."""

    try:
        parse_number(raw)
    except ValueError:
        return False
    return True


__all__ = ["is_numeric", "parse_number"]
