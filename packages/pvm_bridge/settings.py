"""Processing settings and column-detection heuristics.

Values here are immutable and passed explicitly to the components that need
them; nothing reads module globals at row-processing time. Environment
overrides (``PVM_CHUNK_SIZE``, ``PVM_PROGRESS_INTERVAL``,
``PVM_CANCEL_POLL_ROWS``) are resolved once by :func:`load_settings`.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_PROGRESS_INTERVAL = 100
DEFAULT_CANCEL_POLL_ROWS = 10_000
DEFAULT_DATE_SAMPLE_SIZE = 5
DEFAULT_SCAN_ROWS = 100


@dataclass(frozen=True, slots=True)
class ProcessingSettings:
    """Knobs for a single analysis run.

    Attributes
    ----------
    chunk_size:
        Bytes requested from the input per read.
    progress_interval:
        Progress callbacks fire every ``progress_interval`` data rows.
    cancel_poll_rows:
        Within a large chunk, the cancellation flag is re-checked every
        ``cancel_poll_rows`` rows (it is always checked once per chunk).
    date_sample_size:
        Distinct date values sampled for format detection.
    scan_rows:
        Data rows read by the inspection pass.
    max_recommended_dimensions / max_recommended_combinations:
        Soft limits; exceeding them logs a warning and never blocks a run.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL
    cancel_poll_rows: int = DEFAULT_CANCEL_POLL_ROWS
    date_sample_size: int = DEFAULT_DATE_SAMPLE_SIZE
    scan_rows: int = DEFAULT_SCAN_ROWS
    max_recommended_dimensions: int = 4
    max_recommended_combinations: int = 100_000

    def __post_init__(self) -> None:
        for name in (
            "chunk_size",
            "progress_interval",
            "cancel_poll_rows",
            "date_sample_size",
            "scan_rows",
        ):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
                raise ValueError(f"ProcessingSettings.{name} must be a positive integer")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings() -> ProcessingSettings:
    """Build :class:`ProcessingSettings` honouring environment overrides."""

    return ProcessingSettings(
        chunk_size=_env_int("PVM_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        progress_interval=_env_int("PVM_PROGRESS_INTERVAL", DEFAULT_PROGRESS_INTERVAL),
        cancel_poll_rows=_env_int("PVM_CANCEL_POLL_ROWS", DEFAULT_CANCEL_POLL_ROWS),
    )


# ---------------------------------------------------------------------------
# Column auto-detection patterns (ordered; first match wins)
# ---------------------------------------------------------------------------


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(s, re.IGNORECASE) for s in sources)


COLUMN_PATTERNS: Mapping[str, tuple[re.Pattern[str], ...]] = MappingProxyType(
    {
        "date": _patterns(
            r"^date$",
            r"^transaction.?date$",
            r"^invoice.?date$",
            r"^order.?date$",
            r"^sale.?date$",
            r"date",
        ),
        "sales": _patterns(
            r"^sales$",
            r"^revenue$",
            r"^net.?sales$",
            r"^total.?sales$",
            r"^amount$",
            r"^sales.?amount$",
            r"sales",
            r"revenue",
        ),
        "quantity": _patterns(
            r"^quantity$",
            r"^qty$",
            r"^volume$",
            r"^units$",
            r"^count$",
            r"quantity",
            r"volume",
        ),
        "cost": _patterns(
            r"^cost$",
            r"^cogs$",
            r"^cost.?of.?goods$",
            r"^total.?cost$",
            r"^unit.?cost$",
            r"cost",
        ),
    }
)


__all__ = [
    "COLUMN_PATTERNS",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_PROGRESS_INTERVAL",
    "ProcessingSettings",
    "load_settings",
]
