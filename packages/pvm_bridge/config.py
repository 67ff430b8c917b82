"""Validated, immutable analysis configuration.

An :class:`AnalysisConfig` is built once by the caller (the CLI, or library
code via :mod:`pvm_bridge.api`) and handed to every component of a run. Each
component reads only the slice it needs: the aggregation engine reads the
column mapping and the period layout, the bridge engine reads the mode and
price definition.

Mistakes are rejected here, before any row is read. Pydantic raises
``ValidationError`` for malformed values; :meth:`AnalysisConfig.validate_against_headers`
raises :class:`~pvm_bridge.errors.ConfigurationError` when a mapped column is
missing from the input.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ConfigurationError
from .models import BridgeMode, FiscalYearWindow, PeriodRange, PriceDefinition
from .periods import get_date_format, validate_period_config


class ColumnMapping(BaseModel):
    """Which input columns carry the date, the measures and the dimensions."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    date: str = Field(min_length=1)
    sales: str = Field(min_length=1)
    quantity: str = Field(min_length=1)
    cost: str | None = None
    dimensions: tuple[str, ...] = ()

    @field_validator("cost")
    @classmethod
    def _blank_cost_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v

    @field_validator("dimensions")
    @classmethod
    def _unique_dimensions(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(s.strip() for s in v)
        if any(not s for s in cleaned):
            raise ValueError("dimension column names must be non-empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("dimension columns must be unique")
        return cleaned

    def required_columns(self) -> tuple[str, ...]:
        """Every column the run will read, in mapping order."""

        cols = [self.date, self.sales, self.quantity]
        if self.cost is not None:
            cols.append(self.cost)
        cols.extend(self.dimensions)
        return tuple(cols)


class AnalysisConfig(BaseModel):
    """Everything a run needs to know besides the input itself.

    Exactly one period layout must be supplied: either ``py_range`` and
    ``cy_range`` (two-period mode), or ``fiscal_years`` (multi-year mode,
    at least two non-overlapping windows in ascending order).

    ``date_format`` may be ``None``; :func:`pvm_bridge.api.analyze_csv` fills
    it from the input before running, and the aggregation engine otherwise
    detects the format per value.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    columns: ColumnMapping
    date_format: str | None = None
    fy_end_month: int = Field(default=12, ge=1, le=12)
    py_range: PeriodRange | None = None
    cy_range: PeriodRange | None = None
    fiscal_years: tuple[FiscalYearWindow, ...] = ()
    mode: BridgeMode = BridgeMode.PVM
    price_definition: PriceDefinition = PriceDefinition.MARGIN_PER_UNIT

    @field_validator("date_format")
    @classmethod
    def _known_date_format(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if get_date_format(v) is None:
            raise ValueError(f"unknown date format {v!r}")
        return v

    @model_validator(mode="after")
    def _check_layout(self) -> AnalysisConfig:
        has_two_period = self.py_range is not None or self.cy_range is not None
        has_multi_year = bool(self.fiscal_years)

        if has_two_period and has_multi_year:
            raise ValueError("give either py_range/cy_range or fiscal_years, not both")
        if not has_two_period and not has_multi_year:
            raise ValueError("a period layout is required: py_range/cy_range or fiscal_years")

        if has_two_period:
            if self.py_range is None or self.cy_range is None:
                raise ValueError("two-period mode needs both py_range and cy_range")
        else:
            if len(self.fiscal_years) < 2:
                raise ValueError("multi-year mode needs at least two fiscal years")
            for prev, cur in zip(self.fiscal_years, self.fiscal_years[1:], strict=False):
                if cur.fiscal_year <= prev.fiscal_year:
                    raise ValueError("fiscal_years must be in ascending order without repeats")
                if cur.start <= prev.end:
                    raise ValueError(
                        f"fiscal year windows {prev.label} and {cur.label} overlap"
                    )

        if self.mode is BridgeMode.GM and self.columns.cost is None:
            raise ValueError("gross-margin mode needs a cost column")
        return self

    # -- derived -------------------------------------------------------------

    @property
    def is_multi_year(self) -> bool:
        return bool(self.fiscal_years)

    def period_warnings(self) -> tuple[str, ...]:
        """Non-fatal period problems (overlap, long gap); empty in multi-year mode."""

        if self.py_range is None or self.cy_range is None:
            return ()
        return validate_period_config(self.py_range, self.cy_range).warnings

    def validate_against_headers(self, headers: Sequence[str]) -> None:
        """Raise :class:`ConfigurationError` if a mapped column is not in ``headers``."""

        present = set(headers)
        missing = [c for c in self.columns.required_columns() if c not in present]
        if missing:
            raise ConfigurationError(
                "columns not found in input header: " + ", ".join(repr(c) for c in missing)
            )


__all__ = ["AnalysisConfig", "ColumnMapping"]
