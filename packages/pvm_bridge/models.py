"""Data models and type aliases for ``pvm_bridge``.

Everything that crosses a component boundary is defined here: raw records
produced by the parser, the period descriptors consumed by the classifier,
the finalized aggregation handed to the bridge engine, and the bridge results
handed to whatever renders or serializes them. Only
:class:`PeriodAccumulator` is mutable; it lives inside the aggregation engine
for the duration of a run and is frozen into :class:`PeriodTotals` at
finalize.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from types import MappingProxyType
from typing import TypeAlias

# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

Record: TypeAlias = Mapping[str, str]
"""One input row keyed by header name, values exactly as tokenized."""


# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------


class BridgeMode(StrEnum):
    """Metric being bridged: sales (``pvm``) or gross margin (``gm``)."""

    PVM = "pvm"
    GM = "gm"


class PriceDefinition(StrEnum):
    """What "price" means in gross-margin mode."""

    MARGIN_PER_UNIT = "margin-per-unit"
    SALES_PER_UNIT = "sales-per-unit"


class ComparisonPreset(StrEnum):
    """Standard two-period comparisons."""

    LTM = "ltm"
    FISCAL_YEAR = "fiscal-year"


class Classification(StrEnum):
    NEW = "new"
    DISCONTINUED = "discontinued"
    CONTINUING = "continuing"


class PeriodTag(StrEnum):
    """Period labels used in two-period mode."""

    PY = "PY"
    CY = "CY"


PeriodKey: TypeAlias = PeriodTag | int
"""``PY``/``CY`` in two-period mode, the fiscal-year number in multi-year mode."""


# ---------------------------------------------------------------------------
# Periods
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PeriodRange:
    """An inclusive calendar-date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"period start {self.start} is after period end {self.end}")

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end


@dataclass(frozen=True, slots=True)
class FiscalYearWindow:
    """A fiscal year and its date range.

    ``fully_covered`` records whether the observed data spans the whole range;
    it is informational and does not affect classification.
    """

    fiscal_year: int
    start: date
    end: date
    fully_covered: bool = True

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"fiscal year {self.fiscal_year}: start {self.start} is after end {self.end}"
            )

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end

    @property
    def label(self) -> str:
        return f"FY {self.fiscal_year}"

    @property
    def range(self) -> PeriodRange:
        return PeriodRange(self.start, self.end)


# ---------------------------------------------------------------------------
# Accumulation
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class PeriodAccumulator:
    """Running sums for one (dimension bucket, period) pair during a run."""

    sales: float = 0.0
    quantity: float = 0.0
    cost: float = 0.0
    count: int = 0

    def add(self, sales: float, quantity: float, cost: float) -> None:
        self.sales += sales
        self.quantity += quantity
        self.cost += cost
        self.count += 1

    def freeze(self) -> PeriodTotals:
        return PeriodTotals(self.sales, self.quantity, self.cost, self.count)


@dataclass(frozen=True, slots=True)
class PeriodTotals:
    """Finalized sums for one (dimension bucket, period) pair."""

    sales: float = 0.0
    quantity: float = 0.0
    cost: float = 0.0
    count: int = 0

    def __add__(self, other: PeriodTotals) -> PeriodTotals:
        return PeriodTotals(
            self.sales + other.sales,
            self.quantity + other.quantity,
            self.cost + other.cost,
            self.count + other.count,
        )


EMPTY_TOTALS = PeriodTotals()


@dataclass(frozen=True, slots=True)
class AggregationStats:
    """Row accounting for a run.

    Invariants: ``total_rows == included_rows + excluded_rows`` and
    ``excluded_rows == parse_errors + outside_period_rows + negative_rows``.
    ``period_rows`` counts included rows per period key.
    """

    total_rows: int = 0
    included_rows: int = 0
    excluded_rows: int = 0
    parse_errors: int = 0
    outside_period_rows: int = 0
    negative_rows: int = 0
    unique_keys: int = 0
    period_rows: Mapping[PeriodKey, int] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class AggregatedBucket:
    """One dimension bucket with its per-period totals.

    ``periods`` has an entry for every period key of the run (zero totals where
    the bucket had no included rows). :meth:`period` also returns zero totals
    for keys outside the run.
    """

    key: str
    dimensions: Mapping[str, str]
    periods: Mapping[PeriodKey, PeriodTotals]

    def period(self, tag: PeriodKey) -> PeriodTotals:
        return self.periods.get(tag, EMPTY_TOTALS)

    @property
    def py(self) -> PeriodTotals:
        return self.period(PeriodTag.PY)

    @property
    def cy(self) -> PeriodTotals:
        return self.period(PeriodTag.CY)


@dataclass(frozen=True, slots=True)
class AggregationResult:
    """The finalized, read-only output of the aggregation engine.

    ``buckets`` are in first-seen order. ``negatives`` is the separate ledger
    of rows excluded for non-positive sales or quantity, keyed like the
    bucket periods; it is never merged into ``buckets``.
    """

    buckets: tuple[AggregatedBucket, ...]
    negatives: Mapping[PeriodKey, PeriodTotals]
    stats: AggregationStats
    date_min: date | None
    date_max: date | None
    dimensions: tuple[str, ...]
    py_range: PeriodRange | None = None
    cy_range: PeriodRange | None = None
    fiscal_years: tuple[FiscalYearWindow, ...] = ()
    fy_end_month: int = 12

    @property
    def is_multi_year(self) -> bool:
        return bool(self.fiscal_years)

    @property
    def period_keys(self) -> tuple[PeriodKey, ...]:
        if self.is_multi_year:
            return tuple(w.fiscal_year for w in self.fiscal_years)
        return (PeriodTag.PY, PeriodTag.CY)


# ---------------------------------------------------------------------------
# Bridge results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PeriodDetail:
    """Per-period inputs to a bucket bridge, in the metric being bridged.

    ``value`` is sales (PVM, or GM with sales-per-unit) or sales minus cost
    (GM with margin-per-unit); ``price`` is ``value / volume`` or 0.
    """

    value: float
    price: float
    volume: float
    sales: float
    cost: float
    count: int


@dataclass(frozen=True, slots=True)
class BridgeBucketResult:
    """Price/Volume/Mix(/Cost) attribution for one bucket and period pair."""

    key: str
    dimensions: Mapping[str, str]
    py: PeriodDetail
    cy: PeriodDetail
    total_change: float
    price_impact: float
    volume_impact: float
    mix_impact: float
    cost_impact: float
    classification: Classification
    is_new: bool
    is_discontinued: bool


@dataclass(frozen=True, slots=True)
class PeriodSummary:
    """Summed per-period detail across buckets."""

    value: float = 0.0
    sales: float = 0.0
    quantity: float = 0.0
    cost: float = 0.0
    count: int = 0


@dataclass(frozen=True, slots=True)
class ClassificationCounts:
    total: int = 0
    new: int = 0
    discontinued: int = 0
    continuing: int = 0


@dataclass(frozen=True, slots=True)
class BridgeSummary:
    """Totals across buckets, summed after per-bucket decomposition.

    Percentages are expressed in percent. Impacts are relative to
    ``|total_change|`` (to ``|py.value|`` in year-pair summaries) and
    ``change_pct`` to ``|py.value|``, each 0 when its denominator is 0.
    """

    py: PeriodSummary
    cy: PeriodSummary
    total_change: float
    price_impact: float
    volume_impact: float
    mix_impact: float
    cost_impact: float
    price_impact_pct: float
    volume_impact_pct: float
    mix_impact_pct: float
    cost_impact_pct: float
    change_pct: float
    counts: ClassificationCounts


@dataclass(frozen=True, slots=True)
class BridgeResult:
    """Two-period bridge: per-bucket detail plus summary."""

    detail: tuple[BridgeBucketResult, ...]
    summary: BridgeSummary
    mode: BridgeMode
    price_definition: PriceDefinition


@dataclass(frozen=True, slots=True)
class MultiYearBucketResult:
    """Chained year-over-year bridges for one bucket, keyed ``"{a}-{b}"``."""

    key: str
    dimensions: Mapping[str, str]
    bridges: Mapping[str, BridgeBucketResult]


@dataclass(frozen=True, slots=True)
class MultiYearSummary:
    years: Mapping[int, PeriodSummary]
    bridges: Mapping[str, BridgeSummary]


@dataclass(frozen=True, slots=True)
class MultiYearBridgeResult:
    """Chained bridge across consecutive fiscal years."""

    years: tuple[int, ...]
    detail: tuple[MultiYearBucketResult, ...]
    summary: MultiYearSummary
    mode: BridgeMode
    price_definition: PriceDefinition

    @property
    def pair_keys(self) -> tuple[str, ...]:
        return tuple(f"{a}-{b}" for a, b in zip(self.years, self.years[1:], strict=False))

    def pair_detail(self, pair_key: str) -> tuple[BridgeBucketResult, ...]:
        """Per-bucket results for one year pair, in bucket order."""

        return tuple(b.bridges[pair_key] for b in self.detail if pair_key in b.bridges)


__all__ = [
    "EMPTY_TOTALS",
    "AggregatedBucket",
    "AggregationResult",
    "AggregationStats",
    "BridgeBucketResult",
    "BridgeMode",
    "BridgeResult",
    "BridgeSummary",
    "Classification",
    "ClassificationCounts",
    "ComparisonPreset",
    "FiscalYearWindow",
    "MultiYearBridgeResult",
    "MultiYearBucketResult",
    "MultiYearSummary",
    "PeriodAccumulator",
    "PeriodDetail",
    "PeriodKey",
    "PeriodRange",
    "PeriodSummary",
    "PeriodTag",
    "PeriodTotals",
    "PriceDefinition",
    "Record",
]
