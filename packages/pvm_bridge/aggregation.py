"""Aggregation Engine: one pass over records into per-bucket period sums.

Lifecycle of a run::

    ctx = create_context(config)
    for record in records:
        process_row(ctx, record)
    result = finalize(ctx)

Buckets live in a small arena: the tuple of dimension values maps to an
integer id, and the id indexes parallel lists of dimension tuples and
per-period accumulators. The display key string is only built at finalize.

Rows never raise. Each rejected row increments exactly one of the
parse-error, outside-period or negative counters, so
``total_rows == included_rows + excluded_rows`` holds at every point.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType

from .config import AnalysisConfig
from .logging_setup import get_logger
from .models import (
    AggregatedBucket,
    AggregationResult,
    AggregationStats,
    FiscalYearWindow,
    PeriodAccumulator,
    PeriodKey,
    PeriodTag,
    PeriodTotals,
    Record,
)
from .numeric import parse_number
from .periods import classify_period, parse_date
from .settings import ProcessingSettings

_logger = get_logger("pvm_bridge.aggregation")

TOTAL_KEY = "__TOTAL__"
UNKNOWN = "Unknown"
KEY_SEPARATOR = "|||"


@dataclass(slots=True)
class AggregationContext:
    """Mutable state of one run. Owned by the caller driving :func:`process_row`."""

    config: AnalysisConfig
    settings: ProcessingSettings
    windows: tuple[FiscalYearWindow, ...]
    period_keys: tuple[PeriodKey, ...]

    # Bucket arena
    key_ids: dict[tuple[str, ...], int] = field(default_factory=dict)
    bucket_dims: list[tuple[str, ...]] = field(default_factory=list)
    bucket_periods: list[dict[PeriodKey, PeriodAccumulator]] = field(default_factory=list)

    negatives: dict[PeriodKey, PeriodAccumulator] = field(default_factory=dict)
    period_rows: dict[PeriodKey, int] = field(default_factory=dict)

    total_rows: int = 0
    included_rows: int = 0
    parse_errors: int = 0
    outside_period_rows: int = 0
    negative_rows: int = 0

    date_min: date | None = None
    date_max: date | None = None
    finalized: bool = False

    @property
    def excluded_rows(self) -> int:
        return self.parse_errors + self.outside_period_rows + self.negative_rows

    def snapshot_stats(self) -> AggregationStats:
        """Row accounting so far (safe to call at any point of a run)."""

        return AggregationStats(
            total_rows=self.total_rows,
            included_rows=self.included_rows,
            excluded_rows=self.excluded_rows,
            parse_errors=self.parse_errors,
            outside_period_rows=self.outside_period_rows,
            negative_rows=self.negative_rows,
            unique_keys=len(self.bucket_dims),
            period_rows=MappingProxyType(dict(self.period_rows)),
        )


def create_context(
    config: AnalysisConfig, *, settings: ProcessingSettings | None = None
) -> AggregationContext:
    settings = settings or ProcessingSettings()
    windows = config.fiscal_years
    keys: tuple[PeriodKey, ...]
    if windows:
        keys = tuple(w.fiscal_year for w in windows)
    else:
        keys = (PeriodTag.PY, PeriodTag.CY)

    dims = config.columns.dimensions
    if len(dims) > settings.max_recommended_dimensions:
        _logger.warning(
            "%d dimensions selected; more than %d can produce a very large number of buckets",
            len(dims),
            settings.max_recommended_dimensions,
        )

    ctx = AggregationContext(
        config=config,
        settings=settings,
        windows=windows,
        period_keys=keys,
    )
    if not windows:
        ctx.negatives = {PeriodTag.PY: PeriodAccumulator(), PeriodTag.CY: PeriodAccumulator()}
    return ctx


def _classify(ctx: AggregationContext, day: date) -> PeriodKey | None:
    if ctx.windows:
        for window in ctx.windows:
            if window.start <= day <= window.end:
                return window.fiscal_year
        return None
    config = ctx.config
    assert config.py_range is not None and config.cy_range is not None
    return classify_period(day, config.py_range, config.cy_range)


def process_row(ctx: AggregationContext, record: Record) -> bool:
    """Fold one record into ``ctx``. Returns ``True`` when the row was included."""

    columns = ctx.config.columns
    ctx.total_rows += 1

    day = parse_date(record.get(columns.date), ctx.config.date_format)
    if day is None:
        ctx.parse_errors += 1
        return False

    if ctx.date_min is None or day < ctx.date_min:
        ctx.date_min = day
    if ctx.date_max is None or day > ctx.date_max:
        ctx.date_max = day

    period = _classify(ctx, day)
    if period is None:
        ctx.outside_period_rows += 1
        return False

    try:
        sales = parse_number(record.get(columns.sales))
        quantity = parse_number(record.get(columns.quantity))
        cost = parse_number(record.get(columns.cost)) if columns.cost is not None else 0.0
    except ValueError:
        ctx.parse_errors += 1
        return False

    if sales <= 0 or quantity <= 0:
        ledger = ctx.negatives.get(period)
        if ledger is None:
            ledger = ctx.negatives[period] = PeriodAccumulator()
        ledger.add(sales, quantity, cost)
        ctx.negative_rows += 1
        return False

    values = tuple(
        (record.get(dim) or "").strip() or UNKNOWN for dim in columns.dimensions
    )
    bucket_id = ctx.key_ids.get(values)
    if bucket_id is None:
        bucket_id = len(ctx.bucket_dims)
        ctx.key_ids[values] = bucket_id
        ctx.bucket_dims.append(values)
        ctx.bucket_periods.append({})

    periods = ctx.bucket_periods[bucket_id]
    acc = periods.get(period)
    if acc is None:
        acc = periods[period] = PeriodAccumulator()
    acc.add(sales, quantity, cost)

    ctx.included_rows += 1
    ctx.period_rows[period] = ctx.period_rows.get(period, 0) + 1
    return True


def bucket_key(values: tuple[str, ...]) -> str:
    """Display key for a tuple of dimension values."""

    return KEY_SEPARATOR.join(values) if values else TOTAL_KEY


def finalize(ctx: AggregationContext) -> AggregationResult:
    """Freeze ``ctx`` into an :class:`AggregationResult` (buckets in first-seen order)."""

    if ctx.finalized:
        raise RuntimeError("aggregation context already finalized")
    ctx.finalized = True

    dim_names = ctx.config.columns.dimensions
    buckets: list[AggregatedBucket] = []
    for values, periods in zip(ctx.bucket_dims, ctx.bucket_periods, strict=True):
        frozen = {
            key: (periods[key].freeze() if key in periods else PeriodTotals())
            for key in ctx.period_keys
        }
        buckets.append(
            AggregatedBucket(
                key=bucket_key(values),
                dimensions=MappingProxyType(dict(zip(dim_names, values, strict=True))),
                periods=MappingProxyType(frozen),
            )
        )

    if len(buckets) > ctx.settings.max_recommended_combinations:
        _logger.warning(
            "%d dimension combinations exceed the recommended %d",
            len(buckets),
            ctx.settings.max_recommended_combinations,
        )

    stats = ctx.snapshot_stats()
    _logger.info(
        "aggregation finalized: total=%d included=%d excluded=%d "
        "(parse_errors=%d outside_period=%d negative=%d) buckets=%d",
        stats.total_rows,
        stats.included_rows,
        stats.excluded_rows,
        stats.parse_errors,
        stats.outside_period_rows,
        stats.negative_rows,
        stats.unique_keys,
    )

    config = ctx.config
    return AggregationResult(
        buckets=tuple(buckets),
        negatives=MappingProxyType({k: acc.freeze() for k, acc in ctx.negatives.items()}),
        stats=stats,
        date_min=ctx.date_min,
        date_max=ctx.date_max,
        dimensions=dim_names,
        py_range=config.py_range,
        cy_range=config.cy_range,
        fiscal_years=ctx.windows,
        fy_end_month=config.fy_end_month,
    )


def calculate_totals(result: AggregationResult) -> Mapping[PeriodKey, PeriodTotals]:
    """Sum every bucket per period key (PY/CY, or each fiscal year)."""

    totals: dict[PeriodKey, PeriodTotals] = {key: PeriodTotals() for key in result.period_keys}
    for bucket in result.buckets:
        for key in totals:
            totals[key] = totals[key] + bucket.period(key)
    return MappingProxyType(totals)


__all__ = [
    "KEY_SEPARATOR",
    "TOTAL_KEY",
    "UNKNOWN",
    "AggregationContext",
    "bucket_key",
    "calculate_totals",
    "create_context",
    "finalize",
    "process_row",
]
