from datetime import date
from types import MappingProxyType

import pytest

from pvm_bridge.aggregation import (
    KEY_SEPARATOR,
    TOTAL_KEY,
    UNKNOWN,
    calculate_totals,
    create_context,
    finalize,
    process_row,
)
from pvm_bridge.config import AnalysisConfig, ColumnMapping
from pvm_bridge.models import PeriodRange, PeriodTag, PeriodTotals
from pvm_bridge.periods import fiscal_year_windows


def _config(dimensions=("region",), cost=None, **kw) -> AnalysisConfig:
    layout = kw or {
        "py_range": PeriodRange(date(2023, 1, 1), date(2023, 12, 31)),
        "cy_range": PeriodRange(date(2024, 1, 1), date(2024, 12, 31)),
    }
    return AnalysisConfig(
        columns=ColumnMapping(
            date="date", sales="sales", quantity="qty", cost=cost, dimensions=dimensions
        ),
        date_format="YYYY-MM-DD",
        **layout,
    )


def _row(d: str, region: str, sales: str, qty: str, **extra: str):
    return MappingProxyType({"date": d, "region": region, "sales": sales, "qty": qty, **extra})


def _assert_accounting(stats) -> None:
    assert stats.total_rows == stats.included_rows + stats.excluded_rows
    assert stats.excluded_rows == (
        stats.parse_errors + stats.outside_period_rows + stats.negative_rows
    )


def test_every_rejection_is_attributed():
    ctx = create_context(_config())
    rows = [
        _row("2023-03-01", "East", "100", "10"),  # PY
        _row("2024-03-01", "East", "150", "10"),  # CY
        _row("not a date", "East", "1", "1"),  # parse error (date)
        _row("2021-05-05", "East", "1", "1"),  # outside periods
        _row("2024-05-05", "East", "abc", "1"),  # parse error (number)
        _row("2023-06-01", "West", "100", "0"),  # zero quantity
        _row("2024-06-01", "West", "(40)", "2"),  # negative sales
    ]
    included = [process_row(ctx, r) for r in rows]
    assert included == [True, True, False, False, False, False, False]

    result = finalize(ctx)
    stats = result.stats
    _assert_accounting(stats)
    assert (stats.total_rows, stats.included_rows, stats.excluded_rows) == (7, 2, 5)
    assert (stats.parse_errors, stats.outside_period_rows, stats.negative_rows) == (2, 1, 2)
    assert dict(stats.period_rows) == {PeriodTag.PY: 1, PeriodTag.CY: 1}
    assert stats.unique_keys == 1
    assert result.date_min == date(2021, 5, 5)
    assert result.date_max == date(2024, 6, 1)


def test_zero_quantity_row_goes_to_negatives_ledger_only():
    ctx = create_context(_config())
    assert not process_row(ctx, _row("2023-06-01", "West", "100", "0"))
    result = finalize(ctx)
    assert result.buckets == ()
    assert result.negatives[PeriodTag.PY] == PeriodTotals(sales=100.0, quantity=0.0, count=1)
    assert result.negatives[PeriodTag.CY] == PeriodTotals()


def test_buckets_are_first_seen_order_with_unknown_for_blanks():
    ctx = create_context(_config())
    for r in [
        _row("2023-01-05", "West", "10", "1"),
        _row("2023-01-06", "  ", "20", "2"),
        _row("2024-01-05", "East", "30", "3"),
        _row("2024-01-06", "West", "40", "4"),
    ]:
        process_row(ctx, r)
    result = finalize(ctx)
    assert [b.key for b in result.buckets] == ["West", UNKNOWN, "East"]
    west = result.buckets[0]
    assert west.py == PeriodTotals(10.0, 1.0, 0.0, 1)
    assert west.cy == PeriodTotals(40.0, 4.0, 0.0, 1)
    assert result.buckets[2].py == PeriodTotals()


def test_multi_dimension_key_and_total_singleton():
    ctx = create_context(_config(dimensions=("region", "product")))
    process_row(ctx, _row("2023-01-05", "East", "10", "1", product="Widget"))
    (bucket,) = finalize(ctx).buckets
    assert bucket.key == f"East{KEY_SEPARATOR}Widget"
    assert dict(bucket.dimensions) == {"region": "East", "product": "Widget"}

    ctx = create_context(_config(dimensions=()))
    process_row(ctx, _row("2023-01-05", "East", "10", "1"))
    process_row(ctx, _row("2024-01-05", "West", "10", "1"))
    (bucket,) = finalize(ctx).buckets
    assert bucket.key == TOTAL_KEY
    assert dict(bucket.dimensions) == {}


def test_unparseable_cost_is_a_parse_error():
    ctx = create_context(_config(cost="cost"))
    assert process_row(ctx, _row("2023-01-05", "East", "10", "1", cost="12"))
    assert not process_row(ctx, _row("2023-01-05", "East", "10", "1", cost="n/a"))
    result = finalize(ctx)
    assert result.stats.parse_errors == 1
    assert result.buckets[0].py.cost == 12.0


def test_multi_year_classifies_by_fiscal_year():
    windows = fiscal_year_windows([2022, 2023], 6)
    ctx = create_context(_config(fiscal_years=windows))
    process_row(ctx, _row("2021-07-01", "East", "10", "1"))  # FY2022
    process_row(ctx, _row("2023-06-30", "East", "30", "3"))  # FY2023
    process_row(ctx, _row("2023-07-01", "East", "99", "9"))  # FY2024, outside
    process_row(ctx, _row("2022-08-01", "East", "-5", "1"))  # FY2023 negative
    result = finalize(ctx)

    assert result.is_multi_year
    assert result.period_keys == (2022, 2023)
    (bucket,) = result.buckets
    assert bucket.period(2022).sales == 10.0
    assert bucket.period(2023).sales == 30.0
    assert dict(result.stats.period_rows) == {2022: 1, 2023: 1}
    assert result.stats.outside_period_rows == 1
    assert dict(result.negatives) == {2023: PeriodTotals(-5.0, 1.0, 0.0, 1)}


def test_calculate_totals_sums_every_bucket():
    ctx = create_context(_config())
    process_row(ctx, _row("2023-01-05", "East", "10", "1"))
    process_row(ctx, _row("2023-02-05", "West", "20", "2"))
    process_row(ctx, _row("2024-01-05", "West", "50", "5"))
    totals = calculate_totals(finalize(ctx))
    assert totals[PeriodTag.PY] == PeriodTotals(30.0, 3.0, 0.0, 2)
    assert totals[PeriodTag.CY] == PeriodTotals(50.0, 5.0, 0.0, 1)


def test_finalize_only_once():
    ctx = create_context(_config())
    finalize(ctx)
    with pytest.raises(RuntimeError):
        finalize(ctx)


def test_snapshot_mid_run_respects_accounting():
    ctx = create_context(_config())
    process_row(ctx, _row("2023-01-05", "East", "10", "1"))
    process_row(ctx, _row("bad", "East", "10", "1"))
    stats = ctx.snapshot_stats()
    _assert_accounting(stats)
    assert stats.total_rows == 2
