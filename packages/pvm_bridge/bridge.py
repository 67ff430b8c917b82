"""Bridge Decomposition Engine.

Per bucket, with ``value`` the bridged metric and ``price = value / volume``:

    price_impact  = (cy.price - py.price) * py.volume
    volume_impact = (cy.volume - py.volume) * py.price
    mix_impact    = total_change - price_impact - volume_impact

Mix is the residual, so the three components reconcile to the total change
exactly for every continuing bucket. A bucket with no positive sales or
volume in the earlier period is *new*, and in the later period
*discontinued*; either way the whole change is volume.

Summaries are sums of the per-bucket results. Re-deriving them from summed
period totals would not reconcile, since price and volume impacts are not
linear in the sums.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import assert_never

from .logging_setup import get_logger
from .models import (
    AggregatedBucket,
    AggregationResult,
    BridgeBucketResult,
    BridgeMode,
    BridgeResult,
    BridgeSummary,
    Classification,
    ClassificationCounts,
    MultiYearBridgeResult,
    MultiYearBucketResult,
    MultiYearSummary,
    PeriodDetail,
    PeriodSummary,
    PeriodTag,
    PeriodTotals,
    PriceDefinition,
)

_logger = get_logger("pvm_bridge.bridge")

SORT_KEYS = ("total-desc", "total-asc", "price-desc", "volume-desc", "mix-desc", "cost-desc")


# ---------------------------------------------------------------------------
# Mode dispatch
# ---------------------------------------------------------------------------


def _period_value(totals: PeriodTotals, mode: BridgeMode, price_def: PriceDefinition) -> float:
    match mode:
        case BridgeMode.PVM:
            return totals.sales
        case BridgeMode.GM:
            match price_def:
                case PriceDefinition.MARGIN_PER_UNIT:
                    return totals.sales - totals.cost
                case PriceDefinition.SALES_PER_UNIT:
                    return totals.sales
                case _:
                    assert_never(price_def)
        case _:
            assert_never(mode)


def _cost_impact(
    py: PeriodTotals, cy: PeriodTotals, mode: BridgeMode, price_def: PriceDefinition
) -> float:
    match mode:
        case BridgeMode.PVM:
            return 0.0
        case BridgeMode.GM:
            match price_def:
                case PriceDefinition.MARGIN_PER_UNIT:
                    return 0.0
                case PriceDefinition.SALES_PER_UNIT:
                    return -(cy.cost - py.cost)
                case _:
                    assert_never(price_def)
        case _:
            assert_never(mode)


def _detail(totals: PeriodTotals, value: float) -> PeriodDetail:
    price = value / totals.quantity if totals.quantity > 0 else 0.0
    return PeriodDetail(
        value=value,
        price=price,
        volume=totals.quantity,
        sales=totals.sales,
        cost=totals.cost,
        count=totals.count,
    )


# ---------------------------------------------------------------------------
# Per-bucket decomposition
# ---------------------------------------------------------------------------


def decompose_bucket(
    key: str,
    dimensions: Mapping[str, str],
    py: PeriodTotals,
    cy: PeriodTotals,
    mode: BridgeMode = BridgeMode.PVM,
    price_definition: PriceDefinition = PriceDefinition.MARGIN_PER_UNIT,
) -> BridgeBucketResult:
    """Attribute the change between ``py`` and ``cy`` for one bucket."""

    is_new = py.sales <= 0 or py.quantity <= 0
    is_discontinued = cy.sales <= 0 or cy.quantity <= 0

    py_d = _detail(py, _period_value(py, mode, price_definition))
    cy_d = _detail(cy, _period_value(cy, mode, price_definition))
    total_change = cy_d.value - py_d.value

    if is_new or is_discontinued:
        classification = Classification.NEW if is_new else Classification.DISCONTINUED
        price_impact = 0.0
        volume_impact = total_change
        mix_impact = 0.0
    else:
        classification = Classification.CONTINUING
        price_impact = (cy_d.price - py_d.price) * py_d.volume
        volume_impact = (cy_d.volume - py_d.volume) * py_d.price
        mix_impact = total_change - price_impact - volume_impact

    return BridgeBucketResult(
        key=key,
        dimensions=dimensions,
        py=py_d,
        cy=cy_d,
        total_change=total_change,
        price_impact=price_impact,
        volume_impact=volume_impact,
        mix_impact=mix_impact,
        cost_impact=_cost_impact(py, cy, mode, price_definition),
        classification=classification,
        is_new=is_new,
        is_discontinued=is_discontinued,
    )


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def _pct(amount: float, denominator: float) -> float:
    return (amount / abs(denominator)) * 100.0 if denominator != 0 else 0.0


def summarize(
    detail: Iterable[BridgeBucketResult], *, relative_to_start: bool = False
) -> BridgeSummary:
    """Sum bucket results and derive percentages.

    Impact percentages are relative to |total change|, or to |starting value|
    when ``relative_to_start`` is set (year-pair summaries).
    """

    py_value = py_sales = py_qty = py_cost = 0.0
    cy_value = cy_sales = cy_qty = cy_cost = 0.0
    py_count = cy_count = 0
    total = price = volume = mix = cost = 0.0
    counts = {c: 0 for c in Classification}
    n = 0

    for r in detail:
        n += 1
        py_value += r.py.value
        py_sales += r.py.sales
        py_qty += r.py.volume
        py_cost += r.py.cost
        py_count += r.py.count
        cy_value += r.cy.value
        cy_sales += r.cy.sales
        cy_qty += r.cy.volume
        cy_cost += r.cy.cost
        cy_count += r.cy.count
        total += r.total_change
        price += r.price_impact
        volume += r.volume_impact
        mix += r.mix_impact
        cost += r.cost_impact
        counts[r.classification] += 1

    base = py_value if relative_to_start else total
    return BridgeSummary(
        py=PeriodSummary(py_value, py_sales, py_qty, py_cost, py_count),
        cy=PeriodSummary(cy_value, cy_sales, cy_qty, cy_cost, cy_count),
        total_change=total,
        price_impact=price,
        volume_impact=volume,
        mix_impact=mix,
        cost_impact=cost,
        price_impact_pct=_pct(price, base),
        volume_impact_pct=_pct(volume, base),
        mix_impact_pct=_pct(mix, base),
        cost_impact_pct=_pct(cost, base),
        change_pct=_pct(cy_value - py_value, py_value),
        counts=ClassificationCounts(
            total=n,
            new=counts[Classification.NEW],
            discontinued=counts[Classification.DISCONTINUED],
            continuing=counts[Classification.CONTINUING],
        ),
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def calculate_bridge(
    aggregation: AggregationResult | Sequence[AggregatedBucket],
    mode: BridgeMode = BridgeMode.PVM,
    price_definition: PriceDefinition = PriceDefinition.MARGIN_PER_UNIT,
) -> BridgeResult:
    """Two-period bridge (PY → CY) over every bucket."""

    if isinstance(aggregation, AggregationResult):
        if aggregation.is_multi_year:
            raise ValueError("aggregation is multi-year; use calculate_multi_year_bridge")
        buckets: Sequence[AggregatedBucket] = aggregation.buckets
    else:
        buckets = aggregation

    detail = tuple(
        decompose_bucket(
            b.key,
            b.dimensions,
            b.period(PeriodTag.PY),
            b.period(PeriodTag.CY),
            mode,
            price_definition,
        )
        for b in buckets
    )
    summary = summarize(detail)
    _logger.debug(
        "bridge (%s/%s): %d bucket(s), total change %.2f",
        mode,
        price_definition,
        len(detail),
        summary.total_change,
    )
    return BridgeResult(detail, summary, mode, price_definition)


def calculate_multi_year_bridge(
    aggregation: AggregationResult,
    mode: BridgeMode = BridgeMode.PVM,
    price_definition: PriceDefinition = PriceDefinition.MARGIN_PER_UNIT,
) -> MultiYearBridgeResult:
    """Chained bridges between each pair of consecutive fiscal years."""

    years = tuple(w.fiscal_year for w in aggregation.fiscal_years)
    if len(years) < 2:
        raise ValueError("a multi-year bridge needs at least two fiscal years")
    pairs = list(zip(years, years[1:], strict=False))

    detail: list[MultiYearBucketResult] = []
    for b in aggregation.buckets:
        bridges = {
            f"{a}-{c}": decompose_bucket(
                b.key, b.dimensions, b.period(a), b.period(c), mode, price_definition
            )
            for a, c in pairs
        }
        detail.append(MultiYearBucketResult(b.key, b.dimensions, MappingProxyType(bridges)))

    year_totals: dict[int, PeriodSummary] = {}
    for fy in years:
        value = sales = qty = cost = 0.0
        count = 0
        for b in aggregation.buckets:
            t = b.period(fy)
            value += _period_value(t, mode, price_definition)
            sales += t.sales
            qty += t.quantity
            cost += t.cost
            count += t.count
        year_totals[fy] = PeriodSummary(value, sales, qty, cost, count)

    pair_summaries = {
        f"{a}-{c}": summarize(
            (d.bridges[f"{a}-{c}"] for d in detail), relative_to_start=True
        )
        for a, c in pairs
    }

    return MultiYearBridgeResult(
        years=years,
        detail=tuple(detail),
        summary=MultiYearSummary(
            years=MappingProxyType(year_totals),
            bridges=MappingProxyType(pair_summaries),
        ),
        mode=mode,
        price_definition=price_definition,
    )


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------


_SORT_FIELDS = {
    "total": "total_change",
    "price": "price_impact",
    "volume": "volume_impact",
    "mix": "mix_impact",
    "cost": "cost_impact",
}


def sort_results(
    results: Sequence[BridgeBucketResult], sort_by: str | None
) -> list[BridgeBucketResult]:
    """Sort by absolute impact magnitude; unknown keys keep the input order."""

    out = list(results)
    if sort_by not in SORT_KEYS:
        return out
    name, _, direction = sort_by.partition("-")
    attr = _SORT_FIELDS[name]
    out.sort(key=lambda r: abs(getattr(r, attr)), reverse=direction == "desc")
    return out


def filter_results(
    results: Sequence[BridgeBucketResult], term: str | None
) -> list[BridgeBucketResult]:
    """Keep results with any dimension value containing ``term`` (case-insensitive)."""

    if not term or not term.strip():
        return list(results)
    needle = term.strip().lower()
    return [r for r in results if any(needle in str(v).lower() for v in r.dimensions.values())]


@dataclass(frozen=True, slots=True)
class Formula:
    name: str
    formula: str


@dataclass(frozen=True, slots=True)
class Methodology:
    title: str
    description: str
    formulas: tuple[Formula, ...]
    notes: tuple[str, ...]


_EDGE_NOTES = (
    "New items (no PY data): Entire change attributed to Volume",
    "Discontinued items (no CY data): Entire change attributed to Volume",
)


def methodology_description(
    mode: BridgeMode, price_definition: PriceDefinition = PriceDefinition.MARGIN_PER_UNIT
) -> Methodology:
    """Plain-language formulas for the assumptions section of an export."""

    match mode:
        case BridgeMode.PVM:
            return Methodology(
                title="Sales PVM Bridge",
                description="Decomposes revenue change into Price, Volume, and Mix components.",
                formulas=(
                    Formula("Average Price", "Sales / Quantity"),
                    Formula("Price Impact", "(CY Price − PY Price) × PY Volume"),
                    Formula("Volume Impact", "(CY Volume − PY Volume) × PY Price"),
                    Formula("Mix Impact", "Total Change − Price Impact − Volume Impact"),
                ),
                notes=(
                    *_EDGE_NOTES,
                    "Mix Impact captures both product mix shifts and the interaction "
                    "between price and volume changes",
                    "The three components sum exactly to the total revenue change",
                ),
            )
        case BridgeMode.GM:
            match price_definition:
                case PriceDefinition.MARGIN_PER_UNIT:
                    return Methodology(
                        title="Gross Margin Bridge (Margin per Unit)",
                        description=(
                            "Analyzes drivers of gross margin change using margin per unit "
                            "as the price metric."
                        ),
                        formulas=(
                            Formula("Margin per Unit (Price)", "(Sales − Cost) / Quantity"),
                            Formula(
                                "Price Impact", "(CY Margin/Unit − PY Margin/Unit) × PY Volume"
                            ),
                            Formula("Volume Impact", "(CY Volume − PY Volume) × PY Margin/Unit"),
                            Formula("Mix Impact", "Total Change − Price Impact − Volume Impact"),
                        ),
                        notes=(
                            *_EDGE_NOTES,
                            "Mix Impact captures the interaction effect and ensures exact "
                            "reconciliation",
                        ),
                    )
                case PriceDefinition.SALES_PER_UNIT:
                    return Methodology(
                        title="Gross Margin Bridge (Sales per Unit)",
                        description=(
                            "Analyzes drivers of gross margin change with cost impact shown "
                            "separately."
                        ),
                        formulas=(
                            Formula("Sales per Unit (Price)", "Sales / Quantity"),
                            Formula("Price Impact", "(CY Price − PY Price) × PY Volume"),
                            Formula("Volume Impact", "(CY Volume − PY Volume) × PY Price"),
                            Formula("Mix Impact", "Sales Change − Price Impact − Volume Impact"),
                            Formula("Cost Impact", "−(CY Cost − PY Cost)"),
                        ),
                        notes=(
                            *_EDGE_NOTES,
                            "Cost Impact is shown separately from the PVM decomposition",
                        ),
                    )
                case _:
                    assert_never(price_definition)
        case _:
            assert_never(mode)


__all__ = [
    "SORT_KEYS",
    "Formula",
    "Methodology",
    "calculate_bridge",
    "calculate_multi_year_bridge",
    "decompose_bucket",
    "filter_results",
    "methodology_description",
    "sort_results",
    "summarize",
]
