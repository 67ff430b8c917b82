"""CLI for the ``pvm_bridge`` package.

This module exposes callable command handlers (``cmd_inspect`` and
``cmd_bridge``) and a Typer-based console interface. Settings overrides
(``PVM_CHUNK_SIZE``, ``PVM_PROGRESS_INTERVAL``, ``PVM_CANCEL_POLL_ROWS``,
``PVM_BRIDGE_LOG_LEVEL``) are loaded from a local ``.env`` using
``python-dotenv`` before delegating to command logic. Business logic lives in
``pvm_bridge.api`` and the engine modules.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from collections.abc import Mapping, Sequence
from datetime import date
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from typer.models import ArgumentInfo

from .api import CsvInspection, analyze_csv, inspect_csv
from .bridge import SORT_KEYS, filter_results, methodology_description, sort_results
from .config import AnalysisConfig, ColumnMapping
from .errors import AnalysisAborted, ConfigurationError
from .logging_setup import configure_logging
from .models import (
    AggregationStats,
    BridgeBucketResult,
    BridgeMode,
    BridgeResult,
    BridgeSummary,
    ComparisonPreset,
    FiscalYearWindow,
    MultiYearBridgeResult,
    PeriodRange,
    PriceDefinition,
)
from .periods import fiscal_year_of, fiscal_year_windows, format_date_range, two_period_ranges
from .settings import load_settings

# ---- Small module-level helpers used by CLI commands -------------------------


def _jsonable(obj: Any) -> Any:
    """Convert result dataclasses (with read-only mappings) into JSON-ready values."""

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Mapping):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, list | tuple):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, date):
        return obj.isoformat()
    return obj


def _parse_iso(value: str | None, option: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        raise ConfigurationError(f"{option} must be a YYYY-MM-DD date, got {value!r}") from e


def _fmt_money(value: float) -> str:
    return f"{value:,.2f}"


def _print_stats(stats: AggregationStats) -> None:
    print(
        f"Rows: total={stats.total_rows} included={stats.included_rows} "
        f"excluded={stats.excluded_rows} (parse errors={stats.parse_errors}, "
        f"outside periods={stats.outside_period_rows}, non-positive={stats.negative_rows})"
    )
    print(f"Buckets: {stats.unique_keys}")


def _print_summary(label: str, summary: BridgeSummary, mode: BridgeMode) -> None:
    print(f"{label}: {_fmt_money(summary.py.value)} -> {_fmt_money(summary.cy.value)}")
    print(f"  Total change:  {_fmt_money(summary.total_change)} ({summary.change_pct:.1f}%)")
    print(f"  Price impact:  {_fmt_money(summary.price_impact)} ({summary.price_impact_pct:.1f}%)")
    print(
        f"  Volume impact: {_fmt_money(summary.volume_impact)} "
        f"({summary.volume_impact_pct:.1f}%)"
    )
    print(f"  Mix impact:    {_fmt_money(summary.mix_impact)} ({summary.mix_impact_pct:.1f}%)")
    if mode is BridgeMode.GM:
        print(
            f"  Cost impact:   {_fmt_money(summary.cost_impact)} "
            f"({summary.cost_impact_pct:.1f}%)"
        )
    c = summary.counts
    print(
        f"  Items: {c.total} (continuing={c.continuing}, new={c.new}, "
        f"discontinued={c.discontinued})"
    )


def _print_detail(rows: Sequence[BridgeBucketResult], top: int) -> None:
    for r in rows[:top]:
        label = " / ".join(r.dimensions.values()) or "Total"
        print(
            f"  {label}\t{_fmt_money(r.total_change)}\tprice={_fmt_money(r.price_impact)}"
            f"\tvolume={_fmt_money(r.volume_impact)}\tmix={_fmt_money(r.mix_impact)}"
            f"\t[{r.classification}]"
        )


def _resolve_columns(
    inspection: CsvInspection,
    *,
    date_col: str | None,
    sales: str | None,
    quantity: str | None,
    cost: str | None,
    dimensions: Sequence[str],
) -> ColumnMapping:
    guessed = inspection.columns
    chosen = {
        "date": date_col or guessed.date,
        "sales": sales or guessed.sales,
        "quantity": quantity or guessed.quantity,
    }
    missing = [role for role, col in chosen.items() if not col]
    if missing:
        raise ConfigurationError(
            "could not determine column(s): " + ", ".join(missing) + "; pass them explicitly"
        )
    return ColumnMapping(
        date=chosen["date"],
        sales=chosen["sales"],
        quantity=chosen["quantity"],
        cost=cost or guessed.cost,
        dimensions=tuple(dimensions),
    )


def _resolve_periods(
    inspection: CsvInspection,
    *,
    fy_end_month: int,
    multi_year: bool,
    years: Sequence[int],
    compare: ComparisonPreset,
    fiscal_year: int | None,
    ltm_end: date | None,
    custom: tuple[date | None, date | None, date | None, date | None],
) -> dict[str, Any]:
    if multi_year:
        windows: tuple[FiscalYearWindow, ...]
        if years:
            windows = fiscal_year_windows(years, fy_end_month)
        else:
            windows = inspection.fully_covered_years
        if len(windows) < 2:
            raise ConfigurationError(
                "multi-year mode needs at least two fully covered fiscal years "
                f"(found {len(windows)})"
            )
        return {"fiscal_years": windows}

    if any(d is not None for d in custom):
        py_start, py_end, cy_start, cy_end = custom
        if None in custom:
            raise ConfigurationError(
                "custom periods need all of --py-start, --py-end, --cy-start, --cy-end"
            )
        try:
            return {
                "py_range": PeriodRange(py_start, py_end),  # type: ignore[arg-type]
                "cy_range": PeriodRange(cy_start, cy_end),  # type: ignore[arg-type]
            }
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    if fiscal_year is not None or compare == ComparisonPreset.FISCAL_YEAR:
        if fiscal_year is None:
            if inspection.date_max is None:
                raise ConfigurationError("no parseable dates found; pass --fiscal-year")
            fiscal_year = fiscal_year_of(inspection.date_max, fy_end_month)
        plan = two_period_ranges(fy_end_month, cy_fiscal_year=fiscal_year)
    else:
        end = ltm_end or inspection.date_max
        if end is None:
            raise ConfigurationError("no parseable dates found; pass --ltm-end or --fiscal-year")
        plan = two_period_ranges(fy_end_month, ltm_end=end)
    print(f"PY ({plan.py_label}): {format_date_range(plan.py_range)}")
    print(f"CY ({plan.cy_label}): {format_date_range(plan.cy_range)}")
    return {"py_range": plan.py_range, "cy_range": plan.cy_range}


# ---- Command handlers ---------------------------------------------------------


def cmd_inspect(csv_path: str, *, fy_end_month: int = 12) -> int:
    """Print headers, guessed columns, date format and fiscal years for a CSV.

    Errors are written to stderr and the function returns a non-zero exit
    status. On success, returns ``0``.
    """

    try:
        inspection = inspect_csv(csv_path, fy_end_month=fy_end_month)
    except FileNotFoundError:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
        return 1
    except PermissionError:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
        return 1
    except (OSError, UnicodeDecodeError, ValueError) as e:
        print(f"Error: Failed to read '{csv_path}': {e}", file=sys.stderr)
        return 1

    cols = inspection.columns
    print(f"File: {inspection.path} ({inspection.size} bytes)")
    print(f"Headers: {', '.join(inspection.headers)}")
    print(f"Date column: {cols.date or '-'}")
    print(f"Sales column: {cols.sales or '-'}")
    print(f"Quantity column: {cols.quantity or '-'}")
    print(f"Cost column: {cols.cost or '-'}")
    print(f"Dimension candidates: {', '.join(cols.dimensions) or '-'}")
    det = inspection.date_format
    print(f"Date format: {det.format_id or 'unknown'} (confidence {det.confidence:.2f})")
    if inspection.date_min is not None and inspection.date_max is not None:
        print(
            "Date range: "
            + format_date_range(PeriodRange(inspection.date_min, inspection.date_max))
        )
    for w in inspection.fiscal_years:
        coverage = "full" if w.fully_covered else "partial"
        print(f"  {w.label}: {format_date_range(w.range)} [{coverage}]")
    return 0


def cmd_bridge(
    csv_path: str,
    *,
    date_col: str | None = None,
    sales: str | None = None,
    quantity: str | None = None,
    cost: str | None = None,
    dimensions: Sequence[str] = (),
    date_format: str | None = None,
    fy_end_month: int = 12,
    compare: ComparisonPreset = ComparisonPreset.LTM,
    ltm_end: str | None = None,
    fiscal_year: int | None = None,
    multi_year: bool = False,
    years: Sequence[int] = (),
    py_start: str | None = None,
    py_end: str | None = None,
    cy_start: str | None = None,
    cy_end: str | None = None,
    mode: BridgeMode = BridgeMode.PVM,
    price_definition: PriceDefinition = PriceDefinition.MARGIN_PER_UNIT,
    sort: str = "total-desc",
    top: int = 20,
    search: str | None = None,
    json_out: Path | None = None,
) -> int:
    """Compute a PVM (or gross-margin) bridge and print it.

    Columns not given explicitly are guessed from the header. Without an
    explicit period choice the comparison is the LTM ending on the last data
    date against the prior fiscal year. ``compare=fiscal-year`` without
    ``fiscal_year`` compares the fiscal year of the last data date against
    the one before it.
    """

    settings = load_settings()
    try:
        inspection = inspect_csv(
            csv_path,
            fy_end_month=fy_end_month,
            date_column=date_col,
            date_format=date_format,
            settings=settings,
        )
        columns = _resolve_columns(
            inspection,
            date_col=date_col,
            sales=sales,
            quantity=quantity,
            cost=cost,
            dimensions=dimensions,
        )
        periods = _resolve_periods(
            inspection,
            fy_end_month=fy_end_month,
            multi_year=multi_year,
            years=years,
            compare=compare,
            fiscal_year=fiscal_year,
            ltm_end=_parse_iso(ltm_end, "--ltm-end"),
            custom=(
                _parse_iso(py_start, "--py-start"),
                _parse_iso(py_end, "--py-end"),
                _parse_iso(cy_start, "--cy-start"),
                _parse_iso(cy_end, "--cy-end"),
            ),
        )
        config = AnalysisConfig(
            columns=columns,
            date_format=date_format or inspection.date_format.format_id,
            fy_end_month=fy_end_month,
            mode=mode,
            price_definition=price_definition,
            **periods,
        )
        outcome = analyze_csv(csv_path, config, settings=settings)
    except FileNotFoundError:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
        return 1
    except PermissionError:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except AnalysisAborted as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: Failed to read '{csv_path}': {e}", file=sys.stderr)
        return 1

    for message in outcome.warnings:
        print(f"Warning: {message}", file=sys.stderr)
    _print_stats(outcome.stats)

    result = outcome.bridge
    if isinstance(result, BridgeResult):
        _print_summary("Bridge", result.summary, result.mode)
        rows = sort_results(filter_results(result.detail, search), sort)
        _print_detail(rows, top)
    elif isinstance(result, MultiYearBridgeResult):
        for pair in result.pair_keys:
            _print_summary(f"FY {pair}", result.summary.bridges[pair], result.mode)
            rows = sort_results(filter_results(result.pair_detail(pair), search), sort)
            _print_detail(rows, top)

    if json_out is not None:
        payload = {
            "config": config.model_dump(mode="json"),
            "methodology": _jsonable(methodology_description(mode, price_definition)),
            "aggregation": _jsonable(outcome.aggregation),
            "bridge": _jsonable(result),
        }
        try:
            json_out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            print(f"Error: failed to write '{json_out}': {e}", file=sys.stderr)
            return 1
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Price/Volume/Mix bridges over large transactional CSV files. "
        "Loads settings overrides from a local .env before running."
    ),
)

# Module-level argument object to satisfy ruff B008 (no calls in parameter
# defaults). Typer will inspect this when used as a default value below.
CSV_PATH_ARGUMENT: ArgumentInfo = typer.Argument(
    ...,
    help="Path to a delimited (CSV) file with a header row",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)


@app.command("inspect")
def inspect_cmd(
    csv_path: Path = CSV_PATH_ARGUMENT,
    fy_end_month: int = typer.Option(12, min=1, max=12, help="Fiscal-year-end month (1-12)."),
) -> None:
    """Show detected columns, date format, date range and fiscal years."""

    code = cmd_inspect(str(csv_path), fy_end_month=fy_end_month)
    if code:
        raise typer.Exit(code)


@app.command("bridge")
def bridge_cmd(
    csv_path: Path = CSV_PATH_ARGUMENT,
    date_col: str | None = typer.Option(None, "--date", help="Date column (guessed if omitted)."),
    sales: str | None = typer.Option(None, help="Sales column (guessed if omitted)."),
    quantity: str | None = typer.Option(None, help="Quantity column (guessed if omitted)."),
    cost: str | None = typer.Option(None, help="Cost column (required for --mode gm)."),
    dimension: list[str] | None = typer.Option(
        None, "--dimension", "-d", help="Dimension column; repeat for several."
    ),
    date_format: str | None = typer.Option(
        None, help="Date format id, e.g. YYYY-MM-DD or DD/MM/YYYY (detected if omitted)."
    ),
    fy_end_month: int = typer.Option(12, min=1, max=12, help="Fiscal-year-end month (1-12)."),
    compare: ComparisonPreset = typer.Option(
        ComparisonPreset.LTM, help="Two-period preset: LTM or a full fiscal year vs the prior one."
    ),
    ltm_end: str | None = typer.Option(
        None, help="LTM end date (YYYY-MM-DD); defaults to the last data date."
    ),
    fiscal_year: int | None = typer.Option(
        None, help="Compare fiscal year N against N-1 (defaults to the last data year)."
    ),
    multi_year: bool = typer.Option(
        False, "--multi-year", help="Chain bridges across consecutive fiscal years."
    ),
    year: list[int] | None = typer.Option(
        None, "--year", help="Fiscal year for --multi-year; repeat. Defaults to all full years."
    ),
    py_start: str | None = typer.Option(None, help="Custom PY start (YYYY-MM-DD)."),
    py_end: str | None = typer.Option(None, help="Custom PY end (YYYY-MM-DD)."),
    cy_start: str | None = typer.Option(None, help="Custom CY start (YYYY-MM-DD)."),
    cy_end: str | None = typer.Option(None, help="Custom CY end (YYYY-MM-DD)."),
    mode: BridgeMode = typer.Option(BridgeMode.PVM, help="Bridge sales (pvm) or margin (gm)."),
    price_definition: PriceDefinition = typer.Option(
        PriceDefinition.MARGIN_PER_UNIT, help="Price metric in gm mode."
    ),
    sort: str = typer.Option("total-desc", help=f"Detail order: {', '.join(SORT_KEYS)}."),
    top: int = typer.Option(20, min=0, help="Detail rows to print per bridge."),
    search: str | None = typer.Option(None, help="Only show items matching this text."),
    json_out: Path | None = typer.Option(None, help="Write full results as JSON to this path."),
) -> None:
    """Compute and print a Price/Volume/Mix bridge."""

    code = cmd_bridge(
        str(csv_path),
        date_col=date_col,
        sales=sales,
        quantity=quantity,
        cost=cost,
        dimensions=tuple(dimension or ()),
        date_format=date_format,
        fy_end_month=fy_end_month,
        compare=compare,
        ltm_end=ltm_end,
        fiscal_year=fiscal_year,
        multi_year=multi_year,
        years=tuple(year or ()),
        py_start=py_start,
        py_end=py_end,
        cy_start=cy_start,
        cy_end=cy_end,
        mode=mode,
        price_definition=price_definition,
        sort=sort,
        top=top,
        search=search,
        json_out=json_out,
    )
    if code:
        raise typer.Exit(code)


@app.callback()
def _root() -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
