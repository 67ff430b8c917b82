"""Public API for the ``pvm_bridge`` package.

This module is the stable import surface for callers that drive an analysis
from a file path or a row source. The engines themselves live in
``pvm_bridge.parser``, ``pvm_bridge.aggregation`` and ``pvm_bridge.bridge``;
run orchestration lives in ``pvm_bridge.pipeline``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from .config import AnalysisConfig
from .errors import ConfigurationError
from .logging_setup import get_logger
from .models import FiscalYearWindow, Record
from .parser import (
    DetectedColumns,
    FileSource,
    detect_column_mappings,
    extract_date_samples,
    scan_file,
)
from .periods import (
    DateFormatDetection,
    detect_date_format,
    detect_fiscal_years,
    get_date_format,
)
from .pipeline import (
    CancelCheck,
    ProgressCallback,
    RunOutcome,
    arun_analysis,
    run_analysis,
    run_rows_analysis,
    scan_file_date_range,
)
from .settings import ProcessingSettings, load_settings

_logger = get_logger("pvm_bridge.api")


@dataclass(frozen=True, slots=True)
class CsvInspection:
    """What a quick look at a CSV tells us before configuring a run.

    Attributes
    ----------
    headers:
        Header row, in file order.
    sample_rows:
        Up to ``settings.scan_rows`` leading records.
    columns:
        Guessed column roles.
    date_samples / date_format:
        Distinct date values used for format detection and the result.
    date_min / date_max:
        Bounds of parseable dates over the whole file (``None`` without a
        date column or parseable dates).
    fiscal_years:
        Fiscal years touched by the data for ``fy_end_month``.
    """

    path: Path
    size: int
    headers: tuple[str, ...]
    sample_rows: tuple[Record, ...]
    columns: DetectedColumns
    date_samples: tuple[str, ...]
    date_format: DateFormatDetection
    date_min: date | None
    date_max: date | None
    fy_end_month: int
    fiscal_years: tuple[FiscalYearWindow, ...]

    @property
    def fully_covered_years(self) -> tuple[FiscalYearWindow, ...]:
        return tuple(w for w in self.fiscal_years if w.fully_covered)


def inspect_csv(
    path: str | Path,
    *,
    fy_end_month: int = 12,
    date_column: str | None = None,
    date_format: str | None = None,
    settings: ProcessingSettings | None = None,
) -> CsvInspection:
    """Scan ``path``: headers, guessed columns, date format, date range, fiscal years.

    ``date_column`` overrides the guessed date column and ``date_format`` the
    detected format used for the date-range pass. The date range needs a full
    pass over the file; everything else comes from the leading rows.
    """

    if date_format is not None and get_date_format(date_format) is None:
        raise ConfigurationError(f"unknown date format {date_format!r}")

    settings = settings or load_settings()
    source = FileSource(path, chunk_size=settings.chunk_size)
    scan = scan_file(source.path, settings.scan_rows, chunk_size=settings.chunk_size)
    columns = detect_column_mappings(scan.headers, scan.sample_rows)

    date_col = date_column or columns.date
    samples: list[str] = []
    if date_col is not None:
        samples = extract_date_samples(scan.sample_rows, date_col, settings.date_sample_size)
    detection = detect_date_format(samples)

    range_format = date_format or detection.format_id
    lo = hi = None
    if date_col is not None and range_format is not None:
        lo, hi = scan_file_date_range(source, date_col, range_format)

    windows: tuple[FiscalYearWindow, ...] = ()
    if lo is not None and hi is not None:
        windows = tuple(detect_fiscal_years(lo, hi, fy_end_month))

    _logger.info(
        "inspected %s: %d column(s), date column %r, format %s, range %s..%s",
        source.path,
        len(scan.headers),
        date_col,
        range_format,
        lo,
        hi,
    )
    return CsvInspection(
        path=source.path,
        size=source.size,
        headers=scan.headers,
        sample_rows=scan.sample_rows,
        columns=columns,
        date_samples=tuple(samples),
        date_format=detection,
        date_min=lo,
        date_max=hi,
        fy_end_month=fy_end_month,
        fiscal_years=windows,
    )


def _with_detected_format(
    config: AnalysisConfig, sample_rows: Iterable[Record], settings: ProcessingSettings
) -> AnalysisConfig:
    samples = extract_date_samples(sample_rows, config.columns.date, settings.date_sample_size)
    detection = detect_date_format(samples)
    if detection.format_id is None:
        _logger.warning(
            "could not detect a date format for column %r; dates are detected per value",
            config.columns.date,
        )
        return config
    _logger.info(
        "detected date format %s (confidence %.2f)", detection.format_id, detection.confidence
    )
    return config.model_copy(update={"date_format": detection.format_id})


def analyze_csv(
    path: str | Path,
    config: AnalysisConfig,
    *,
    settings: ProcessingSettings | None = None,
    should_cancel: CancelCheck | None = None,
    on_progress: ProgressCallback | None = None,
) -> RunOutcome:
    """Run a full analysis over a CSV file.

    When ``config.date_format`` is ``None`` it is detected from the leading
    rows first.
    """

    settings = settings or load_settings()
    source = FileSource(path, chunk_size=settings.chunk_size)
    if config.date_format is None:
        scan = scan_file(source.path, settings.scan_rows, chunk_size=settings.chunk_size)
        config = _with_detected_format(config, scan.sample_rows, settings)
    return run_analysis(
        source, config, settings=settings, should_cancel=should_cancel, on_progress=on_progress
    )


async def aanalyze_csv(
    path: str | Path,
    config: AnalysisConfig,
    *,
    settings: ProcessingSettings | None = None,
    should_cancel: CancelCheck | None = None,
    on_progress: ProgressCallback | None = None,
) -> RunOutcome:
    """Async variant of :func:`analyze_csv`."""

    settings = settings or load_settings()
    source = FileSource(path, chunk_size=settings.chunk_size)
    if config.date_format is None:
        scan = scan_file(source.path, settings.scan_rows, chunk_size=settings.chunk_size)
        config = _with_detected_format(config, scan.sample_rows, settings)
    return await arun_analysis(
        source, config, settings=settings, should_cancel=should_cancel, on_progress=on_progress
    )


def analyze_rows(
    rows: Iterable[Sequence[object]],
    config: AnalysisConfig,
    *,
    settings: ProcessingSettings | None = None,
    should_cancel: CancelCheck | None = None,
    on_progress: ProgressCallback | None = None,
) -> RunOutcome:
    """Run over pre-tabularized rows (first row is the header).

    ``config.date_format`` should be set; otherwise each date value is
    detected on its own.
    """

    return run_rows_analysis(
        rows,
        config,
        settings=settings or load_settings(),
        should_cancel=should_cancel,
        on_progress=on_progress,
    )


__all__ = [
    "CsvInspection",
    "aanalyze_csv",
    "analyze_csv",
    "analyze_rows",
    "inspect_csv",
]
