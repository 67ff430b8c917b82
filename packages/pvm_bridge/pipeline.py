"""Run driver: input source → parser → aggregation → bridge.

A run pulls text chunks (or pre-tabularized rows), tokenizes them, checks the
header against the configured columns before the first data row, folds each
record into the aggregation context, and finally computes the bridge.

Cancellation is cooperative: ``should_cancel`` is polled before every chunk
and every ``settings.cancel_poll_rows`` rows. A cancelled run returns a
:class:`RunOutcome` with ``cancelled=True`` and partial statistics, and its
buckets are dropped. A failure while reading or parsing raises
:class:`~pvm_bridge.errors.AnalysisAborted` carrying the statistics gathered
so far, chained from the original exception.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import TypeAlias

from .aggregation import AggregationContext, create_context, finalize, process_row
from .bridge import calculate_bridge, calculate_multi_year_bridge
from .config import AnalysisConfig
from .errors import AnalysisAborted, ConfigurationError
from .logging_setup import get_logger
from .models import AggregationResult, AggregationStats, BridgeResult, MultiYearBridgeResult, Record
from .parser import (
    DEFAULT_DELIMITER,
    FileSource,
    RecordAssembler,
    RecordTokenizer,
    iter_records,
    text_rows,
)
from .periods import parse_date
from .settings import ProcessingSettings

_logger = get_logger("pvm_bridge.pipeline")


@dataclass(frozen=True, slots=True)
class RunProgress:
    rows: int
    bytes_read: int | None = None
    total_bytes: int | None = None

    @property
    def fraction(self) -> float | None:
        if self.bytes_read is None or not self.total_bytes:
            return None
        return min(1.0, self.bytes_read / self.total_bytes)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Result of one run.

    ``aggregation`` and ``bridge`` are ``None`` when ``cancelled`` is set.
    """

    cancelled: bool
    stats: AggregationStats
    aggregation: AggregationResult | None = None
    bridge: BridgeResult | MultiYearBridgeResult | None = None
    warnings: tuple[str, ...] = ()


CancelCheck: TypeAlias = Callable[[], bool]
ProgressCallback: TypeAlias = Callable[[RunProgress], None]


class _RunDriver:
    """State shared by the sync and async run loops."""

    def __init__(
        self,
        config: AnalysisConfig,
        settings: ProcessingSettings,
        should_cancel: CancelCheck | None,
        on_progress: ProgressCallback | None,
        source: FileSource | None = None,
        delimiter: str = DEFAULT_DELIMITER,
    ) -> None:
        self.config = config
        self.settings = settings
        self.should_cancel = should_cancel
        self.on_progress = on_progress
        self.source = source
        self.total_bytes = source.size if source is not None else None
        self.ctx: AggregationContext = create_context(config, settings=settings)
        self.tokenizer = RecordTokenizer(delimiter)
        self.assembler = RecordAssembler()
        self.warnings = config.period_warnings()
        self.header_checked = False

    def start(self) -> None:
        _logger.info(
            "run started: mode=%s price_definition=%s periods=%s dimensions=%s",
            self.config.mode,
            self.config.price_definition,
            "multi-year" if self.config.is_multi_year else "two-period",
            ",".join(self.config.columns.dimensions) or "(total)",
        )
        for message in self.warnings:
            _logger.warning("period configuration: %s", message)

    def cancel_requested(self) -> bool:
        return self.should_cancel is not None and bool(self.should_cancel())

    def _check_header(self) -> None:
        header = self.assembler.header
        if header is None:
            raise ConfigurationError("input has no header row")
        self.config.validate_against_headers(header)
        self.header_checked = True

    def _progress(self) -> None:
        if self.on_progress is None:
            return
        bytes_read = self.source.bytes_read if self.source is not None else None
        self.on_progress(RunProgress(self.ctx.total_rows, bytes_read, self.total_bytes))

    def push_rows(self, rows: Iterable[Sequence[str]]) -> bool:
        """Fold tokenized rows; ``False`` when cancellation was requested."""

        ctx = self.ctx
        progress_every = self.settings.progress_interval
        poll_every = self.settings.cancel_poll_rows
        for row in rows:
            record = self.assembler.push(row)
            if record is None:
                self._check_header()
                continue
            process_row(ctx, record)
            n = ctx.total_rows
            if n % progress_every == 0:
                self._progress()
            if n % poll_every == 0 and self.cancel_requested():
                return False
        return True

    def feed_text(self, chunk: str) -> bool:
        rows = self.tokenizer.feed(chunk)
        _logger.debug(
            "chunk: %d char(s), %d row(s) completed, %d data row(s) so far",
            len(chunk),
            len(rows),
            self.ctx.total_rows,
        )
        return self.push_rows(rows)

    def finish_text(self) -> bool:
        return self.push_rows(self.tokenizer.finish())

    def complete(self) -> RunOutcome:
        if not self.header_checked:
            self._check_header()
        self._progress()
        aggregation = finalize(self.ctx)
        bridge: BridgeResult | MultiYearBridgeResult
        if aggregation.is_multi_year:
            bridge = calculate_multi_year_bridge(
                aggregation, self.config.mode, self.config.price_definition
            )
        else:
            bridge = calculate_bridge(aggregation, self.config.mode, self.config.price_definition)
        return RunOutcome(
            cancelled=False,
            stats=aggregation.stats,
            aggregation=aggregation,
            bridge=bridge,
            warnings=self.warnings,
        )

    def cancelled(self) -> RunOutcome:
        stats = self.ctx.snapshot_stats()
        _logger.info("run cancelled after %d row(s)", stats.total_rows)
        return RunOutcome(cancelled=True, stats=stats, warnings=self.warnings)

    def abort(self, exc: BaseException) -> AnalysisAborted:
        stats = self.ctx.snapshot_stats()
        _logger.error(
            "run aborted after %d row(s) (included=%d excluded=%d): %s",
            stats.total_rows,
            stats.included_rows,
            stats.excluded_rows,
            exc,
        )
        return AnalysisAborted(
            f"analysis aborted after {stats.total_rows} row(s): {exc}", stats=stats
        )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def run_analysis(
    source: FileSource | Iterable[str],
    config: AnalysisConfig,
    *,
    settings: ProcessingSettings | None = None,
    should_cancel: CancelCheck | None = None,
    on_progress: ProgressCallback | None = None,
    delimiter: str = DEFAULT_DELIMITER,
) -> RunOutcome:
    """Run a full analysis over delimited text.

    ``source`` is a :class:`FileSource` or any iterable of text chunks.
    Raises :class:`ConfigurationError` when the header lacks a mapped column
    and :class:`AnalysisAborted` when reading or parsing fails.
    """

    settings = settings or ProcessingSettings()
    file_source = source if isinstance(source, FileSource) else None
    driver = _RunDriver(config, settings, should_cancel, on_progress, file_source, delimiter)
    chunks = file_source.iter_text() if file_source is not None else source
    driver.start()
    try:
        for chunk in chunks:
            if driver.cancel_requested() or not driver.feed_text(chunk):
                return driver.cancelled()
        if not driver.finish_text():
            return driver.cancelled()
    except ConfigurationError:
        raise
    except Exception as exc:
        raise driver.abort(exc) from exc
    return driver.complete()


async def arun_analysis(
    source: FileSource | AsyncIterable[str],
    config: AnalysisConfig,
    *,
    settings: ProcessingSettings | None = None,
    should_cancel: CancelCheck | None = None,
    on_progress: ProgressCallback | None = None,
    delimiter: str = DEFAULT_DELIMITER,
) -> RunOutcome:
    """Async variant of :func:`run_analysis`.

    The loop only suspends while awaiting the next chunk; each chunk is
    tokenized and aggregated inline.
    """

    settings = settings or ProcessingSettings()
    file_source = source if isinstance(source, FileSource) else None
    driver = _RunDriver(config, settings, should_cancel, on_progress, file_source, delimiter)
    chunks = file_source.aiter_text() if file_source is not None else source
    driver.start()
    try:
        async for chunk in chunks:
            if driver.cancel_requested() or not driver.feed_text(chunk):
                return driver.cancelled()
        if not driver.finish_text():
            return driver.cancelled()
    except ConfigurationError:
        raise
    except Exception as exc:
        raise driver.abort(exc) from exc
    return driver.complete()


def run_rows_analysis(
    rows: Iterable[Sequence[object]],
    config: AnalysisConfig,
    *,
    settings: ProcessingSettings | None = None,
    should_cancel: CancelCheck | None = None,
    on_progress: ProgressCallback | None = None,
) -> RunOutcome:
    """Run over pre-tabularized row arrays, the first being the header.

    Cells are converted to text and fully blank rows are skipped.
    """

    settings = settings or ProcessingSettings()
    driver = _RunDriver(config, settings, should_cancel, on_progress)
    driver.start()
    if driver.cancel_requested():
        return driver.cancelled()
    try:
        if not driver.push_rows(text_rows(rows)):
            return driver.cancelled()
    except ConfigurationError:
        raise
    except Exception as exc:
        raise driver.abort(exc) from exc
    return driver.complete()


def scan_date_range(
    records: Iterable[Record], date_column: str, date_format: str | None
) -> tuple[date | None, date | None]:
    """Minimum and maximum parseable date in ``date_column``."""

    lo: date | None = None
    hi: date | None = None
    for record in records:
        day = parse_date(record.get(date_column), date_format)
        if day is None:
            continue
        if lo is None or day < lo:
            lo = day
        if hi is None or day > hi:
            hi = day
    return lo, hi


def scan_file_date_range(
    source: FileSource, date_column: str, date_format: str | None
) -> tuple[date | None, date | None]:
    """Full pass over ``source`` collecting its date bounds."""

    return scan_date_range(iter_records(source.iter_text()), date_column, date_format)


__all__ = [
    "RunOutcome",
    "RunProgress",
    "arun_analysis",
    "run_analysis",
    "run_rows_analysis",
    "scan_date_range",
    "scan_file_date_range",
]
