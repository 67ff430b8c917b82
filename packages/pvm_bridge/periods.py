"""Period classification: date formats, fiscal years, LTM windows.

Everything here is a pure function over calendar dates. The date-format
catalog is a fixed, ordered tuple; detection scores each entry against a small
sample and picks the first best scorer, with an explicit tie-break between the
two slash-delimited day/month orderings.

Fiscal years are named for the calendar year in which they end. With a June
year-end (``fy_end_month=6``), FY 2024 runs 2023-07-01 .. 2024-06-30.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta

from .logging_setup import get_logger
from .models import FiscalYearWindow, PeriodRange, PeriodTag

_logger = get_logger("pvm_bridge.periods")

MIN_PLAUSIBLE_YEAR = 1900
MAX_PLAUSIBLE_YEAR = 2100
AMBIGUITY_THRESHOLD = 0.1
MAX_PERIOD_GAP_DAYS = 365

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
MONTH_NAMES_SHORT = tuple(name[:3] for name in MONTH_NAMES)
_MONTHS_BY_ABBR = {abbr.lower(): idx for idx, abbr in enumerate(MONTH_NAMES_SHORT, start=1)}


# ---------------------------------------------------------------------------
# Date-format catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DateFormat:
    """A recognisable date layout.

    ``parse`` expects a string already matched by ``pattern`` and raises
    ``ValueError`` (or ``KeyError`` for unknown month names) when the parts do
    not form a real calendar date.
    """

    id: str
    pattern: re.Pattern[str]
    parse: Callable[[str], date]
    example: str

    def matches(self, text: str) -> bool:
        return self.pattern.fullmatch(text) is not None


def _ymd_dash(s: str) -> date:
    y, m, d = (int(p) for p in s.split("-"))
    return date(y, m, d)


def _mdy(sep: str) -> Callable[[str], date]:
    def parse(s: str) -> date:
        m, d, y = (int(p) for p in s.split(sep))
        return date(y, m, d)

    return parse


def _dmy_slash(s: str) -> date:
    d, m, y = (int(p) for p in s.split("/"))
    return date(y, m, d)


def _dd_mmm_yyyy(s: str) -> date:
    d, mon, y = s.split("-")
    return date(int(y), _MONTHS_BY_ABBR[mon.lower()], int(d))


_MMM_DD_YYYY_RE = re.compile(r"([A-Za-z]{3})\s+(\d{1,2}),?\s+(\d{4})")


def _mmm_dd_yyyy(s: str) -> date:
    match = _MMM_DD_YYYY_RE.fullmatch(s)
    if match is None:
        raise ValueError(f"not a 'MMM DD, YYYY' date: {s!r}")
    mon, d, y = match.groups()
    return date(int(y), _MONTHS_BY_ABBR[mon.lower()], int(d))


def _yyyymmdd(s: str) -> date:
    return date(int(s[0:4]), int(s[4:6]), int(s[6:8]))


_SLASH_DATE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")

DATE_FORMATS: tuple[DateFormat, ...] = (
    DateFormat("YYYY-MM-DD", re.compile(r"\d{4}-\d{2}-\d{2}"), _ymd_dash, "2024-01-15"),
    DateFormat("MM/DD/YYYY", _SLASH_DATE, _mdy("/"), "01/15/2024"),
    DateFormat("DD/MM/YYYY", _SLASH_DATE, _dmy_slash, "15/01/2024"),
    DateFormat("MM-DD-YYYY", re.compile(r"\d{1,2}-\d{1,2}-\d{4}"), _mdy("-"), "01-15-2024"),
    DateFormat(
        "DD-MMM-YYYY", re.compile(r"\d{1,2}-[A-Za-z]{3}-\d{4}"), _dd_mmm_yyyy, "15-Jan-2024"
    ),
    DateFormat(
        "MMM DD, YYYY",
        re.compile(r"[A-Za-z]{3}\s+\d{1,2},?\s+\d{4}"),
        _mmm_dd_yyyy,
        "Jan 15, 2024",
    ),
    DateFormat("YYYYMMDD", re.compile(r"\d{8}"), _yyyymmdd, "20240115"),
    DateFormat("M/D/YYYY", _SLASH_DATE, _mdy("/"), "1/5/2024"),
)

_FORMATS_BY_ID = {f.id: f for f in DATE_FORMATS}


def get_date_format(format_id: str | None) -> DateFormat | None:
    """Look up a catalog entry by id; ``None`` when unknown."""

    if format_id is None:
        return None
    return _FORMATS_BY_ID.get(format_id)


def _try_parse(fmt: DateFormat, text: str) -> date | None:
    if not fmt.matches(text):
        return None
    try:
        return fmt.parse(text)
    except (ValueError, KeyError):
        return None


@dataclass(frozen=True, slots=True)
class DateFormatDetection:
    """Outcome of :func:`detect_date_format`.

    ``confidence`` is the winning format's fraction of samples that matched
    and parsed to a plausible year. ``scores`` holds every format's fraction.
    """

    format_id: str | None
    confidence: float
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def format(self) -> DateFormat | None:
        return get_date_format(self.format_id)


def detect_date_format(samples: Iterable[str | None]) -> DateFormatDetection:
    """Pick the catalog format that best explains ``samples``.

    A sample counts for a format when it matches the pattern and parses to a
    date whose year lies in [1900, 2100]. The first format with the highest
    score wins. When the winner is one of the slash orderings and the
    ``MM/DD/YYYY`` and ``DD/MM/YYYY`` scores differ by less than 0.1, the
    first sample with a component above 12 decides: a leading component above
    12 means ``DD/MM/YYYY``, a middle one means ``MM/DD/YYYY``. Without such a
    sample the score winner stands.
    """

    valid = [s.strip() for s in samples if s and s.strip()]
    if not valid:
        return DateFormatDetection(None, 0.0)

    scores: dict[str, float] = {}
    for fmt in DATE_FORMATS:
        ok = 0
        for sample in valid:
            parsed = _try_parse(fmt, sample)
            if parsed is not None and MIN_PLAUSIBLE_YEAR <= parsed.year <= MAX_PLAUSIBLE_YEAR:
                ok += 1
        scores[fmt.id] = ok / len(valid)

    best: DateFormat | None = None
    best_score = 0.0
    for fmt in DATE_FORMATS:
        if scores[fmt.id] > best_score:
            best, best_score = fmt, scores[fmt.id]

    if best is not None and best.id in ("MM/DD/YYYY", "DD/MM/YYYY"):
        if abs(scores["MM/DD/YYYY"] - scores["DD/MM/YYYY"]) < AMBIGUITY_THRESHOLD:
            best = _disambiguate_slash_order(valid) or best

    detection = DateFormatDetection(best.id if best else None, best_score, scores)
    _logger.debug(
        "date format detection: %s (confidence %.2f) over %d sample(s)",
        detection.format_id,
        detection.confidence,
        len(valid),
    )
    return detection


def _disambiguate_slash_order(samples: Sequence[str]) -> DateFormat | None:
    for sample in samples:
        parts = sample.split("/")
        if len(parts) != 3:
            continue
        try:
            first, second = int(parts[0]), int(parts[1])
        except ValueError:
            continue
        if 12 < first <= 31:
            return _FORMATS_BY_ID["DD/MM/YYYY"]
        if 12 < second <= 31:
            return _FORMATS_BY_ID["MM/DD/YYYY"]
    return None


def parse_date(text: str | None, format_id: str | None) -> date | None:
    """Parse ``text`` with the named format.

    An unknown (or missing) ``format_id`` falls back to detecting the format
    of ``text`` alone. Returns ``None`` on any failure, never a default date.
    """

    if text is None:
        return None
    s = text.strip()
    if not s:
        return None
    fmt = get_date_format(format_id)
    if fmt is None:
        fmt = detect_date_format([s]).format
        if fmt is None:
            return None
    return _try_parse(fmt, s)


# ---------------------------------------------------------------------------
# Fiscal years and LTM
# ---------------------------------------------------------------------------


def _check_month(fy_end_month: int) -> None:
    if not 1 <= fy_end_month <= 12:
        raise ValueError(f"fiscal-year-end month must be within 1..12, got {fy_end_month}")


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def fiscal_year_of(day: date, fy_end_month: int) -> int:
    """Fiscal year containing ``day``: the next calendar year once past the end month."""

    _check_month(fy_end_month)
    return day.year + 1 if day.month > fy_end_month else day.year


def fiscal_year_range(fiscal_year: int, fy_end_month: int) -> PeriodRange:
    """Inclusive date range of ``fiscal_year``."""

    _check_month(fy_end_month)
    if fy_end_month == 12:
        return PeriodRange(date(fiscal_year, 1, 1), date(fiscal_year, 12, 31))
    return PeriodRange(
        date(fiscal_year - 1, fy_end_month + 1, 1),
        last_day_of_month(fiscal_year, fy_end_month),
    )


def prior_fiscal_year(ltm_end: date, fy_end_month: int) -> int:
    """The fiscal year before the one containing ``ltm_end``."""

    return fiscal_year_of(ltm_end, fy_end_month) - 1


def _one_year_earlier(day: date) -> date:
    try:
        return day.replace(year=day.year - 1)
    except ValueError:
        # Feb 29 has no counterpart; roll forward to Mar 1 like calendar overflow.
        return date(day.year - 1, 3, 1)


def ltm_range(end: date) -> PeriodRange:
    """Twelve months ending on ``end`` (inclusive), starting the day after ``end - 1 year``."""

    return PeriodRange(_one_year_earlier(end) + timedelta(days=1), end)


def detect_fiscal_years(
    data_min: date, data_max: date, fy_end_month: int
) -> list[FiscalYearWindow]:
    """Every fiscal year touched by ``[data_min, data_max]``, oldest first.

    A year is ``fully_covered`` when the data span contains its whole range.
    """

    if data_min > data_max:
        raise ValueError(f"data_min {data_min} is after data_max {data_max}")
    first = fiscal_year_of(data_min, fy_end_month)
    last = fiscal_year_of(data_max, fy_end_month)
    windows: list[FiscalYearWindow] = []
    for fy in range(first, last + 1):
        r = fiscal_year_range(fy, fy_end_month)
        windows.append(
            FiscalYearWindow(
                fiscal_year=fy,
                start=r.start,
                end=r.end,
                fully_covered=data_min <= r.start and data_max >= r.end,
            )
        )
    return windows


def fiscal_year_windows(years: Iterable[int], fy_end_month: int) -> tuple[FiscalYearWindow, ...]:
    """Windows for explicitly chosen fiscal years, sorted and de-duplicated."""

    out: list[FiscalYearWindow] = []
    for fy in sorted(set(years)):
        r = fiscal_year_range(fy, fy_end_month)
        out.append(FiscalYearWindow(fiscal_year=fy, start=r.start, end=r.end))
    return tuple(out)


# ---------------------------------------------------------------------------
# Two-period classification and presets
# ---------------------------------------------------------------------------


def classify_period(day: date, py_range: PeriodRange, cy_range: PeriodRange) -> PeriodTag | None:
    """``PY``, ``CY`` or ``None``; inclusive on both ends, PY checked first."""

    if py_range.start <= day <= py_range.end:
        return PeriodTag.PY
    if cy_range.start <= day <= cy_range.end:
        return PeriodTag.CY
    return None


@dataclass(frozen=True, slots=True)
class PeriodValidation:
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_period_config(py_range: PeriodRange, cy_range: PeriodRange) -> PeriodValidation:
    """Flag questionable PY/CY pairs.

    Every finding is a warning and never blocks a run. Rows in an overlap
    are counted as PY. ``errors`` stays empty for date-typed ranges.
    """

    warnings: list[str] = []

    if py_range.start > cy_range.start:
        warnings.append("Prior Year period starts after the current period.")
    if py_range.end >= cy_range.start and cy_range.end >= py_range.start:
        warnings.append(
            "Prior Year and current periods overlap. Rows in the overlap are counted "
            "as Prior Year only."
        )

    gap_days = max((cy_range.start - py_range.end).days, (py_range.start - cy_range.end).days)
    if gap_days > MAX_PERIOD_GAP_DAYS:
        warnings.append(
            f"There is a {gap_days} day gap between Prior Year and the current period. "
            "Some data may be excluded."
        )

    return PeriodValidation(tuple(warnings))


@dataclass(frozen=True, slots=True)
class PeriodPlan:
    """A PY/CY pair with display labels."""

    py_range: PeriodRange
    cy_range: PeriodRange
    py_label: str
    cy_label: str


def two_period_ranges(
    fy_end_month: int,
    *,
    ltm_end: date | None = None,
    cy_fiscal_year: int | None = None,
) -> PeriodPlan:
    """Build the standard comparisons.

    - LTM: CY is the twelve months ending ``ltm_end``; PY is the fiscal year
      before the one containing ``ltm_end``.
    - Fiscal year: CY is ``cy_fiscal_year`` and PY the year before it.

    Exactly one of ``ltm_end`` and ``cy_fiscal_year`` must be given.
    """

    if (ltm_end is None) == (cy_fiscal_year is None):
        raise ValueError("exactly one of ltm_end and cy_fiscal_year must be provided")

    if ltm_end is not None:
        prior = prior_fiscal_year(ltm_end, fy_end_month)
        return PeriodPlan(
            py_range=fiscal_year_range(prior, fy_end_month),
            cy_range=ltm_range(ltm_end),
            py_label=f"FY {prior}",
            cy_label="LTM",
        )

    assert cy_fiscal_year is not None
    return PeriodPlan(
        py_range=fiscal_year_range(cy_fiscal_year - 1, fy_end_month),
        cy_range=fiscal_year_range(cy_fiscal_year, fy_end_month),
        py_label=f"FY {cy_fiscal_year - 1}",
        cy_label=f"FY {cy_fiscal_year}",
    )


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_date(day: date | None, style: str = "medium") -> str:
    """``short`` → ``1/5/2024``, ``medium`` → ``Jan 5, 2024``, ``long`` → ``January 5, 2024``."""

    if day is None:
        return "--"
    if style == "short":
        return f"{day.month}/{day.day}/{day.year}"
    if style == "long":
        return f"{MONTH_NAMES[day.month - 1]} {day.day}, {day.year}"
    return f"{MONTH_NAMES_SHORT[day.month - 1]} {day.day}, {day.year}"


def format_date_range(period: PeriodRange) -> str:
    return f"{format_date(period.start)} - {format_date(period.end)}"


__all__ = [
    "DATE_FORMATS",
    "DateFormat",
    "DateFormatDetection",
    "PeriodPlan",
    "PeriodValidation",
    "classify_period",
    "detect_date_format",
    "detect_fiscal_years",
    "fiscal_year_of",
    "fiscal_year_range",
    "fiscal_year_windows",
    "format_date",
    "format_date_range",
    "get_date_format",
    "last_day_of_month",
    "ltm_range",
    "parse_date",
    "prior_fiscal_year",
    "two_period_ranges",
    "validate_period_config",
]
