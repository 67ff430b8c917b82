from datetime import date

import pytest

from pvm_bridge.models import PeriodRange, PeriodTag
from pvm_bridge.periods import (
    DATE_FORMATS,
    classify_period,
    detect_date_format,
    detect_fiscal_years,
    fiscal_year_of,
    fiscal_year_range,
    fiscal_year_windows,
    format_date,
    format_date_range,
    last_day_of_month,
    ltm_range,
    parse_date,
    prior_fiscal_year,
    two_period_ranges,
    validate_period_config,
)


def _r(a: str, b: str) -> PeriodRange:
    return PeriodRange(date.fromisoformat(a), date.fromisoformat(b))


# ---- Date-format detection ---------------------------------------------------


def test_catalog_order_is_fixed():
    assert [f.id for f in DATE_FORMATS] == [
        "YYYY-MM-DD",
        "MM/DD/YYYY",
        "DD/MM/YYYY",
        "MM-DD-YYYY",
        "DD-MMM-YYYY",
        "MMM DD, YYYY",
        "YYYYMMDD",
        "M/D/YYYY",
    ]


def test_day_above_twelve_in_first_position_means_day_first():
    det = detect_date_format(["13/01/2024", "02/05/2024"])
    assert det.format_id == "DD/MM/YYYY"
    assert det.confidence == 1.0


def test_undisambiguated_slash_date_keeps_higher_score():
    assert detect_date_format(["01/13/2024"]).format_id == "MM/DD/YYYY"


def test_exact_tie_without_evidence_keeps_first_format():
    assert detect_date_format(["02/05/2024", "03/04/2024"]).format_id == "MM/DD/YYYY"


def test_close_scores_are_resolved_by_a_component_above_twelve():
    ambiguous = [f"{m:02d}/{m + 1:02d}/2024" for m in range(1, 11)]
    det = detect_date_format([*ambiguous, "01/13/2024"])
    assert det.scores["DD/MM/YYYY"] == pytest.approx(10 / 11)
    assert det.format_id == "MM/DD/YYYY"

    det = detect_date_format([*ambiguous, "13/01/2024"])
    assert det.format_id == "DD/MM/YYYY"


@pytest.mark.parametrize(
    ("sample", "format_id"),
    [
        ("2024-01-15", "YYYY-MM-DD"),
        ("01-15-2024", "MM-DD-YYYY"),
        ("15-Jan-2024", "DD-MMM-YYYY"),
        ("Jan 15, 2024", "MMM DD, YYYY"),
        ("20240115", "YYYYMMDD"),
        ("1/5/2024", "MM/DD/YYYY"),
    ],
)
def test_detects_each_layout(sample: str, format_id: str):
    assert detect_date_format([sample]).format_id == format_id


def test_implausible_years_and_garbage_detect_nothing():
    assert detect_date_format(["1850-01-01"]).format_id is None
    det = detect_date_format(["", None, "n/a"])
    assert det.format_id is None
    assert det.confidence == 0.0


# ---- Parsing -----------------------------------------------------------------


def test_parse_date_with_named_format():
    assert parse_date("15/01/2024", "DD/MM/YYYY") == date(2024, 1, 15)
    assert parse_date(" 2024-01-15 ", "YYYY-MM-DD") == date(2024, 1, 15)
    assert parse_date("15-jan-2024", "DD-MMM-YYYY") == date(2024, 1, 15)


def test_parse_date_returns_none_instead_of_a_default():
    assert parse_date("2024-02-30", "YYYY-MM-DD") is None
    assert parse_date("01/15/2024", "DD/MM/YYYY") is None
    assert parse_date("", "YYYY-MM-DD") is None
    assert parse_date(None, "YYYY-MM-DD") is None


def test_parse_date_unknown_format_falls_back_to_detection():
    assert parse_date("2024-01-15", "not-a-format") == date(2024, 1, 15)
    assert parse_date("Jan 5, 2024", None) == date(2024, 1, 5)


# ---- Fiscal years ------------------------------------------------------------


def test_fiscal_year_boundary_june_year_end():
    assert fiscal_year_of(date(2024, 7, 1), 6) == 2025
    assert fiscal_year_of(date(2024, 6, 30), 6) == 2024


def test_december_year_end_is_calendar_year():
    assert fiscal_year_of(date(2024, 12, 31), 12) == 2024
    assert fiscal_year_range(2024, 12) == _r("2024-01-01", "2024-12-31")


def test_fiscal_year_range_non_december():
    assert fiscal_year_range(2025, 6) == _r("2024-07-01", "2025-06-30")
    assert fiscal_year_range(2024, 2) == _r("2023-03-01", "2024-02-29")


def test_invalid_month_rejected():
    with pytest.raises(ValueError):
        fiscal_year_of(date(2024, 1, 1), 13)


def test_last_day_of_month_handles_leap_years():
    assert last_day_of_month(2024, 2) == date(2024, 2, 29)
    assert last_day_of_month(2023, 2) == date(2023, 2, 28)


def test_prior_fiscal_year():
    assert prior_fiscal_year(date(2024, 3, 31), 6) == 2023
    assert prior_fiscal_year(date(2024, 9, 30), 6) == 2024


def test_ltm_range_starts_day_after_one_year_earlier():
    assert ltm_range(date(2024, 6, 30)) == _r("2023-07-01", "2024-06-30")
    assert ltm_range(date(2024, 12, 31)) == _r("2024-01-01", "2024-12-31")


def test_ltm_range_from_leap_day_rolls_forward():
    assert ltm_range(date(2024, 2, 29)) == _r("2023-03-02", "2024-02-29")


def test_detect_fiscal_years_tags_coverage():
    windows = detect_fiscal_years(date(2022, 3, 15), date(2024, 8, 1), 6)
    assert [(w.fiscal_year, w.fully_covered) for w in windows] == [
        (2022, False),
        (2023, True),
        (2024, True),
        (2025, False),
    ]
    assert windows[1].range == _r("2022-07-01", "2023-06-30")
    assert windows[1].label == "FY 2023"


def test_fiscal_year_windows_sorted_and_deduplicated():
    windows = fiscal_year_windows([2024, 2022, 2024], 12)
    assert [w.fiscal_year for w in windows] == [2022, 2024]


# ---- Classification and validation -------------------------------------------


def test_classify_period_inclusive_and_py_first():
    py = _r("2023-01-01", "2023-12-31")
    cy = _r("2023-07-01", "2024-06-30")
    assert classify_period(date(2023, 1, 1), py, cy) is PeriodTag.PY
    assert classify_period(date(2023, 8, 1), py, cy) is PeriodTag.PY
    assert classify_period(date(2024, 6, 30), py, cy) is PeriodTag.CY
    assert classify_period(date(2024, 7, 1), py, cy) is None


def test_validate_warns_on_overlap_and_long_gap():
    overlap = validate_period_config(_r("2023-01-01", "2023-12-31"), _r("2023-06-01", "2024-05-31"))
    assert overlap.valid
    assert any("overlap" in w for w in overlap.warnings)

    gap = validate_period_config(_r("2020-01-01", "2020-12-31"), _r("2022-06-01", "2022-12-31"))
    assert gap.valid
    assert any("517 day gap" in w for w in gap.warnings)

    clean = validate_period_config(_r("2023-01-01", "2023-12-31"), _r("2024-01-01", "2024-12-31"))
    assert clean.valid and clean.warnings == ()


def test_validate_warns_when_prior_period_starts_after_current():
    result = validate_period_config(_r("2024-01-01", "2024-12-31"), _r("2023-01-01", "2023-12-31"))
    assert result.valid
    assert result.errors == ()
    assert any("starts after" in w for w in result.warnings)


def test_validate_detects_overlap_in_either_direction():
    # CY starts first but ends inside PY
    result = validate_period_config(_r("2023-02-01", "2023-12-31"), _r("2023-01-01", "2023-06-30"))
    assert result.valid
    assert any("overlap" in w for w in result.warnings)

    disjoint = validate_period_config(
        _r("2024-01-01", "2024-12-31"), _r("2023-01-01", "2023-06-30")
    )
    assert not any("overlap" in w for w in disjoint.warnings)


def test_inverted_range_cannot_be_built():
    with pytest.raises(ValueError):
        _r("2024-12-31", "2024-01-01")


# ---- Presets -----------------------------------------------------------------


def test_ltm_preset_compares_against_prior_fiscal_year():
    plan = two_period_ranges(6, ltm_end=date(2024, 3, 31))
    assert plan.cy_range == _r("2023-04-01", "2024-03-31")
    assert plan.py_range == _r("2022-07-01", "2023-06-30")
    assert (plan.py_label, plan.cy_label) == ("FY 2023", "LTM")


def test_fiscal_year_preset():
    plan = two_period_ranges(12, cy_fiscal_year=2024)
    assert plan.py_range == _r("2023-01-01", "2023-12-31")
    assert plan.cy_range == _r("2024-01-01", "2024-12-31")
    assert (plan.py_label, plan.cy_label) == ("FY 2023", "FY 2024")


def test_preset_needs_exactly_one_anchor():
    with pytest.raises(ValueError):
        two_period_ranges(12)
    with pytest.raises(ValueError):
        two_period_ranges(12, ltm_end=date(2024, 1, 1), cy_fiscal_year=2024)


# ---- Display -----------------------------------------------------------------


def test_format_date_styles():
    d = date(2024, 1, 5)
    assert format_date(d, "short") == "1/5/2024"
    assert format_date(d) == "Jan 5, 2024"
    assert format_date(d, "long") == "January 5, 2024"
    assert format_date(None) == "--"
    assert format_date_range(_r("2024-01-01", "2024-12-31")) == "Jan 1, 2024 - Dec 31, 2024"
