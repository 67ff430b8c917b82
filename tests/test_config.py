from datetime import date

import pytest
from pydantic import ValidationError

from pvm_bridge.config import AnalysisConfig, ColumnMapping
from pvm_bridge.errors import ConfigurationError
from pvm_bridge.models import BridgeMode, PeriodRange
from pvm_bridge.periods import fiscal_year_windows

PY = PeriodRange(date(2023, 1, 1), date(2023, 12, 31))
CY = PeriodRange(date(2024, 1, 1), date(2024, 12, 31))


def _columns(**overrides) -> ColumnMapping:
    base = {"date": "date", "sales": "sales", "quantity": "qty", "dimensions": ("region",)}
    base.update(overrides)
    return ColumnMapping(**base)


def test_two_period_config_accepts_date_strings():
    cfg = AnalysisConfig(
        columns=_columns(),
        py_range={"start": "2023-01-01", "end": "2023-12-31"},
        cy_range={"start": "2024-01-01", "end": "2024-12-31"},
    )
    assert cfg.py_range == PY
    assert not cfg.is_multi_year
    assert cfg.mode is BridgeMode.PVM


def test_period_layout_is_required_and_exclusive():
    with pytest.raises(ValidationError):
        AnalysisConfig(columns=_columns())
    with pytest.raises(ValidationError):
        AnalysisConfig(columns=_columns(), py_range=PY)
    with pytest.raises(ValidationError):
        AnalysisConfig(
            columns=_columns(),
            py_range=PY,
            cy_range=CY,
            fiscal_years=fiscal_year_windows([2023, 2024], 12),
        )


def test_multi_year_needs_two_ordered_windows():
    AnalysisConfig(columns=_columns(), fiscal_years=fiscal_year_windows([2022, 2023], 12))
    with pytest.raises(ValidationError):
        AnalysisConfig(columns=_columns(), fiscal_years=fiscal_year_windows([2023], 12))
    reversed_windows = tuple(reversed(fiscal_year_windows([2022, 2023], 12)))
    with pytest.raises(ValidationError):
        AnalysisConfig(columns=_columns(), fiscal_years=reversed_windows)


def test_gross_margin_requires_cost_column():
    with pytest.raises(ValidationError, match="cost column"):
        AnalysisConfig(columns=_columns(), py_range=PY, cy_range=CY, mode="gm")
    cfg = AnalysisConfig(
        columns=_columns(cost="cogs"), py_range=PY, cy_range=CY, mode="gm"
    )
    assert cfg.mode is BridgeMode.GM


def test_prior_period_after_current_is_accepted_with_a_warning():
    cfg = AnalysisConfig(columns=_columns(), py_range=CY, cy_range=PY)
    assert any("starts after" in w for w in cfg.period_warnings())


def test_overlap_is_accepted_with_a_warning():
    cy = PeriodRange(date(2023, 7, 1), date(2024, 6, 30))
    cfg = AnalysisConfig(columns=_columns(), py_range=PY, cy_range=cy)
    assert any("overlap" in w for w in cfg.period_warnings())


def test_current_period_starting_first_but_overlapping_is_accepted():
    cfg = AnalysisConfig(
        columns=_columns(),
        py_range=PeriodRange(date(2023, 2, 1), date(2023, 12, 31)),
        cy_range=PeriodRange(date(2023, 1, 1), date(2023, 6, 30)),
    )
    assert any("overlap" in w for w in cfg.period_warnings())


def test_field_values_are_checked():
    with pytest.raises(ValidationError):
        AnalysisConfig(columns=_columns(), py_range=PY, cy_range=CY, fy_end_month=13)
    with pytest.raises(ValidationError):
        AnalysisConfig(columns=_columns(), py_range=PY, cy_range=CY, date_format="DD.MM.YY")
    with pytest.raises(ValidationError):
        AnalysisConfig(columns=_columns(), py_range=PY, cy_range=CY, unknown_option=True)
    with pytest.raises(ValidationError):
        _columns(dimensions=("region", "region"))
    with pytest.raises(ValidationError):
        _columns(sales="")


def test_config_is_frozen():
    cfg = AnalysisConfig(columns=_columns(), py_range=PY, cy_range=CY)
    with pytest.raises(ValidationError):
        cfg.mode = BridgeMode.GM


def test_blank_cost_column_means_none():
    assert _columns(cost="  ").cost is None


def test_validate_against_headers_reports_missing_columns():
    cfg = AnalysisConfig(columns=_columns(cost="cogs"), py_range=PY, cy_range=CY)
    cfg.validate_against_headers(["date", "sales", "qty", "region", "cogs", "extra"])
    with pytest.raises(ConfigurationError, match="'cogs'"):
        cfg.validate_against_headers(["date", "sales", "qty", "region"])
