import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import pvm_bridge.cli as cli_mod
from pvm_bridge.cli import app, cmd_bridge, cmd_inspect
from pvm_bridge.models import BridgeMode, ComparisonPreset

EAST_CSV = "date,region,sales,qty\n2023-03-01,East,100,10\n2024-03-01,East,150,10\n"


@pytest.fixture
def east_csv(tmp_path: Path) -> Path:
    path = tmp_path / "east.csv"
    path.write_text(EAST_CSV, encoding="utf-8")
    return path


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> CliRunner:
    # Keep the handler off the runner's captured stderr and ignore any local .env.
    monkeypatch.setattr(cli_mod, "configure_logging", lambda *a, **k: None)
    monkeypatch.chdir(tmp_path)
    return CliRunner()


# ---- Command handlers --------------------------------------------------------


def test_cmd_bridge_prints_summary(east_csv: Path, capsys: pytest.CaptureFixture[str]):
    assert cmd_bridge(str(east_csv), dimensions=("region",), fiscal_year=2024) == 0
    out = capsys.readouterr().out
    assert "PY (FY 2023): Jan 1, 2023 - Dec 31, 2023" in out
    assert "Price impact:  50.00 (100.0%)" in out
    assert "Volume impact: 0.00" in out
    assert "East\t50.00" in out


def test_cmd_bridge_fiscal_year_preset_defaults_to_last_data_year(
    east_csv: Path, capsys: pytest.CaptureFixture[str]
):
    code = cmd_bridge(
        str(east_csv), dimensions=("region",), compare=ComparisonPreset.FISCAL_YEAR
    )
    assert code == 0
    out = capsys.readouterr().out
    assert "PY (FY 2023): Jan 1, 2023 - Dec 31, 2023" in out
    assert "CY (FY 2024): Jan 1, 2024 - Dec 31, 2024" in out
    assert "East\t50.00" in out


def test_cmd_bridge_date_format_drives_ltm_default(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
):
    path = tmp_path / "dmy.csv"
    path.write_text(
        "date,region,sales,qty\n05/03/2023,East,100,10\n05/03/2024,East,150,10\n",
        encoding="utf-8",
    )
    assert cmd_bridge(str(path), date_format="DD/MM/YYYY") == 0
    assert "CY (LTM): Mar 6, 2023 - Mar 5, 2024" in capsys.readouterr().out


def test_cmd_bridge_unknown_date_format(east_csv: Path, capsys: pytest.CaptureFixture[str]):
    assert cmd_bridge(str(east_csv), date_format="DD.MM.YY") == 1
    assert "unknown date format" in capsys.readouterr().err


def test_cmd_bridge_defaults_to_ltm_on_last_date(
    east_csv: Path, capsys: pytest.CaptureFixture[str]
):
    assert cmd_bridge(str(east_csv)) == 0
    out = capsys.readouterr().out
    assert "CY (LTM): Mar 2, 2023 - Mar 1, 2024" in out


def test_cmd_bridge_custom_periods(east_csv: Path, capsys: pytest.CaptureFixture[str]):
    code = cmd_bridge(
        str(east_csv),
        py_start="2023-01-01",
        py_end="2023-06-30",
        cy_start="2024-01-01",
        cy_end="2024-06-30",
    )
    assert code == 0
    assert "Total change:  50.00 (50.0%)" in capsys.readouterr().out


def test_cmd_bridge_partial_custom_periods_fail(
    east_csv: Path, capsys: pytest.CaptureFixture[str]
):
    assert cmd_bridge(str(east_csv), py_start="2023-01-01") == 1
    assert "--cy-end" in capsys.readouterr().err


def test_cmd_bridge_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    assert cmd_bridge(str(tmp_path / "nope.csv")) == 1
    assert "Error: File not found" in capsys.readouterr().err


def test_cmd_bridge_gm_without_cost_column(east_csv: Path, capsys: pytest.CaptureFixture[str]):
    assert cmd_bridge(str(east_csv), fiscal_year=2024, mode=BridgeMode.GM) == 1
    err = capsys.readouterr().err
    assert "Invalid configuration" in err
    assert "cost column" in err


def test_cmd_bridge_bad_date_option(east_csv: Path, capsys: pytest.CaptureFixture[str]):
    assert cmd_bridge(str(east_csv), ltm_end="31/12/2024") == 1
    assert "--ltm-end must be a YYYY-MM-DD date" in capsys.readouterr().err


def test_cmd_bridge_writes_json(east_csv: Path, tmp_path: Path):
    out_path = tmp_path / "bridge.json"
    code = cmd_bridge(str(east_csv), dimensions=("region",), fiscal_year=2024, json_out=out_path)
    assert code == 0
    payload = json.loads(out_path.read_text(encoding="utf-8"))
    assert payload["config"]["mode"] == "pvm"
    assert payload["methodology"]["title"] == "Sales PVM Bridge"
    assert payload["aggregation"]["stats"]["included_rows"] == 2
    assert payload["aggregation"]["negatives"] == {
        "PY": {"sales": 0.0, "quantity": 0.0, "cost": 0.0, "count": 0},
        "CY": {"sales": 0.0, "quantity": 0.0, "cost": 0.0, "count": 0},
    }
    (east,) = payload["bridge"]["detail"]
    assert east["key"] == "East"
    assert east["classification"] == "continuing"
    assert east["price_impact"] == pytest.approx(50.0)


def test_cmd_inspect(east_csv: Path, capsys: pytest.CaptureFixture[str]):
    assert cmd_inspect(str(east_csv)) == 0
    out = capsys.readouterr().out
    assert "Headers: date, region, sales, qty" in out
    assert "Date format: YYYY-MM-DD (confidence 1.00)" in out
    assert "Dimension candidates: region" in out
    assert "FY 2023" in out


def test_cmd_inspect_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    assert cmd_inspect(str(tmp_path / "missing.csv")) == 1
    assert "File not found" in capsys.readouterr().err


# ---- Typer app ---------------------------------------------------------------


def test_app_bridge(runner: CliRunner, east_csv: Path):
    result = runner.invoke(app, ["bridge", str(east_csv), "--fiscal-year", "2024", "-d", "region"])
    assert result.exit_code == 0, result.output
    assert "Price impact:  50.00" in result.output


def test_app_bridge_fiscal_year_preset(runner: CliRunner, east_csv: Path):
    result = runner.invoke(app, ["bridge", str(east_csv), "--compare", "fiscal-year"])
    assert result.exit_code == 0, result.output
    assert "CY (FY 2024)" in result.output


def test_app_bridge_error_exit_code(runner: CliRunner, tmp_path: Path):
    result = runner.invoke(app, ["bridge", str(tmp_path / "missing.csv")])
    assert result.exit_code == 1


def test_app_inspect(runner: CliRunner, east_csv: Path):
    result = runner.invoke(app, ["inspect", str(east_csv), "--fy-end-month", "6"])
    assert result.exit_code == 0, result.output
    assert "FY 2023" in result.output
    assert "FY 2024" in result.output


def test_app_rejects_out_of_range_month(runner: CliRunner, east_csv: Path):
    result = runner.invoke(app, ["inspect", str(east_csv), "--fy-end-month", "13"])
    assert result.exit_code != 0
