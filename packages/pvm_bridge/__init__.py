"""Public interface for the ``pvm_bridge`` package.

This module exposes the package's API functions, configuration and result
models as the stable import surface. There is no runtime logic here, only
symbol re-exports.
"""

from .aggregation import calculate_totals, create_context, finalize, process_row
from .api import CsvInspection, aanalyze_csv, analyze_csv, analyze_rows, inspect_csv
from .bridge import (
    calculate_bridge,
    calculate_multi_year_bridge,
    filter_results,
    methodology_description,
    sort_results,
)
from .config import AnalysisConfig, ColumnMapping
from .errors import AnalysisAborted, ConfigurationError
from .models import (
    AggregatedBucket,
    AggregationResult,
    AggregationStats,
    BridgeBucketResult,
    BridgeMode,
    BridgeResult,
    BridgeSummary,
    Classification,
    ComparisonPreset,
    FiscalYearWindow,
    MultiYearBridgeResult,
    PeriodRange,
    PeriodTag,
    PeriodTotals,
    PriceDefinition,
)
from .numeric import parse_number
from .parser import FileSource, iter_records, records_from_rows
from .periods import (
    detect_date_format,
    detect_fiscal_years,
    fiscal_year_of,
    fiscal_year_range,
    ltm_range,
    parse_date,
    two_period_ranges,
)
from .pipeline import RunOutcome, RunProgress, arun_analysis, run_analysis
from .settings import ProcessingSettings, load_settings

__all__ = [
    # API
    "analyze_csv",
    "aanalyze_csv",
    "analyze_rows",
    "inspect_csv",
    "CsvInspection",
    "run_analysis",
    "arun_analysis",
    "RunOutcome",
    "RunProgress",
    # Engines
    "create_context",
    "process_row",
    "finalize",
    "calculate_totals",
    "calculate_bridge",
    "calculate_multi_year_bridge",
    "sort_results",
    "filter_results",
    "methodology_description",
    "iter_records",
    "records_from_rows",
    "FileSource",
    "parse_number",
    # Periods
    "detect_date_format",
    "parse_date",
    "fiscal_year_of",
    "fiscal_year_range",
    "ltm_range",
    "detect_fiscal_years",
    "two_period_ranges",
    # Configuration / errors
    "AnalysisConfig",
    "ColumnMapping",
    "ProcessingSettings",
    "load_settings",
    "ConfigurationError",
    "AnalysisAborted",
    # Models
    "AggregatedBucket",
    "AggregationResult",
    "AggregationStats",
    "BridgeBucketResult",
    "BridgeMode",
    "BridgeResult",
    "BridgeSummary",
    "Classification",
    "ComparisonPreset",
    "FiscalYearWindow",
    "MultiYearBridgeResult",
    "PeriodRange",
    "PeriodTag",
    "PeriodTotals",
    "PriceDefinition",
]
