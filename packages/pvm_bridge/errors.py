"""Exception types raised by ``pvm_bridge``.

Row-level problems (unparseable dates or numbers, out-of-period rows,
non-positive values) are never raised; they are counted in the run
statistics. Only configuration mistakes and run-level failures surface as
exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import AggregationStats


class ConfigurationError(ValueError):
    """The analysis configuration cannot be applied to the input.

    Raised before any row is aggregated, e.g. when a mapped column is absent
    from the input header.
    """


class AnalysisAborted(RuntimeError):
    """A run stopped on a fatal I/O or parser failure.

    ``stats`` holds the row accounting gathered up to the failure point. The
    original exception is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, stats: AggregationStats) -> None:
        super().__init__(message)
        self.stats = stats


__all__ = ["AnalysisAborted", "ConfigurationError"]
