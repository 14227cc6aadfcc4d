"""Missing-value checks on result tables.

A metric column whose null fraction exceeds the threshold is reported as a
DataQualityWarning. These checks never block the comparison.
"""

import warnings
from typing import Iterable

import polars as pl
import structlog

from de_compare.errors import DataQualityWarning
from de_compare.results.models import METRIC_COLUMNS, ResultTable

logger = structlog.get_logger(__name__)

DEFAULT_MAX_NAN_FRACTION = 0.5


def compute_nan_proportions(table: ResultTable) -> dict[str, float]:
    """Fraction of missing values per metric column (0.0 for an empty table)."""
    if table.height == 0:
        return {c: 0.0 for c in METRIC_COLUMNS}
    return {
        c: table.frame[c].null_count() / table.height
        for c in METRIC_COLUMNS
    }


def check_data_quality(
    tables: Iterable[ResultTable],
    max_nan_fraction: float = DEFAULT_MAX_NAN_FRACTION,
) -> dict:
    """
    Check every table's metric columns against a missing-value threshold.

    Args:
        tables: Result tables to check
        max_nan_fraction: Fraction above which a column is flagged

    Returns:
        Dict with keys:
        - rates: dict[str, dict[str, float]] - per table label, per column
        - warnings: list[str] - one entry per flagged column

    Notes:
        - Emits a DataQualityWarning through the warnings module and logs it
    """
    if not 0.0 <= max_nan_fraction <= 1.0:
        raise ValueError(f"max_nan_fraction must be in [0, 1], got {max_nan_fraction}")

    rates = {}
    flagged = []
    for table in tables:
        proportions = compute_nan_proportions(table)
        rates[table.key_label] = proportions
        for column, rate in proportions.items():
            if rate > max_nan_fraction:
                message = f"{table.key_label} {column}: {rate:.1%} missing"
                flagged.append(message)
                logger.warning(
                    "missing_data_warning",
                    table=table.key_label,
                    column=column,
                    missing_rate=f"{rate:.1%}",
                    threshold=f"{max_nan_fraction:.0%}",
                )
                warnings.warn(message, DataQualityWarning, stacklevel=2)

    logger.info(
        "check_data_quality_complete",
        tables=len(rates),
        warnings_count=len(flagged),
    )
    return {"rates": rates, "warnings": flagged}


def summarize_rates(report: dict) -> pl.DataFrame:
    """Flatten a check_data_quality report to table, column, missing_rate rows."""
    rows = [
        {"table": label, "column": column, "missing_rate": rate}
        for label, columns in report["rates"].items()
        for column, rate in columns.items()
    ]
    return pl.DataFrame(
        rows,
        schema={"table": pl.Utf8, "column": pl.Utf8, "missing_rate": pl.Float64},
    )
