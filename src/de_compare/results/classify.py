"""Significance labelling of DE result rows against an FDR threshold."""

import polars as pl
import structlog

from de_compare.results.models import (
    LABEL_COLUMN,
    ResultTable,
    SignificanceLabel,
)

logger = structlog.get_logger(__name__)

DEFAULT_ALPHA = 0.1


def _check_alpha(alpha: float) -> None:
    if not 0.0 < alpha < 1.0:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")


def significance_expr(alpha: float, column: str = "adjusted_p_value") -> pl.Expr:
    """Expression yielding the significance label for an adjusted p-value column.

    A missing (null or NaN) adjusted p-value is NOT_SIGNIFICANT: insufficient
    evidence, not evidence of no effect.
    """
    padj = pl.col(column)
    return (
        pl.when(padj.is_not_null() & padj.is_not_nan() & (padj < alpha))
        .then(pl.lit(SignificanceLabel.SIGNIFICANT.value))
        .otherwise(pl.lit(SignificanceLabel.NOT_SIGNIFICANT.value))
    )


def classify_significance(df: pl.DataFrame, alpha: float = DEFAULT_ALPHA) -> pl.DataFrame:
    """
    Add or replace the significance_label column.

    Args:
        df: DataFrame with an adjusted_p_value column
        alpha: FDR threshold, strictly between 0 and 1

    Returns:
        DataFrame with significance_label (str) set per row

    Raises:
        ValueError: If alpha is out of range
    """
    _check_alpha(alpha)
    return df.with_columns(significance_expr(alpha).alias(LABEL_COLUMN))


def classify_table(table: ResultTable, alpha: float = DEFAULT_ALPHA) -> ResultTable:
    """Return a classified copy of a ResultTable."""
    classified = table.with_frame(classify_significance(table.frame, alpha))
    logger.debug(
        "classify_table",
        table=table.key_label,
        alpha=alpha,
        significant=count_significant(classified),
        total=classified.height,
    )
    return classified


def count_significant(table: ResultTable) -> int:
    if not table.is_classified:
        raise ValueError(f"{table.key_label} result table has not been classified")
    return table.frame.filter(
        pl.col(LABEL_COLUMN) == SignificanceLabel.SIGNIFICANT.value
    ).height
