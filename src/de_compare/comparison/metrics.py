"""Agreement between TPM and COUNTS results per metric and shrinkage method.

Two statistics per (shrinkage method, metric):
- value correlation: Pearson r of the raw metric values over the joined set
- rank correlation: Pearson r of stable ranks over entities significant under
  both input types

Ranks break ties by row order (ordinal ranks), not by averaging, so the rank
correlation is not a textbook Spearman coefficient when ties are present. The
merged table is sorted by entity_id, so ties resolve in entity-id order.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import polars as pl
import structlog
from scipy.stats import pearsonr

from de_compare.comparison.join import (
    COMPARED_METRICS,
    SHRINKAGE_COLUMN,
    metric_column,
)
from de_compare.results.models import (
    ENTITY_COLUMN,
    LABEL_COLUMN,
    InputType,
    ShrinkageMethod,
    SignificanceLabel,
)

logger = structlog.get_logger(__name__)

DEFAULT_PRECISION = 7

# Metrics ranked ascending (rank 1 = smallest); all others rank by descending |value|
ASCENDING_RANK_METRICS = frozenset({"adjusted_p_value"})

CORRELATION_SCHEMA = {
    SHRINKAGE_COLUMN: pl.Utf8,
    "metric": pl.Utf8,
    "correlation": pl.Float64,
    "n_pairs": pl.Int64,
}


def pearson_correlation(
    x,
    y,
    precision: int = DEFAULT_PRECISION,
) -> tuple[Optional[float], int]:
    """
    Pearson correlation of two equal-length vectors over complete pairs.

    Args:
        x: First vector (array-like, may contain None/NaN)
        y: Second vector
        precision: Decimal digits to round to

    Returns:
        (r, n_pairs). r is None when fewer than 2 complete pairs remain or
        either side is constant.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape != y.shape:
        raise ValueError(f"Vectors differ in length: {x.shape[0]} vs {y.shape[0]}")

    mask = ~(np.isnan(x) | np.isnan(y))
    n_pairs = int(mask.sum())
    if n_pairs < 2:
        return None, n_pairs

    xs, ys = x[mask], y[mask]
    if np.ptp(xs) == 0 or np.ptp(ys) == 0:
        return None, n_pairs

    r, _ = pearsonr(xs, ys)
    return round(float(r), precision), n_pairs


def stable_rank(values: pl.Series, descending: bool = False) -> pl.Series:
    """
    Ordinal ranks 1..N; equal values keep their order in the series.

    Null values receive a null rank and do not consume a rank position.
    Series taken from the merged table are in entity_id order, so ties
    there resolve by entity id.
    """
    df = pl.DataFrame({"value": values}).with_row_index("_idx")
    ranked = (
        df.filter(pl.col("value").is_not_null())
        .sort(["value", "_idx"], descending=[descending, False])
        .with_columns(pl.int_range(1, pl.len() + 1, dtype=pl.Int64).alias("rank"))
        .select(["_idx", "rank"])
    )
    return (
        df.join(ranked, on="_idx", how="left")
        .sort("_idx")
        .get_column("rank")
        .alias(values.name)
    )


def rank_metric(values: pl.Series, metric: str) -> pl.Series:
    """Rank a metric: p-values ascending, effect sizes and means by descending magnitude."""
    if metric in ASCENDING_RANK_METRICS:
        return stable_rank(values, descending=False)
    return stable_rank(values.abs(), descending=True)


def _significant_in_both(df: pl.DataFrame) -> pl.DataFrame:
    sig = SignificanceLabel.SIGNIFICANT.value
    return df.filter(
        (pl.col(metric_column(LABEL_COLUMN, InputType.TPM)) == sig)
        & (pl.col(metric_column(LABEL_COLUMN, InputType.COUNTS)) == sig)
    )


def _present_methods(merged: pl.DataFrame) -> list[ShrinkageMethod]:
    present = set(merged[SHRINKAGE_COLUMN].unique().to_list())
    return [m for m in ShrinkageMethod if m.value in present]


def ranked_frame(df: pl.DataFrame, metric: str) -> pl.DataFrame:
    """Entities significant under both inputs with per-input stable ranks for one metric."""
    subset = _significant_in_both(df)
    return subset.select(
        [
            pl.col(ENTITY_COLUMN),
            pl.col(SHRINKAGE_COLUMN),
            pl.lit(metric).alias("metric"),
            rank_metric(subset[metric_column(metric, InputType.TPM)], metric).alias("rank_TPM"),
            rank_metric(subset[metric_column(metric, InputType.COUNTS)], metric).alias("rank_COUNTS"),
        ]
    )


def compare_values(merged: pl.DataFrame, precision: int = DEFAULT_PRECISION) -> pl.DataFrame:
    """Pearson r of TPM vs COUNTS values per (shrinkage method, metric)."""
    rows = []
    for method in _present_methods(merged):
        df = merged.filter(pl.col(SHRINKAGE_COLUMN) == method.value)
        for metric in COMPARED_METRICS:
            r, n = pearson_correlation(
                df[metric_column(metric, InputType.TPM)].to_numpy(),
                df[metric_column(metric, InputType.COUNTS)].to_numpy(),
                precision,
            )
            rows.append(
                {SHRINKAGE_COLUMN: method.value, "metric": metric, "correlation": r, "n_pairs": n}
            )
            logger.debug("value_correlation", shrinkage_method=method.value, metric=metric, r=r, n=n)
    return pl.DataFrame(rows, schema=CORRELATION_SCHEMA)


def compare_ranks(merged: pl.DataFrame, precision: int = DEFAULT_PRECISION) -> pl.DataFrame:
    """Pearson r of stable ranks per (shrinkage method, metric), significant entities only."""
    rows = []
    for method in _present_methods(merged):
        df = merged.filter(pl.col(SHRINKAGE_COLUMN) == method.value)
        for metric in COMPARED_METRICS:
            ranks = ranked_frame(df, metric)
            r, n = pearson_correlation(
                ranks["rank_TPM"].to_numpy(),
                ranks["rank_COUNTS"].to_numpy(),
                precision,
            )
            rows.append(
                {SHRINKAGE_COLUMN: method.value, "metric": metric, "correlation": r, "n_pairs": n}
            )
            logger.debug("rank_correlation", shrinkage_method=method.value, metric=metric, r=r, n=n)
    return pl.DataFrame(rows, schema=CORRELATION_SCHEMA)


@dataclass(frozen=True)
class MetricComparison:
    """Value and rank correlation tables, one row per (shrinkage method, metric)."""

    value_correlations: pl.DataFrame
    rank_correlations: pl.DataFrame

    @staticmethod
    def _lookup(df: pl.DataFrame) -> dict[tuple[ShrinkageMethod, str], Optional[float]]:
        return {
            (ShrinkageMethod(row[SHRINKAGE_COLUMN]), row["metric"]): row["correlation"]
            for row in df.to_dicts()
        }

    def value_lookup(self) -> dict[tuple[ShrinkageMethod, str], Optional[float]]:
        return self._lookup(self.value_correlations)

    def rank_lookup(self) -> dict[tuple[ShrinkageMethod, str], Optional[float]]:
        return self._lookup(self.rank_correlations)


def compare_metrics(merged: pl.DataFrame, precision: int = DEFAULT_PRECISION) -> MetricComparison:
    """
    Compute value and rank correlations for every shrinkage method in the merged table.

    Args:
        merged: Canonical merged table (see join.MERGED_COLUMNS)
        precision: Decimal digits correlations are rounded to

    Returns:
        MetricComparison; with all four methods present each table has 12 rows
    """
    comparison = MetricComparison(
        value_correlations=compare_values(merged, precision),
        rank_correlations=compare_ranks(merged, precision),
    )
    logger.info(
        "compare_metrics_complete",
        methods=[m.value for m in _present_methods(merged)],
        value_correlations=comparison.value_correlations.height,
        rank_correlations=comparison.rank_correlations.height,
    )
    return comparison


def comparison_rows(merged: pl.DataFrame, value_correlations: pl.DataFrame) -> pl.DataFrame:
    """
    Long table: one row per entity per shrinkage method per metric.

    Columns: entity_id, shrinkage_method, metric, value_TPM, value_COUNTS,
    correlation (the group's value correlation broadcast onto each row).
    """
    parts = [
        merged.select(
            [
                pl.col(ENTITY_COLUMN),
                pl.col(SHRINKAGE_COLUMN),
                pl.lit(metric).alias("metric"),
                pl.col(metric_column(metric, InputType.TPM)).alias("value_TPM"),
                pl.col(metric_column(metric, InputType.COUNTS)).alias("value_COUNTS"),
            ]
        )
        for metric in COMPARED_METRICS
    ]
    long = pl.concat(parts, how="vertical")
    return long.join(
        value_correlations.select([SHRINKAGE_COLUMN, "metric", "correlation"]),
        on=[SHRINKAGE_COLUMN, "metric"],
        how="left",
    )


def rank_rows(merged: pl.DataFrame, rank_correlations: pl.DataFrame) -> pl.DataFrame:
    """
    Long rank table for significant-in-both entities.

    Columns: entity_id, shrinkage_method, metric, rank_TPM, rank_COUNTS,
    correlation (the group's rank correlation).
    """
    parts = [
        ranked_frame(merged.filter(pl.col(SHRINKAGE_COLUMN) == method.value), metric)
        for method in _present_methods(merged)
        for metric in COMPARED_METRICS
    ]
    if not parts:
        return pl.DataFrame(
            schema={
                ENTITY_COLUMN: pl.Utf8,
                SHRINKAGE_COLUMN: pl.Utf8,
                "metric": pl.Utf8,
                "rank_TPM": pl.Int64,
                "rank_COUNTS": pl.Int64,
                "correlation": pl.Float64,
            }
        )
    return pl.concat(parts, how="vertical").join(
        rank_correlations.select([SHRINKAGE_COLUMN, "metric", "correlation"]),
        on=[SHRINKAGE_COLUMN, "metric"],
        how="left",
    )
