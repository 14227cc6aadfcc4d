"""Transcript-complexity annotation of comparison tables.

Counts alternative transcripts per gene from a transcript-to-gene table.
The count is carried as an extra column for downstream inspection of
disagreement; no statistic depends on it.
"""

from pathlib import Path

import polars as pl
import structlog

from de_compare.results.models import ENTITY_COLUMN

logger = structlog.get_logger(__name__)

TRANSCRIPT_COUNT_COLUMN = "n_transcripts"


def load_tx2gene(path: Path) -> pl.DataFrame:
    """Read a tab-separated table with transcript_id and gene_id columns."""
    df = pl.read_csv(path, separator="\t")
    missing = {"transcript_id", "gene_id"} - set(df.columns)
    if missing:
        raise ValueError(f"tx2gene table {path} missing columns: {sorted(missing)}")
    return df


def count_transcripts(tx2gene: pl.DataFrame) -> pl.DataFrame:
    """
    Number of distinct transcripts per gene.

    Args:
        tx2gene: DataFrame with transcript_id and gene_id

    Returns:
        DataFrame with entity_id and n_transcripts
    """
    return (
        tx2gene.filter(pl.col("gene_id").is_not_null())
        .group_by("gene_id")
        .agg(pl.col("transcript_id").n_unique().alias(TRANSCRIPT_COUNT_COLUMN))
        .rename({"gene_id": ENTITY_COLUMN})
        .with_columns(pl.col(TRANSCRIPT_COUNT_COLUMN).cast(pl.Int64))
    )


def annotate_transcript_complexity(
    df: pl.DataFrame,
    tx2gene: pl.DataFrame,
) -> pl.DataFrame:
    """Left-join n_transcripts onto a table keyed by entity_id; unknown genes stay null."""
    counts = count_transcripts(tx2gene)
    annotated = df.join(counts, on=ENTITY_COLUMN, how="left")
    unmatched = annotated[TRANSCRIPT_COUNT_COLUMN].null_count()
    if unmatched:
        logger.warning("transcript_annotation_unmatched", count=unmatched, total=annotated.height)
    return annotated
