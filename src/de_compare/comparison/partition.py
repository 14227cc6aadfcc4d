"""Membership sets for overlap (UpSet/Venn) summaries of the unshrunken results."""

import polars as pl
import structlog

from de_compare.results.models import (
    ENTITY_COLUMN,
    LABEL_COLUMN,
    InputType,
    ResultTable,
    ShrinkageMethod,
    SignificanceLabel,
)

logger = structlog.get_logger(__name__)

SET_NAMES = ["Up", "Down", "Unchanged", "TPM_Input", "Counts_Input"]
DIRECTION_SETS = ["Up", "Down", "Unchanged"]
INPUT_SET_NAMES = {
    InputType.TPM: "TPM_Input",
    InputType.COUNTS: "Counts_Input",
}


def partition_memberships(tpm: ResultTable, counts: ResultTable) -> pl.DataFrame:
    """
    Membership flags per (entity, input type) occurrence.

    Both tables are stacked, so an entity evaluated under both inputs has two
    occurrences that may carry different direction flags. Occurrences with a
    null adjusted p-value carry no significance information and are removed
    before any flag is set.

    Args:
        tpm: Classified unshrunken TPM table
        counts: Classified unshrunken COUNTS table

    Returns:
        DataFrame with entity_id, input_type and boolean columns Up, Down,
        Unchanged, TPM_Input, Counts_Input

    Notes:
        - Up: significant and log2_fold_change > 0
        - Down: significant and log2_fold_change < 0
        - Unchanged: not significant
        - A significant row with a null or zero log2_fold_change is in no
          direction set
    """
    for table, expected in ((tpm, InputType.TPM), (counts, InputType.COUNTS)):
        if table.input_type is not expected:
            raise ValueError(f"Expected {expected.value} table, got {table.input_type.value}")
        if not table.is_classified:
            raise ValueError(f"{table.key_label} result table has not been classified")
        if table.shrinkage_method is not ShrinkageMethod.NONE:
            logger.warning(
                "partition_shrunken_input",
                table=table.key_label,
                message="Set partitioning is defined on unshrunken results",
            )

    stacked = pl.concat(
        [
            t.frame.select([ENTITY_COLUMN, "log2_fold_change", "adjusted_p_value", LABEL_COLUMN])
            .with_columns(pl.lit(t.input_type.value).alias("input_type"))
            for t in (tpm, counts)
        ],
        how="vertical",
    )

    total = stacked.height
    stacked = stacked.filter(
        pl.col("adjusted_p_value").is_not_null() & pl.col("adjusted_p_value").is_not_nan()
    )

    significant = pl.col(LABEL_COLUMN) == SignificanceLabel.SIGNIFICANT.value
    lfc = pl.col("log2_fold_change")
    memberships = stacked.select(
        [
            pl.col(ENTITY_COLUMN),
            pl.col("input_type"),
            (significant & (lfc > 0)).fill_null(False).alias("Up"),
            (significant & (lfc < 0)).fill_null(False).alias("Down"),
            (~significant).alias("Unchanged"),
            (pl.col("input_type") == InputType.TPM.value).alias("TPM_Input"),
            (pl.col("input_type") == InputType.COUNTS.value).alias("Counts_Input"),
        ]
    )

    logger.info(
        "partition_memberships",
        occurrences=memberships.height,
        excluded_missing_padj=total - memberships.height,
        **{name: int(memberships[name].sum()) for name in SET_NAMES},
    )
    return memberships


def named_sets(memberships: pl.DataFrame) -> dict[str, set[str]]:
    """Entity ids in each of the five sets."""
    return {
        name: set(memberships.filter(pl.col(name))[ENTITY_COLUMN].to_list())
        for name in SET_NAMES
    }


def membership_mapping(memberships: pl.DataFrame) -> dict[str, dict[str, bool]]:
    """Per entity, each flag OR-ed across its occurrences."""
    aggregated = memberships.group_by(ENTITY_COLUMN, maintain_order=True).agg(
        [pl.col(name).any() for name in SET_NAMES]
    )
    return {
        row[ENTITY_COLUMN]: {name: bool(row[name]) for name in SET_NAMES}
        for row in aggregated.to_dicts()
    }


def overlap_counts(memberships: pl.DataFrame) -> pl.DataFrame:
    """
    Cardinality of every observed flag combination over occurrences.

    Returns:
        DataFrame with one boolean column per set plus "count", sorted by
        count descending then by set pattern for stable output
    """
    return (
        memberships.group_by(SET_NAMES)
        .agg(pl.len().alias("count"))
        .with_columns(pl.col("count").cast(pl.Int64))
        .sort(["count", *SET_NAMES], descending=[True] + [True] * len(SET_NAMES))
    )
