"""Data models for differential expression result tables."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import polars as pl
from pydantic import BaseModel, Field


class InputType(str, Enum):
    """Upstream quantification the DE test was run on."""

    TPM = "TPM"
    COUNTS = "COUNTS"


class ShrinkageMethod(str, Enum):
    """LFC shrinkage variant applied to the fitted coefficient."""

    NONE = "NONE"
    NORMAL = "NORMAL"
    APEGLM = "APEGLM"
    ASHR = "ASHR"


class SignificanceLabel(str, Enum):
    SIGNIFICANT = "SIGNIFICANT"
    NOT_SIGNIFICANT = "NOT_SIGNIFICANT"


# Fixed per-table schema
ENTITY_COLUMN = "entity_id"
METRIC_COLUMNS = ["base_mean", "log2_fold_change", "p_value", "adjusted_p_value"]
LABEL_COLUMN = "significance_label"
RESULT_COLUMNS = [ENTITY_COLUMN, *METRIC_COLUMNS, LABEL_COLUMN]

# DESeq2 / pyDESeq2 result column names -> fixed schema
DESEQ2_COLUMN_MAP = {
    "gene_id": ENTITY_COLUMN,
    "gene": ENTITY_COLUMN,
    "baseMean": "base_mean",
    "log2FoldChange": "log2_fold_change",
    "pvalue": "p_value",
    "padj": "adjusted_p_value",
}


class Contrast(BaseModel):
    """Two-group comparison: numerator level vs denominator level of one factor."""

    factor: str = Field(..., min_length=1)
    numerator: str = Field(..., min_length=1)
    denominator: str = Field(..., min_length=1)

    @property
    def coefficient_name(self) -> str:
        """Coefficient name as DESeq2's resultsNames() reports it."""
        return f"{self.factor}_{self.numerator}_vs_{self.denominator}"

    def as_list(self) -> list[str]:
        return [self.factor, self.numerator, self.denominator]


class ResultRow(BaseModel):
    """One DE test outcome for a single entity.

    Attributes:
        entity_id: Gene identifier
        base_mean: Mean normalized abundance across samples
        log2_fold_change: Effect size (None when all samples are zero)
        p_value: Raw p-value (None when excluded as an outlier)
        adjusted_p_value: BH-adjusted p-value (None when excluded or filtered)
        input_type: Quantification the test ran on
        shrinkage_method: Shrinkage applied to log2_fold_change
        significance_label: Derived from adjusted_p_value and alpha

    CRITICAL: None marks a test that could not be evaluated and is never
    replaced with zero.
    """

    entity_id: str = Field(..., min_length=1)
    base_mean: float = Field(..., ge=0.0)
    log2_fold_change: float | None = None
    p_value: float | None = Field(default=None, ge=0.0, le=1.0)
    adjusted_p_value: float | None = Field(default=None, ge=0.0, le=1.0)
    input_type: InputType
    shrinkage_method: ShrinkageMethod
    significance_label: SignificanceLabel


def standardize_result_columns(df: pl.DataFrame) -> pl.DataFrame:
    """Map a result frame onto the fixed schema.

    Renames DESeq2-style columns, adds absent metric columns as null,
    casts metrics to Float64 and converts NaN to null so that every
    downstream step sees a single missing-value marker.

    Args:
        df: Result frame with an entity column and any subset of metrics

    Returns:
        DataFrame with entity_id, the four metric columns, and
        significance_label when the input carried one

    Raises:
        ValueError: If no entity identifier column is present
    """
    renames = {}
    for src, dst in DESEQ2_COLUMN_MAP.items():
        # gene_id and gene both map to entity_id; first match wins
        if src in df.columns and dst not in df.columns and dst not in renames.values():
            renames[src] = dst
    df = df.rename(renames)

    if ENTITY_COLUMN not in df.columns:
        raise ValueError(
            f"Result frame has no entity column (expected one of "
            f"{[ENTITY_COLUMN, 'gene_id', 'gene']}), got {df.columns}"
        )

    df = df.with_columns(
        [
            pl.col(c).cast(pl.Float64).fill_nan(None).alias(c)
            if c in df.columns
            else pl.lit(None, dtype=pl.Float64).alias(c)
            for c in METRIC_COLUMNS
        ]
    ).with_columns(pl.col(ENTITY_COLUMN).cast(pl.Utf8))

    keep = [ENTITY_COLUMN, *METRIC_COLUMNS]
    if LABEL_COLUMN in df.columns:
        keep.append(LABEL_COLUMN)
    return df.select(keep)


@dataclass(frozen=True)
class ResultTable:
    """DE results for one (input_type, shrinkage_method) combination.

    The frame holds one row per entity with the fixed schema in
    RESULT_COLUMNS; significance_label is present once the table has been
    classified. Metric NaN values are converted to null on construction.
    Tables are immutable: operations return new instances.
    """

    input_type: InputType
    shrinkage_method: ShrinkageMethod
    frame: pl.DataFrame

    def __post_init__(self):
        missing = [c for c in [ENTITY_COLUMN, *METRIC_COLUMNS] if c not in self.frame.columns]
        if missing:
            raise ValueError(
                f"{self.key_label} result table missing columns: {missing}"
            )
        # null is the only missing-value marker, whichever constructor is used
        object.__setattr__(
            self,
            "frame",
            self.frame.with_columns(
                [pl.col(c).cast(pl.Float64).fill_nan(None) for c in METRIC_COLUMNS]
            ),
        )
        if self.frame[ENTITY_COLUMN].null_count() > 0:
            raise ValueError(f"{self.key_label} result table has null entity_id values")
        if self.frame[ENTITY_COLUMN].n_unique() != self.frame.height:
            dupes = (
                self.frame.group_by(ENTITY_COLUMN)
                .agg(pl.len().alias("n"))
                .filter(pl.col("n") > 1)[ENTITY_COLUMN]
                .to_list()
            )
            raise ValueError(
                f"{self.key_label} result table has duplicate entity_id values: {dupes[:10]}"
            )

    @classmethod
    def from_frame(
        cls,
        df: pl.DataFrame,
        input_type: InputType,
        shrinkage_method: ShrinkageMethod,
    ) -> "ResultTable":
        return cls(input_type, shrinkage_method, standardize_result_columns(df))

    @property
    def key(self) -> tuple[ShrinkageMethod, InputType]:
        return (self.shrinkage_method, self.input_type)

    @property
    def key_label(self) -> str:
        return f"{self.input_type.value}/{self.shrinkage_method.value}"

    @property
    def is_classified(self) -> bool:
        return LABEL_COLUMN in self.frame.columns

    @property
    def height(self) -> int:
        return self.frame.height

    def entity_ids(self) -> set[str]:
        return set(self.frame[ENTITY_COLUMN].to_list())

    def with_frame(self, frame: pl.DataFrame) -> "ResultTable":
        return ResultTable(self.input_type, self.shrinkage_method, frame)

    def to_records(self) -> list[ResultRow]:
        """Validate and return the rows as ResultRow models."""
        if not self.is_classified:
            raise ValueError(f"{self.key_label} result table has not been classified")
        return [
            ResultRow(
                input_type=self.input_type,
                shrinkage_method=self.shrinkage_method,
                **row,
            )
            for row in self.frame.select(RESULT_COLUMNS).to_dicts()
        ]

    def get_row(self, entity_id: str) -> Optional[dict]:
        rows = self.frame.filter(pl.col(ENTITY_COLUMN) == entity_id).to_dicts()
        return rows[0] if rows else None
