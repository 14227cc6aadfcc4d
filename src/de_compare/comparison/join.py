"""Align TPM and COUNTS result tables on shared entities."""

from dataclasses import dataclass, field
from typing import Optional

import polars as pl
import structlog

from de_compare.errors import JoinMismatchError
from de_compare.results.models import (
    ENTITY_COLUMN,
    LABEL_COLUMN,
    METRIC_COLUMNS,
    InputType,
    ResultTable,
    ShrinkageMethod,
)
from de_compare.results.pipeline import PipelineRun

logger = structlog.get_logger(__name__)

SHRINKAGE_COLUMN = "shrinkage_method"

# Metrics compared across input types (p_value is carried but not compared)
COMPARED_METRICS = ["base_mean", "log2_fold_change", "adjusted_p_value"]

SUFFIXED_COLUMNS = [f"{c}_{t.value}" for c in [*METRIC_COLUMNS, LABEL_COLUMN] for t in InputType]
DIFF_COLUMNS = [f"{m}_diff" for m in COMPARED_METRICS]

# Fixed output schema of the merged table
MERGED_COLUMNS = [ENTITY_COLUMN, SHRINKAGE_COLUMN, *SUFFIXED_COLUMNS, *DIFF_COLUMNS]


def metric_column(metric: str, input_type: InputType) -> str:
    """Name of a metric column for one input type in the merged schema."""
    return f"{metric}_{input_type.value}"


def diff_column(metric: str) -> str:
    return f"{metric}_diff"


@dataclass(frozen=True)
class JoinResult:
    """Joined table for one shrinkage method plus what the inner join dropped."""

    shrinkage_method: ShrinkageMethod
    frame: pl.DataFrame
    tpm_only: frozenset[str]
    counts_only: frozenset[str]

    @property
    def dropped_entity_count(self) -> int:
        return len(self.tpm_only) + len(self.counts_only)

    @property
    def dropped_fraction(self) -> float:
        total = self.frame.height + self.dropped_entity_count
        return self.dropped_entity_count / total if total else 0.0


def _suffixed(table: ResultTable) -> pl.DataFrame:
    """Explicit schema step: metric and label columns get the input-type suffix."""
    return table.frame.select(
        [pl.col(ENTITY_COLUMN)]
        + [
            pl.col(c).alias(metric_column(c, table.input_type))
            for c in [*METRIC_COLUMNS, LABEL_COLUMN]
        ]
    )


def join_input_types(
    tpm: ResultTable,
    counts: ResultTable,
    max_dropped_fraction: Optional[float] = None,
) -> JoinResult:
    """
    Inner-join the TPM and COUNTS tables of one shrinkage method.

    Args:
        tpm: Classified TPM result table
        counts: Classified COUNTS result table, same shrinkage method
        max_dropped_fraction: If given, raise when a larger fraction of the
            entity union is dropped by the join

    Returns:
        JoinResult whose frame follows MERGED_COLUMNS, sorted by entity_id.
        Difference columns are TPM - COUNTS; a null on either side
        gives a null difference.

    Raises:
        ValueError: If tables are unclassified, swapped, or from different methods
        JoinMismatchError: If max_dropped_fraction is exceeded
    """
    if tpm.input_type is not InputType.TPM or counts.input_type is not InputType.COUNTS:
        raise ValueError(
            f"Expected (TPM, COUNTS) tables, got ({tpm.input_type.value}, {counts.input_type.value})"
        )
    if tpm.shrinkage_method is not counts.shrinkage_method:
        raise ValueError(
            f"Cannot join {tpm.shrinkage_method.value} with {counts.shrinkage_method.value} results"
        )
    for table in (tpm, counts):
        if not table.is_classified:
            raise ValueError(f"{table.key_label} result table has not been classified")

    method = tpm.shrinkage_method
    tpm_ids = tpm.entity_ids()
    counts_ids = counts.entity_ids()

    joined = _suffixed(tpm).join(_suffixed(counts), on=ENTITY_COLUMN, how="inner")
    joined = joined.with_columns(
        [pl.lit(method.value).alias(SHRINKAGE_COLUMN)]
        + [
            (
                pl.col(metric_column(m, InputType.TPM))
                - pl.col(metric_column(m, InputType.COUNTS))
            ).alias(diff_column(m))
            for m in COMPARED_METRICS
        ]
    ).select(MERGED_COLUMNS).sort(ENTITY_COLUMN)

    result = JoinResult(
        shrinkage_method=method,
        frame=joined,
        tpm_only=frozenset(tpm_ids - counts_ids),
        counts_only=frozenset(counts_ids - tpm_ids),
    )

    log = logger.warning if result.dropped_entity_count else logger.debug
    log(
        "join_input_types",
        shrinkage_method=method.value,
        joined=joined.height,
        tpm_only=len(result.tpm_only),
        counts_only=len(result.counts_only),
    )

    if max_dropped_fraction is not None and result.dropped_fraction > max_dropped_fraction:
        raise JoinMismatchError(
            f"{method.value}: join dropped {result.dropped_entity_count} entities "
            f"({result.dropped_fraction:.1%}), above tolerance {max_dropped_fraction:.1%}",
            dropped_entity_count=result.dropped_entity_count,
            dropped_fraction=result.dropped_fraction,
        )

    return result


@dataclass
class MergedComparison:
    """Canonical long table: all per-method joins stacked and tagged by method."""

    frame: pl.DataFrame
    joins: dict[ShrinkageMethod, JoinResult] = field(default_factory=dict)
    skipped: list[ShrinkageMethod] = field(default_factory=list)

    @property
    def dropped_entity_counts(self) -> dict[ShrinkageMethod, int]:
        return {m: j.dropped_entity_count for m, j in self.joins.items()}

    def for_method(self, method: ShrinkageMethod) -> pl.DataFrame:
        return self.frame.filter(pl.col(SHRINKAGE_COLUMN) == method.value)

    @property
    def methods(self) -> list[ShrinkageMethod]:
        return list(self.joins)


def empty_merged_frame() -> pl.DataFrame:
    schema = {ENTITY_COLUMN: pl.Utf8, SHRINKAGE_COLUMN: pl.Utf8}
    for c in SUFFIXED_COLUMNS:
        schema[c] = pl.Utf8 if c.startswith(LABEL_COLUMN) else pl.Float64
    for c in DIFF_COLUMNS:
        schema[c] = pl.Float64
    return pl.DataFrame(schema=schema)


def merge_all_shrinkage(
    run: PipelineRun,
    shrinkage_methods: Optional[list[ShrinkageMethod]] = None,
    max_dropped_fraction: Optional[float] = None,
) -> MergedComparison:
    """
    Join TPM and COUNTS for each shrinkage method and stack the results.

    Methods whose TPM or COUNTS branch failed are skipped and listed in
    MergedComparison.skipped.
    """
    methods = shrinkage_methods if shrinkage_methods is not None else list(ShrinkageMethod)

    joins = {}
    skipped = []
    for method in methods:
        pair = run.pair(method)
        if pair is None:
            logger.warning("merge_skip_method", shrinkage_method=method.value)
            skipped.append(method)
            continue
        joins[method] = join_input_types(*pair, max_dropped_fraction=max_dropped_fraction)

    if joins:
        frame = pl.concat([j.frame for j in joins.values()], how="vertical")
    else:
        frame = empty_merged_frame()

    logger.info(
        "merge_all_shrinkage_complete",
        methods=[m.value for m in joins],
        skipped=[m.value for m in skipped],
        rows=frame.height,
    )
    return MergedComparison(frame=frame, joins=joins, skipped=skipped)
