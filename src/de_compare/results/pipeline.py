"""Run the unshrunken test and each shrinkage variant per input type.

Every (shrinkage_method, input_type) combination is an independent branch
reading a shared, already fitted model handle. A PreconditionError aborts
its own branch only; the other branches still produce tables.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Optional

import polars as pl
import structlog

from de_compare.errors import PreconditionError
from de_compare.results.classify import DEFAULT_ALPHA, classify_table, count_significant
from de_compare.results.handles import FittedModelHandle, resolve_coefficient
from de_compare.results.models import (
    ENTITY_COLUMN,
    Contrast,
    InputType,
    ResultTable,
    ShrinkageMethod,
    standardize_result_columns,
)

logger = structlog.get_logger(__name__)

BranchKey = tuple[ShrinkageMethod, InputType]

# apeglm only accepts a model coefficient; normal and ashr accept the contrast
COEFFICIENT_METHODS = frozenset({ShrinkageMethod.APEGLM})

# lfcShrink keeps the unshrunken test statistics
CARRIED_COLUMNS = ["p_value", "adjusted_p_value"]


@dataclass
class PipelineRun:
    """Outcome of all branches: tables that succeeded, errors for those that failed."""

    tables: dict[BranchKey, ResultTable] = field(default_factory=dict)
    errors: dict[BranchKey, PreconditionError] = field(default_factory=dict)

    def get(self, method: ShrinkageMethod, input_type: InputType) -> Optional[ResultTable]:
        return self.tables.get((method, input_type))

    def pair(self, method: ShrinkageMethod) -> Optional[tuple[ResultTable, ResultTable]]:
        """(TPM, COUNTS) tables for one method, or None if either branch failed."""
        tpm = self.get(method, InputType.TPM)
        counts = self.get(method, InputType.COUNTS)
        if tpm is None or counts is None:
            return None
        return tpm, counts

    @property
    def succeeded(self) -> list[BranchKey]:
        return sorted(self.tables, key=_key_order)

    @property
    def failed(self) -> list[BranchKey]:
        return sorted(self.errors, key=_key_order)


def _key_order(key: BranchKey) -> tuple[int, int]:
    method, input_type = key
    return (list(ShrinkageMethod).index(method), list(InputType).index(input_type))


def _align_to_universe(
    shrunk: pl.DataFrame,
    baseline: pl.DataFrame,
    label: str,
) -> pl.DataFrame:
    """Reindex shrunken rows onto the unshrunken entity universe.

    Entities absent from the shrink output keep a row with null metrics;
    entities only in the shrink output are appended, never dropped.
    """
    for col in CARRIED_COLUMNS:
        if shrunk[col].null_count() == shrunk.height and baseline[col].null_count() < baseline.height:
            shrunk = shrunk.drop(col).join(
                baseline.select([ENTITY_COLUMN, col]), on=ENTITY_COLUMN, how="left"
            )

    universe = baseline.select(ENTITY_COLUMN)
    aligned = (
        universe.with_row_index("_order")
        .join(shrunk, on=ENTITY_COLUMN, how="left")
        .sort("_order")
        .drop("_order")
    )

    missing = universe.join(shrunk, on=ENTITY_COLUMN, how="anti").height
    extra = shrunk.join(universe, on=ENTITY_COLUMN, how="anti")
    if missing:
        logger.warning("shrink_missing_entities", branch=label, count=missing)
    if extra.height:
        logger.warning("shrink_extra_entities", branch=label, count=extra.height)
        aligned = pl.concat([aligned, extra.select(aligned.columns)], how="vertical")

    return aligned


def run_branch(
    handle: FittedModelHandle,
    input_type: InputType,
    method: ShrinkageMethod,
    contrast: Contrast,
    alpha: float = DEFAULT_ALPHA,
) -> ResultTable:
    """
    Produce the classified ResultTable for one (input_type, method) branch.

    Args:
        handle: Model fitted on this input type
        input_type: Input type the handle was fitted on
        method: Shrinkage variant; NONE returns the plain contrast results
        contrast: Two-group contrast
        alpha: FDR threshold for the significance label

    Returns:
        Classified ResultTable with one row per entity

    Raises:
        PreconditionError: If the model is not fit, the coefficient or
            shrinkage output cannot be obtained, or the handle returns a
            malformed frame (no entity column, duplicate entity ids)

    Notes:
        - Only APEGLM shrinks a resolved model coefficient. NORMAL and ASHR
          shrink the contrast, so they still run on a model whose coefficient
          cannot be resolved.
    """
    label = f"{input_type.value}/{method.value}"
    try:
        if not handle.is_fit():
            raise PreconditionError(
                "Model is not fit: size factors, dispersions and the test must run first"
            )

        baseline = standardize_result_columns(handle.results(contrast))

        if method is ShrinkageMethod.NONE:
            frame = baseline
        else:
            if method in COEFFICIENT_METHODS:
                target = resolve_coefficient(handle, contrast)
            else:
                target = contrast
            logger.debug("shrink_branch", branch=label, target=str(target))
            shrunk = standardize_result_columns(handle.shrink(target, method))
            frame = _align_to_universe(shrunk, baseline, label)
        table = ResultTable(input_type, method, frame)
    except PreconditionError as e:
        e.input_type = input_type.value
        e.shrinkage_method = method.value
        raise
    except ValueError as e:
        raise PreconditionError(
            f"Malformed {label} results: {e}",
            input_type=input_type.value,
            shrinkage_method=method.value,
        ) from e

    table = classify_table(table, alpha)
    logger.info(
        "branch_complete",
        branch=label,
        entities=table.height,
        significant=count_significant(table),
    )
    return table


def run_shrinkage_pipeline(
    handles: dict[InputType, FittedModelHandle],
    contrast: Contrast,
    alpha: float = DEFAULT_ALPHA,
    shrinkage_methods: Optional[Iterable[ShrinkageMethod]] = None,
    max_workers: Optional[int] = None,
) -> PipelineRun:
    """
    Run every (shrinkage_method, input_type) branch.

    Args:
        handles: One fitted model handle per input type
        contrast: Two-group contrast shared by all branches
        alpha: FDR threshold
        shrinkage_methods: Methods to run (default: all four)
        max_workers: If set, run branches in a thread pool of this size

    Returns:
        PipelineRun with the tables that succeeded and the per-branch errors

    Notes:
        - Handles are only read; branches share no mutable state
        - PreconditionError is captured per branch, other exceptions propagate
    """
    methods = list(shrinkage_methods) if shrinkage_methods is not None else list(ShrinkageMethod)
    keys = [(method, input_type) for method in methods for input_type in handles]

    logger.info(
        "run_shrinkage_pipeline_start",
        contrast=contrast.coefficient_name,
        alpha=alpha,
        input_types=[t.value for t in handles],
        shrinkage_methods=[m.value for m in methods],
        branches=len(keys),
    )

    def _run(key: BranchKey):
        method, input_type = key
        try:
            return key, run_branch(handles[input_type], input_type, method, contrast, alpha), None
        except PreconditionError as e:
            return key, None, e

    if max_workers and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(_run, keys))
    else:
        outcomes = [_run(key) for key in keys]

    run = PipelineRun()
    for key, table, error in outcomes:
        if error is not None:
            logger.error(
                "branch_failed",
                input_type=key[1].value,
                shrinkage_method=key[0].value,
                error=str(error),
            )
            run.errors[key] = error
        else:
            run.tables[key] = table

    logger.info(
        "run_shrinkage_pipeline_complete",
        succeeded=len(run.tables),
        failed=len(run.errors),
    )
    return run
