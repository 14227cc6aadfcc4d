"""DE result tables: data model, significance labelling, model handles and the shrinkage pipeline."""

from de_compare.results.models import (
    Contrast,
    InputType,
    ResultRow,
    ResultTable,
    ShrinkageMethod,
    SignificanceLabel,
    RESULT_COLUMNS,
    standardize_result_columns,
)
from de_compare.results.classify import (
    DEFAULT_ALPHA,
    classify_significance,
    classify_table,
    count_significant,
)
from de_compare.results.handles import (
    ExportedResultsHandle,
    FittedModelHandle,
    resolve_coefficient,
)
from de_compare.results.pipeline import (
    PipelineRun,
    run_branch,
    run_shrinkage_pipeline,
)

__all__ = [
    "Contrast",
    "InputType",
    "ResultRow",
    "ResultTable",
    "ShrinkageMethod",
    "SignificanceLabel",
    "RESULT_COLUMNS",
    "standardize_result_columns",
    "DEFAULT_ALPHA",
    "classify_significance",
    "classify_table",
    "count_significant",
    "ExportedResultsHandle",
    "FittedModelHandle",
    "resolve_coefficient",
    "PipelineRun",
    "run_branch",
    "run_shrinkage_pipeline",
]
