"""Cross-input comparison: joining, correlation, set partitioning and quality checks."""

from de_compare.comparison.join import (
    COMPARED_METRICS,
    MERGED_COLUMNS,
    JoinResult,
    MergedComparison,
    join_input_types,
    merge_all_shrinkage,
)
from de_compare.comparison.metrics import (
    MetricComparison,
    compare_metrics,
    comparison_rows,
    pearson_correlation,
    rank_rows,
    stable_rank,
)
from de_compare.comparison.partition import (
    SET_NAMES,
    membership_mapping,
    named_sets,
    overlap_counts,
    partition_memberships,
)
from de_compare.comparison.quality_control import check_data_quality
from de_compare.comparison.annotation import annotate_transcript_complexity, load_tx2gene

__all__ = [
    "COMPARED_METRICS",
    "MERGED_COLUMNS",
    "JoinResult",
    "MergedComparison",
    "join_input_types",
    "merge_all_shrinkage",
    "MetricComparison",
    "compare_metrics",
    "comparison_rows",
    "pearson_correlation",
    "rank_rows",
    "stable_rank",
    "SET_NAMES",
    "membership_mapping",
    "named_sets",
    "overlap_counts",
    "partition_memberships",
    "check_data_quality",
    "annotate_transcript_complexity",
    "load_tx2gene",
]
