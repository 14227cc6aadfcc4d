"""Unit tests for cross-input joining, metric correlation and set partitioning."""

import polars as pl
import pytest

from de_compare.comparison import (
    MERGED_COLUMNS,
    compare_metrics,
    comparison_rows,
    join_input_types,
    membership_mapping,
    merge_all_shrinkage,
    named_sets,
    overlap_counts,
    partition_memberships,
    pearson_correlation,
    rank_rows,
    stable_rank,
)
from de_compare.comparison.metrics import rank_metric
from de_compare.errors import JoinMismatchError
from de_compare.results import (
    InputType,
    PipelineRun,
    ResultTable,
    ShrinkageMethod,
    classify_table,
)


def make_table(
    input_type: InputType,
    rows: list[tuple],
    method: ShrinkageMethod = ShrinkageMethod.NONE,
    alpha: float = 0.1,
) -> ResultTable:
    """rows: (entity_id, base_mean, log2_fold_change, adjusted_p_value)."""
    df = pl.DataFrame(
        {
            "entity_id": [r[0] for r in rows],
            "base_mean": [r[1] for r in rows],
            "log2_fold_change": [r[2] for r in rows],
            "p_value": [r[3] for r in rows],
            "adjusted_p_value": [r[3] for r in rows],
        },
        schema={
            "entity_id": pl.Utf8,
            "base_mean": pl.Float64,
            "log2_fold_change": pl.Float64,
            "p_value": pl.Float64,
            "adjusted_p_value": pl.Float64,
        },
    )
    return classify_table(ResultTable.from_frame(df, input_type, method), alpha)


TPM_ROWS = [
    ("G1", 100.0, 2.0, 0.01),
    ("G2", 50.0, -1.5, 0.02),
    ("G3", 10.0, 0.5, 0.5),
    ("G4", 80.0, -3.0, 0.001),
    ("G5", 5.0, None, None),
    ("E3", 100.0, 1.0, 0.03),
]

COUNTS_ROWS = [
    ("G1", 120.0, 1.8, 0.02),
    ("G2", 40.0, -1.2, 0.03),
    ("G3", 12.0, 0.4, 0.6),
    ("G4", 90.0, -2.5, 0.0005),
    ("G5", 6.0, 0.2, 0.9),
]


@pytest.fixture
def tpm() -> ResultTable:
    return make_table(InputType.TPM, TPM_ROWS)


@pytest.fixture
def counts() -> ResultTable:
    return make_table(InputType.COUNTS, COUNTS_ROWS)


@pytest.fixture
def run() -> PipelineRun:
    run = PipelineRun()
    for method in ShrinkageMethod:
        run.tables[(method, InputType.TPM)] = make_table(InputType.TPM, TPM_ROWS, method)
        run.tables[(method, InputType.COUNTS)] = make_table(InputType.COUNTS, COUNTS_ROWS, method)
    return run


# ============================================================================
# CrossInputJoiner
# ============================================================================

def test_join_is_intersection(tpm, counts):
    result = join_input_types(tpm, counts)

    assert result.frame.columns == MERGED_COLUMNS
    assert set(result.frame["entity_id"].to_list()) == tpm.entity_ids() & counts.entity_ids()
    assert result.frame.height <= min(tpm.height, counts.height)


def test_join_reports_dropped_entity(tpm, counts):
    """E3 exists only in TPM: excluded from the join and counted as dropped."""
    result = join_input_types(tpm, counts)

    assert "E3" not in result.frame["entity_id"].to_list()
    assert result.tpm_only == frozenset({"E3"})
    assert result.counts_only == frozenset()
    assert result.dropped_entity_count == 1


def test_join_dropped_count_increases_with_asymmetry():
    counts = make_table(InputType.COUNTS, COUNTS_ROWS)
    symmetric = join_input_types(make_table(InputType.TPM, TPM_ROWS[:5]), counts)
    asymmetric = join_input_types(make_table(InputType.TPM, TPM_ROWS), counts)

    assert asymmetric.dropped_entity_count == symmetric.dropped_entity_count + 1


def test_join_suffixes_and_differences(tpm, counts):
    df = join_input_types(tpm, counts).frame
    g1 = df.filter(pl.col("entity_id") == "G1").to_dicts()[0]

    assert g1["base_mean_TPM"] == 100.0
    assert g1["base_mean_COUNTS"] == 120.0
    assert g1["base_mean_diff"] == -20.0
    assert g1["log2_fold_change_diff"] == pytest.approx(0.2)
    assert g1["shrinkage_method"] == "NONE"


def test_join_difference_roundtrip_exact(tpm, counts):
    """Stored base_mean_diff equals TPM - COUNTS recomputed from the joined columns."""
    df = join_input_types(tpm, counts).frame

    recomputed = df["base_mean_TPM"] - df["base_mean_COUNTS"]
    assert recomputed.to_list() == df["base_mean_diff"].to_list()


def test_join_null_propagates_to_difference(tpm, counts):
    df = join_input_types(tpm, counts).frame
    g5 = df.filter(pl.col("entity_id") == "G5").to_dicts()[0]

    assert g5["log2_fold_change_TPM"] is None
    assert g5["log2_fold_change_diff"] is None
    assert g5["adjusted_p_value_diff"] is None
    assert g5["base_mean_diff"] == -1.0


def test_join_tolerance_raises(tpm, counts):
    with pytest.raises(JoinMismatchError) as exc_info:
        join_input_types(tpm, counts, max_dropped_fraction=0.1)

    assert exc_info.value.dropped_entity_count == 1


def test_join_tolerance_not_exceeded(tpm, counts):
    result = join_input_types(tpm, counts, max_dropped_fraction=0.5)

    assert result.frame.height == 5


def test_join_rejects_swapped_inputs(tpm, counts):
    with pytest.raises(ValueError, match="Expected \\(TPM, COUNTS\\)"):
        join_input_types(counts, tpm)


def test_join_rejects_mixed_methods(tpm):
    counts_ashr = make_table(InputType.COUNTS, COUNTS_ROWS, ShrinkageMethod.ASHR)

    with pytest.raises(ValueError, match="Cannot join"):
        join_input_types(tpm, counts_ashr)


def test_merge_all_shrinkage_long_table(run):
    merged = merge_all_shrinkage(run)

    assert merged.frame.height == 4 * 5
    assert set(merged.frame["shrinkage_method"].unique().to_list()) == {m.value for m in ShrinkageMethod}
    assert merged.dropped_entity_counts == {m: 1 for m in ShrinkageMethod}
    assert merged.for_method(ShrinkageMethod.ASHR).height == 5


def test_merge_skips_failed_methods(run):
    del run.tables[(ShrinkageMethod.APEGLM, InputType.COUNTS)]

    merged = merge_all_shrinkage(run)

    assert merged.skipped == [ShrinkageMethod.APEGLM]
    assert "APEGLM" not in merged.frame["shrinkage_method"].to_list()


def test_merge_with_no_pairs_is_empty():
    merged = merge_all_shrinkage(PipelineRun())

    assert merged.frame.height == 0
    assert merged.frame.columns == MERGED_COLUMNS


# ============================================================================
# MetricComparator
# ============================================================================

def test_pearson_self_correlation_is_one():
    x = [1.0, 5.0, 2.5, 9.0, 3.3]

    r, n = pearson_correlation(x, x)

    assert r == pytest.approx(1.0, abs=1e-6)
    assert n == 5


def test_pearson_rounds_to_precision():
    r, _ = pearson_correlation([1.0, 2.0, 3.0, 4.0], [1.0, 3.0, 2.0, 5.0], precision=7)

    assert r == round(r, 7)


def test_pearson_uses_complete_pairs_only():
    r, n = pearson_correlation([1.0, 2.0, None, 4.0], [2.0, 4.0, 6.0, float("nan")])

    assert n == 2
    assert r == pytest.approx(1.0)


def test_pearson_degenerate_returns_none():
    assert pearson_correlation([1.0], [2.0]) == (None, 1)
    assert pearson_correlation([1.0, 1.0, 1.0], [1.0, 2.0, 3.0])[0] is None


def test_stable_rank_is_bijection():
    ranks = stable_rank(pl.Series("v", [0.3, 0.1, 0.9, 0.5]))

    assert ranks.to_list() == [2, 1, 4, 3]
    assert sorted(ranks.to_list()) == list(range(1, 5))


def test_stable_rank_ties_keep_input_order():
    """Equal values keep input order; no averaged ranks."""
    ranks = stable_rank(pl.Series("v", [0.2, 0.05, 0.2, 0.05]))

    assert ranks.to_list() == [3, 1, 4, 2]


def test_stable_rank_descending_ties_keep_input_order():
    ranks = stable_rank(pl.Series("v", [1.0, 3.0, 3.0, 2.0]), descending=True)

    assert ranks.to_list() == [4, 1, 2, 3]


def test_stable_rank_nulls_unranked():
    ranks = stable_rank(pl.Series("v", [0.5, None, 0.1]))

    assert ranks.to_list() == [2, None, 1]


def test_rank_metric_directions():
    values = pl.Series("v", [-3.0, 1.0, 2.0, -0.5])

    assert rank_metric(values, "log2_fold_change").to_list() == [1, 3, 2, 4]
    assert rank_metric(values.abs(), "adjusted_p_value").to_list() == [4, 2, 3, 1]


def test_compare_metrics_twelve_of_each(run):
    merged = merge_all_shrinkage(run)

    comparison = compare_metrics(merged.frame)

    assert comparison.value_correlations.height == 12
    assert comparison.rank_correlations.height == 12
    assert set(comparison.value_lookup()) == {
        (m, metric)
        for m in ShrinkageMethod
        for metric in ("base_mean", "log2_fold_change", "adjusted_p_value")
    }


def test_value_correlation_matches_direct_computation(tpm, counts):
    df = join_input_types(tpm, counts).frame

    comparison = compare_metrics(df)
    expected, _ = pearson_correlation(df["base_mean_TPM"].to_numpy(), df["base_mean_COUNTS"].to_numpy())

    assert comparison.value_lookup()[(ShrinkageMethod.NONE, "base_mean")] == expected


def test_rank_correlation_restricted_to_significant_in_both(tpm, counts):
    """Significant in both: G1, G2, G4. G3 (not significant) and G5 are excluded."""
    df = join_input_types(tpm, counts).frame

    comparison = compare_metrics(df)
    n_pairs = comparison.rank_correlations["n_pairs"].to_list()

    assert n_pairs == [3, 3, 3]


def test_rank_correlation_values(tpm, counts):
    df = join_input_types(tpm, counts).frame
    ranks = rank_rows(df, compare_metrics(df).rank_correlations)
    padj = ranks.filter(pl.col("metric") == "adjusted_p_value").sort("entity_id")

    # TPM padj G1 0.01, G2 0.02, G4 0.001 -> ranks 2, 3, 1; COUNTS 0.02, 0.03, 0.0005 -> 2, 3, 1
    assert padj["rank_TPM"].to_list() == [2, 3, 1]
    assert padj["rank_COUNTS"].to_list() == [2, 3, 1]
    assert padj["correlation"].to_list() == [pytest.approx(1.0)] * 3


def test_comparison_rows_broadcast_correlation(run):
    merged = merge_all_shrinkage(run).frame
    comparison = compare_metrics(merged)

    rows = comparison_rows(merged, comparison.value_correlations)

    assert rows.height == merged.height * 3
    group = rows.filter(
        (pl.col("shrinkage_method") == "NORMAL") & (pl.col("metric") == "log2_fold_change")
    )
    assert group["correlation"].n_unique() == 1
    assert group["correlation"][0] == comparison.value_lookup()[(ShrinkageMethod.NORMAL, "log2_fold_change")]


# ============================================================================
# SetPartitioner
# ============================================================================

def test_partition_scenario():
    """E1 significant with positive lfc -> Up; E2 not significant -> Unchanged."""
    tpm = make_table(InputType.TPM, [("E1", 10.0, 2.0, 0.01), ("E2", 10.0, -1.5, 0.2)])
    counts = make_table(InputType.COUNTS, [])

    sets = named_sets(partition_memberships(tpm, counts))

    assert sets["Up"] == {"E1"}
    assert sets["Unchanged"] == {"E2"}
    assert sets["Down"] == set()
    assert sets["TPM_Input"] == {"E1", "E2"}
    assert sets["Counts_Input"] == set()


def test_partition_excludes_missing_padj(tpm, counts):
    memberships = partition_memberships(tpm, counts)

    g5 = memberships.filter(pl.col("entity_id") == "G5")
    assert g5["input_type"].to_list() == ["COUNTS"]
    assert memberships.height == len(TPM_ROWS) - 1 + len(COUNTS_ROWS)


def test_partition_up_down_disjoint_and_significant(tpm, counts):
    memberships = partition_memberships(tpm, counts)
    sets = named_sets(memberships)

    assert sets["Up"].isdisjoint(sets["Down"])
    significant = (tpm.frame.filter(pl.col("significance_label") == "SIGNIFICANT")["entity_id"].to_list()
                   + counts.frame.filter(pl.col("significance_label") == "SIGNIFICANT")["entity_id"].to_list())
    assert sets["Up"] | sets["Down"] <= set(significant)


def test_partition_exactly_one_direction_and_input_per_occurrence(tpm, counts):
    memberships = partition_memberships(tpm, counts)

    direction = memberships.select(
        (pl.col("Up").cast(pl.Int8) + pl.col("Down").cast(pl.Int8) + pl.col("Unchanged").cast(pl.Int8))
    ).to_series()
    provenance = memberships.select(
        (pl.col("TPM_Input").cast(pl.Int8) + pl.col("Counts_Input").cast(pl.Int8))
    ).to_series()

    assert direction.to_list() == [1] * memberships.height
    assert provenance.to_list() == [1] * memberships.height


def test_partition_entity_in_both_inputs_with_different_labels():
    tpm = make_table(InputType.TPM, [("G1", 10.0, 1.0, 0.01)])
    counts = make_table(InputType.COUNTS, [("G1", 10.0, 0.3, 0.4)])

    mapping = membership_mapping(partition_memberships(tpm, counts))

    assert mapping["G1"] == {
        "Up": True,
        "Down": False,
        "Unchanged": True,
        "TPM_Input": True,
        "Counts_Input": True,
    }


def test_overlap_counts_sum_to_occurrences(tpm, counts):
    memberships = partition_memberships(tpm, counts)

    overlaps = overlap_counts(memberships)

    assert overlaps["count"].sum() == memberships.height
    assert overlaps["count"].to_list() == sorted(overlaps["count"].to_list(), reverse=True)


def test_partition_requires_classified_tables(tpm):
    raw = ResultTable(InputType.COUNTS, ShrinkageMethod.NONE, tpm.frame.drop("significance_label"))

    with pytest.raises(ValueError, match="not been classified"):
        partition_memberships(tpm, raw)


def test_partition_excludes_raw_nan_padj():
    """Tables built directly from frames with NaN padj keep that entity out of every set."""
    df = pl.DataFrame({
        "entity_id": ["E1", "E2"],
        "base_mean": [10.0, 10.0],
        "log2_fold_change": [2.0, -1.5],
        "p_value": [0.001, 0.1],
        "adjusted_p_value": [0.01, float("nan")],
    })
    tpm = classify_table(ResultTable(InputType.TPM, ShrinkageMethod.NONE, df))
    counts = classify_table(ResultTable(InputType.COUNTS, ShrinkageMethod.NONE, df))

    sets = named_sets(partition_memberships(tpm, counts))

    assert sets["Up"] == {"E1"}
    assert all("E2" not in members for members in sets.values())


def test_rank_ties_resolve_in_entity_id_order():
    tpm = make_table(InputType.TPM, [("G2", 10.0, 1.0, 0.01), ("G1", 10.0, 1.0, 0.01)])
    counts = make_table(InputType.COUNTS, [("G2", 10.0, 1.0, 0.01), ("G1", 10.0, 1.0, 0.01)])
    merged = join_input_types(tpm, counts).frame

    ranks = rank_rows(merged, compare_metrics(merged).rank_correlations)
    base_mean = ranks.filter(pl.col("metric") == "base_mean")

    assert dict(zip(base_mean["entity_id"].to_list(), base_mean["rank_TPM"].to_list())) == {
        "G1": 1,
        "G2": 2,
    }
