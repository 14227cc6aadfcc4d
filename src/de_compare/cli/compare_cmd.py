"""Compare command: run all shrinkage branches and compare TPM vs COUNTS.

Pipeline steps:
1. Load exported results for each input type
2. Run the unshrunken test and the shrinkage variants (per-branch failures allowed)
3. Check missing-value rates
4. Join TPM and COUNTS per shrinkage method
5. Value and rank correlations per metric
6. Up/Down/Unchanged set memberships from the unshrunken pair
7. Write outputs, checkpoints and provenance
"""

import logging
import sys
import warnings
from pathlib import Path

import click

from de_compare.comparison import (
    annotate_transcript_complexity,
    check_data_quality,
    compare_metrics,
    comparison_rows,
    load_tx2gene,
    merge_all_shrinkage,
    named_sets,
    overlap_counts,
    partition_memberships,
    rank_rows,
)
from de_compare.config.loader import load_config_with_overrides
from de_compare.errors import DataQualityWarning, JoinMismatchError
from de_compare.output import write_comparison_output, write_named_sets
from de_compare.persistence import PipelineStore, ProvenanceTracker
from de_compare.persistence.duckdb_store import (
    MEMBERSHIP_TABLE,
    MERGED_TABLE,
    OVERLAP_TABLE,
    RANK_CORRELATION_TABLE,
    VALUE_CORRELATION_TABLE,
)
from de_compare.results import (
    Contrast,
    ExportedResultsHandle,
    ShrinkageMethod,
    run_shrinkage_pipeline,
)

logger = logging.getLogger(__name__)


def _echo_correlations(title: str, df) -> None:
    click.echo(click.style(title, bold=True))
    click.echo(f"  {'Shrinkage':<10} {'Metric':<18} {'r':>11} {'n':>7}")
    for row in df.to_dicts():
        r = f"{row['correlation']:.7f}" if row['correlation'] is not None else "N/A"
        click.echo(f"  {row['shrinkage_method']:<10} {row['metric']:<18} {r:>11} {row['n_pairs']:>7}")
    click.echo()


@click.command('compare')
@click.option(
    '--results-dir',
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help='Directory with tpm/ and counts/ result exports (overrides config)'
)
@click.option(
    '--output-dir',
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help='Output directory (overrides config)'
)
@click.option(
    '--alpha',
    type=float,
    default=None,
    help='FDR threshold (overrides config)'
)
@click.option(
    '--force',
    is_flag=True,
    help='Re-run even if a merged_comparison checkpoint exists'
)
@click.pass_context
def compare(ctx, results_dir, output_dir, alpha, force):
    """Compare TPM- and count-based DE results across shrinkage methods.

    Expects one export directory per input type under the results directory
    (tpm/ and counts/), each holding results.tsv, shrink_<method>.tsv and
    coefficients.txt.

    Examples:

        de-compare compare

        de-compare compare --results-dir exports/ --alpha 0.05 --force
    """
    config_path = ctx.obj['config_path']

    click.echo(click.style("=== TPM vs Counts Shrinkage Comparison ===", bold=True))
    click.echo()

    store = None
    try:
        config = load_config_with_overrides(config_path, {
            'results_dir': results_dir,
            'output_dir': output_dir,
            'comparison.alpha': alpha,
        })
        settings = config.comparison
        click.echo(click.style(f"  Config loaded: {config_path}", fg='green'))

        store = PipelineStore.from_config(config)
        provenance = ProvenanceTracker.from_config(config)

        if store.has_checkpoint(MERGED_TABLE) and not force:
            merged = store.load_dataframe(MERGED_TABLE)
            click.echo(click.style(
                f"{MERGED_TABLE} checkpoint exists ({merged.height} rows). "
                "Skipping processing (use --force to re-run).",
                fg='yellow'
            ))
            return

        contrast = Contrast(**config.contrast.model_dump())

        # Step 1: handles
        click.echo(click.style("Step 1: Loading exported results...", bold=True))
        handles = {
            input_type: ExportedResultsHandle.from_directory(
                Path(config.results_dir) / input_type.value.lower(), contrast
            )
            for input_type in settings.input_types
        }
        click.echo()

        # Step 2: branches
        click.echo(click.style("Step 2: Running shrinkage branches...", bold=True))
        run = run_shrinkage_pipeline(
            handles,
            contrast,
            alpha=settings.alpha,
            shrinkage_methods=settings.shrinkage_methods,
            max_workers=settings.max_workers,
        )
        for method, input_type in run.succeeded:
            click.echo(click.style(f"  {input_type.value}/{method.value}: ok", fg='green'))
        for key in run.failed:
            method, input_type = key
            click.echo(click.style(
                f"  {input_type.value}/{method.value}: failed ({run.errors[key]})", fg='red'
            ))
        provenance.record_step('run_shrinkage_pipeline', {
            'succeeded': [f"{t.value}/{m.value}" for m, t in run.succeeded],
            'failed': {f"{t.value}/{m.value}": str(run.errors[(m, t)]) for m, t in run.failed},
        })
        if not run.tables:
            click.echo(click.style("No branch succeeded; nothing to compare.", fg='red'), err=True)
            sys.exit(1)
        click.echo()

        # Step 3: QC
        click.echo(click.style("Step 3: Checking missing-value rates...", bold=True))
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", DataQualityWarning)
            qc = check_data_quality(run.tables.values(), settings.max_nan_fraction)
        for message in qc["warnings"]:
            click.echo(click.style(f"  Warning: {message}", fg='yellow'))
        if not qc["warnings"]:
            click.echo(click.style("  All metric columns within threshold", fg='green'))
        provenance.record_step('check_data_quality', {'warnings': qc["warnings"]})
        click.echo()

        # Step 4: join
        click.echo(click.style("Step 4: Joining TPM and COUNTS...", bold=True))
        try:
            merged = merge_all_shrinkage(
                run,
                settings.shrinkage_methods,
                max_dropped_fraction=settings.max_dropped_fraction,
            )
        except JoinMismatchError as e:
            click.echo(click.style(f"  Error: {e}", fg='red'), err=True)
            sys.exit(1)
        for method, dropped in merged.dropped_entity_counts.items():
            click.echo(f"  {method.value}: {merged.joins[method].frame.height} joined, {dropped} dropped")
        for method in merged.skipped:
            click.echo(click.style(f"  {method.value}: skipped (branch failed)", fg='yellow'))
        provenance.record_step('merge_all_shrinkage', {
            'rows': merged.frame.height,
            'dropped_entity_counts': {m.value: n for m, n in merged.dropped_entity_counts.items()},
            'skipped': [m.value for m in merged.skipped],
        })
        click.echo()

        # Step 5: correlations
        click.echo(click.style("Step 5: Computing correlations...", bold=True))
        comparison = compare_metrics(merged.frame, settings.correlation_precision)
        _echo_correlations("Value correlation (Pearson):", comparison.value_correlations)
        _echo_correlations("Rank correlation (stable ranks):", comparison.rank_correlations)
        provenance.record_step('compare_metrics', {
            'value_correlations': comparison.value_correlations.height,
            'rank_correlations': comparison.rank_correlations.height,
        })

        # Step 6: sets
        click.echo(click.style("Step 6: Partitioning entity sets...", bold=True))
        unshrunken = run.pair(ShrinkageMethod.NONE)
        memberships = None
        if unshrunken is None:
            click.echo(click.style("  Skipped: unshrunken results unavailable", fg='yellow'))
        else:
            memberships = partition_memberships(*unshrunken)
            sets = named_sets(memberships)
            for name, members in sets.items():
                click.echo(f"  {name}: {len(members)}")
            provenance.record_step('partition_memberships', {
                name: len(members) for name, members in sets.items()
            })
        click.echo()

        # Step 7: outputs
        click.echo(click.style("Step 7: Writing outputs...", bold=True))
        out_dir = Path(config.output_dir)
        merged_frame = merged.frame
        long_rows = comparison_rows(merged.frame, comparison.value_correlations)
        if config.tx2gene_path:
            tx2gene = load_tx2gene(config.tx2gene_path)
            merged_frame = annotate_transcript_complexity(merged_frame, tx2gene)
            long_rows = annotate_transcript_complexity(long_rows, tx2gene)

        written = [
            write_comparison_output(merged_frame, out_dir, "merged_comparison"),
            write_comparison_output(long_rows, out_dir, "comparison_rows"),
            write_comparison_output(
                rank_rows(merged.frame, comparison.rank_correlations), out_dir, "rank_rows"
            ),
            write_comparison_output(comparison.value_correlations, out_dir, "value_correlations"),
            write_comparison_output(comparison.rank_correlations, out_dir, "rank_correlations"),
        ]

        store.save_dataframe(merged_frame, MERGED_TABLE, "TPM vs COUNTS joined results, all shrinkage methods")
        store.save_dataframe(comparison.value_correlations, VALUE_CORRELATION_TABLE, "Pearson r per method and metric")
        store.save_dataframe(comparison.rank_correlations, RANK_CORRELATION_TABLE, "Stable-rank r per method and metric")

        if memberships is not None:
            overlaps = overlap_counts(memberships)
            written.append(write_comparison_output(memberships, out_dir, "set_memberships"))
            written.append(write_comparison_output(overlaps, out_dir, "set_overlaps", sort_by=[]))
            write_named_sets(named_sets(memberships), out_dir)
            store.save_dataframe(memberships, MEMBERSHIP_TABLE, "Set flags per entity occurrence")
            store.save_dataframe(overlaps, OVERLAP_TABLE, "Set combination cardinalities")

        for paths in written:
            click.echo(f"  {paths['tsv']}")

        provenance.record_step('write_outputs', {'files': [str(p['tsv']) for p in written]})
        provenance.save_sidecar(out_dir / "run.yaml")
        provenance.save_to_store(store)

        click.echo()
        click.echo(click.style("Comparison complete", fg='green'))

    except SystemExit:
        raise
    except Exception as e:
        click.echo(click.style(f"Error: {e}", fg='red'), err=True)
        logger.exception("Comparison failed")
        sys.exit(1)
    finally:
        if store is not None:
            store.close()
