"""Main CLI entry point for de-compare.

Provides command group with global options and subcommands.
"""

import logging
from pathlib import Path

import click

from de_compare import __version__
from de_compare.config.loader import load_config
from de_compare.cli.compare_cmd import compare


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@click.group()
@click.option(
    '--config',
    type=click.Path(exists=True, path_type=Path),
    default='config/default.yaml',
    help='Path to pipeline configuration YAML file'
)
@click.option(
    '--verbose',
    is_flag=True,
    help='Enable verbose logging (DEBUG level)'
)
@click.pass_context
def cli(ctx, config, verbose):
    """de-compare: sensitivity of differential expression to quantification input and LFC shrinkage.

    Compares TPM-based and count-based DE results across None, Normal,
    Apeglm and Ashr shrinkage.
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Verbose logging enabled")


@cli.command()
@click.pass_context
def info(ctx):
    """Display configuration summary."""
    config_path = ctx.obj['config_path']

    click.echo(f"de-compare v{__version__}")
    click.echo(f"Config: {config_path}")
    click.echo()

    try:
        config = load_config(config_path)

        click.echo(f"Config Hash: {config.config_hash()[:16]}...")
        click.echo()

        click.echo(click.style("Contrast:", bold=True))
        click.echo(f"  Factor:      {config.contrast.factor}")
        click.echo(f"  Numerator:   {config.contrast.numerator}")
        click.echo(f"  Denominator: {config.contrast.denominator}")
        click.echo()

        settings = config.comparison
        click.echo(click.style("Comparison:", bold=True))
        click.echo(f"  Alpha: {settings.alpha}")
        click.echo(f"  Input types: {', '.join(t.value for t in settings.input_types)}")
        click.echo(f"  Shrinkage methods: {', '.join(m.value for m in settings.shrinkage_methods)}")
        click.echo(f"  Correlation precision: {settings.correlation_precision}")
        click.echo(f"  Max missing fraction: {settings.max_nan_fraction}")
        click.echo()

        click.echo(click.style("Paths:", bold=True))
        click.echo(f"  Results Directory: {config.results_dir}")
        click.echo(f"  Output Directory: {config.output_dir}")
        click.echo(f"  DuckDB Path: {config.duckdb_path}")
        if config.tx2gene_path:
            click.echo(f"  tx2gene: {config.tx2gene_path}")

    except Exception as e:
        click.echo(click.style(f"Error loading config: {e}", fg='red'), err=True)
        ctx.exit(1)


cli.add_command(compare)


if __name__ == '__main__':
    cli()
