"""Dual-format TSV+Parquet writer with provenance sidecar."""

from datetime import datetime, timezone
from pathlib import Path

import polars as pl
import yaml

from de_compare.results.models import ENTITY_COLUMN


def write_comparison_output(
    df: pl.DataFrame | pl.LazyFrame,
    output_dir: Path,
    filename_base: str,
    sort_by: list[str] | None = None,
) -> dict:
    """
    Write a comparison table to TSV and Parquet with a YAML provenance sidecar.

    Args:
        df: Polars DataFrame or LazyFrame to write
        output_dir: Directory to write output files (created if doesn't exist)
        filename_base: Base filename without extension
        sort_by: Columns to sort by for deterministic output (default:
            shrinkage_method then entity_id, where present)

    Returns:
        Dictionary with output file paths:
        {
            "tsv": Path to TSV file,
            "parquet": Path to Parquet file,
            "provenance": Path to YAML provenance sidecar
        }

    Notes:
        - Nulls are written as "NA" in the TSV and as nulls in Parquet
        - Provenance YAML includes row count, per-shrinkage-method counts
          (when the column exists), column_count and column_names
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if isinstance(df, pl.LazyFrame):
        df = df.collect()

    if sort_by is None:
        sort_by = [c for c in ("shrinkage_method", "metric", ENTITY_COLUMN) if c in df.columns]
    if sort_by:
        df = df.sort(sort_by, maintain_order=True)

    tsv_path = output_dir / f"{filename_base}.tsv"
    parquet_path = output_dir / f"{filename_base}.parquet"
    provenance_path = output_dir / f"{filename_base}.provenance.yaml"

    df.write_csv(tsv_path, separator="\t", include_header=True, null_value="NA")
    df.write_parquet(parquet_path, compression="snappy", use_pyarrow=True)

    method_counts = {}
    if "shrinkage_method" in df.columns:
        dist = df.group_by("shrinkage_method").agg(pl.len()).sort("shrinkage_method")
        method_counts = {row["shrinkage_method"]: row["len"] for row in dist.to_dicts()}

    provenance = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "output_files": [tsv_path.name, parquet_path.name],
        "statistics": {
            "total_rows": df.height,
            "rows_per_shrinkage_method": method_counts,
        },
        "column_count": len(df.columns),
        "column_names": df.columns,
    }

    with open(provenance_path, "w") as f:
        yaml.dump(provenance, f, default_flow_style=False, sort_keys=False)

    return {
        "tsv": tsv_path,
        "parquet": parquet_path,
        "provenance": provenance_path,
    }


def write_named_sets(sets: dict[str, set[str]], output_dir: Path, filename: str = "set_memberships.yaml") -> Path:
    """Write the named entity sets as sorted YAML lists."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    with open(path, "w") as f:
        yaml.dump(
            {name: sorted(members) for name, members in sets.items()},
            f,
            default_flow_style=False,
            sort_keys=False,
        )
    return path
