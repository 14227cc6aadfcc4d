"""Pydantic models for pipeline configuration."""

import hashlib
import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from de_compare.results.models import InputType, ShrinkageMethod


class ContrastConfig(BaseModel):
    """Two-group comparison the hypothesis test is evaluated against."""

    factor: str = Field(
        ...,
        min_length=1,
        description="Design factor (sample metadata column), e.g. 'condition'",
    )
    numerator: str = Field(
        ...,
        min_length=1,
        description="Level tested against the reference",
    )
    denominator: str = Field(
        ...,
        min_length=1,
        description="Reference level",
    )


class ComparisonSettings(BaseModel):
    """Settings for classification, correlation and quality checks."""

    alpha: float = Field(
        default=0.1,
        gt=0.0,
        lt=1.0,
        description="FDR threshold for the significance label",
    )
    input_types: list[InputType] = Field(
        default_factory=lambda: list(InputType),
        description="Quantification inputs to compare",
    )
    shrinkage_methods: list[ShrinkageMethod] = Field(
        default_factory=lambda: list(ShrinkageMethod),
        description="LFC shrinkage variants to run per input type",
    )
    correlation_precision: int = Field(
        default=7,
        ge=0,
        le=15,
        description="Decimal digits correlations are rounded to for reporting",
    )
    max_nan_fraction: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Missing-value fraction above which a metric column is flagged",
    )
    max_dropped_fraction: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Fail the join when more than this fraction of entities is dropped (None = never)",
    )
    max_workers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Thread pool size for independent branches (None = sequential)",
    )

    @field_validator("input_types")
    @classmethod
    def require_both_inputs(cls, v: list[InputType]) -> list[InputType]:
        """The comparison is always TPM against COUNTS."""
        if set(v) != set(InputType):
            raise ValueError(
                f"input_types must contain exactly {[t.value for t in InputType]}, got {[t.value for t in v]}"
            )
        return v

    @field_validator("shrinkage_methods")
    @classmethod
    def require_unique_methods(cls, v: list[ShrinkageMethod]) -> list[ShrinkageMethod]:
        """Reject empty or duplicated method lists."""
        if not v:
            raise ValueError("shrinkage_methods must not be empty")
        if len(set(v)) != len(v):
            raise ValueError("shrinkage_methods contains duplicates")
        return v


class PipelineConfig(BaseModel):
    """Main pipeline configuration."""

    results_dir: Path = Field(
        ...,
        description="Directory with one exported result set per input type",
    )
    output_dir: Path = Field(
        ...,
        description="Directory for comparison outputs",
    )
    duckdb_path: Path = Field(
        ...,
        description="Path to DuckDB database file",
    )
    tx2gene_path: Optional[Path] = Field(
        default=None,
        description="Optional transcript-to-gene table for transcript-complexity annotation",
    )
    contrast: ContrastConfig = Field(
        ...,
        description="Contrast definition",
    )
    comparison: ComparisonSettings = Field(
        default_factory=ComparisonSettings,
        description="Comparison settings",
    )

    @field_validator("output_dir")
    @classmethod
    def create_directory(cls, v: Path) -> Path:
        """Create directory if it doesn't exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v

    def config_hash(self) -> str:
        """
        Compute SHA-256 hash of the configuration.

        Returns a deterministic hash based on all config values,
        useful for tracking config changes across runs.
        """
        config_dict = self.model_dump(mode="json")
        config_json = json.dumps(
            config_dict,
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(config_json.encode()).hexdigest()
