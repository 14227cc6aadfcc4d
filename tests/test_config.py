"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from de_compare.config import load_config, load_config_with_overrides
from de_compare.config.schema import ComparisonSettings, PipelineConfig
from de_compare.results import InputType, ShrinkageMethod

DEFAULT_CONFIG = Path(__file__).resolve().parents[1] / "config" / "default.yaml"


def write_config(tmp_path, extra: str = "") -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"""
results_dir: {tmp_path}/results
output_dir: {tmp_path}/output
duckdb_path: {tmp_path}/test.duckdb
contrast:
  factor: condition
  numerator: treated
  denominator: control
{extra}
""")
    return config_path


def test_load_default_config(tmp_path, monkeypatch):
    """Default config loads with alpha 0.1 and all four shrinkage methods."""
    monkeypatch.chdir(tmp_path)
    config = load_config(DEFAULT_CONFIG)

    assert isinstance(config, PipelineConfig)
    assert config.comparison.alpha == 0.1
    assert config.comparison.shrinkage_methods == list(ShrinkageMethod)
    assert config.comparison.input_types == [InputType.TPM, InputType.COUNTS]
    assert config.comparison.correlation_precision == 7


def test_minimal_config_uses_defaults(tmp_path):
    config = load_config(write_config(tmp_path))

    assert config.comparison == ComparisonSettings()
    assert config.tx2gene_path is None
    assert config.output_dir.exists()


def test_missing_contrast_raises(tmp_path):
    config_path = tmp_path / "bad.yaml"
    config_path.write_text(f"""
results_dir: {tmp_path}/results
output_dir: {tmp_path}/output
duckdb_path: {tmp_path}/test.duckdb
""")

    with pytest.raises(ValidationError) as exc_info:
        load_config(config_path)

    assert "contrast" in str(exc_info.value)


@pytest.mark.parametrize("alpha", [0.0, 1.0, 1.2])
def test_invalid_alpha(tmp_path, alpha):
    with pytest.raises(ValidationError, match="alpha"):
        load_config(write_config(tmp_path, f"comparison:\n  alpha: {alpha}\n"))


def test_unknown_shrinkage_method(tmp_path):
    with pytest.raises(ValidationError):
        load_config(write_config(tmp_path, "comparison:\n  shrinkage_methods: [NONE, LASSO]\n"))


def test_duplicate_shrinkage_method(tmp_path):
    with pytest.raises(ValidationError, match="duplicates"):
        load_config(write_config(tmp_path, "comparison:\n  shrinkage_methods: [NONE, NONE]\n"))


def test_input_types_must_be_both(tmp_path):
    with pytest.raises(ValidationError, match="input_types"):
        load_config(write_config(tmp_path, "comparison:\n  input_types: [TPM]\n"))


def test_missing_file_raises():
    with pytest.raises(FileNotFoundError):
        load_config("does/not/exist.yaml")


def test_overrides_nested_and_none(tmp_path):
    config = load_config_with_overrides(
        write_config(tmp_path),
        {"comparison.alpha": 0.05, "results_dir": None},
    )

    assert config.comparison.alpha == 0.05
    assert config.results_dir == tmp_path / "results"


def test_config_hash_deterministic(tmp_path):
    path = write_config(tmp_path)

    assert load_config(path).config_hash() == load_config(path).config_hash()
    changed = load_config_with_overrides(path, {"comparison.alpha": 0.05})
    assert changed.config_hash() != load_config(path).config_hash()
