"""Output generation: dual-format comparison tables and set listings."""

from de_compare.output.writers import write_comparison_output, write_named_sets

__all__ = [
    "write_comparison_output",
    "write_named_sets",
]
