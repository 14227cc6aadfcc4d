"""Persistence layer for comparison checkpoints and provenance tracking."""

from de_compare.persistence.duckdb_store import PipelineStore
from de_compare.persistence.provenance import ProvenanceTracker

__all__ = ["PipelineStore", "ProvenanceTracker"]
