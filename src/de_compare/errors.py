"""Error and warning types raised by the comparison core."""

from typing import Optional


class PreconditionError(RuntimeError):
    """A branch cannot run: model not fit, or coefficient/shrinkage unavailable.

    Fatal for the (input type, shrinkage method) branch that raised it only.
    """

    def __init__(
        self,
        message: str,
        input_type: Optional[str] = None,
        shrinkage_method: Optional[str] = None,
    ):
        super().__init__(message)
        self.input_type = input_type
        self.shrinkage_method = shrinkage_method


class JoinMismatchError(ValueError):
    """Entity universes of the two input types diverge beyond the caller's tolerance."""

    def __init__(self, message: str, dropped_entity_count: int, dropped_fraction: float):
        super().__init__(message)
        self.dropped_entity_count = dropped_entity_count
        self.dropped_fraction = dropped_fraction


class DataQualityWarning(UserWarning):
    """Non-fatal: missing-value proportion of a metric column exceeds the threshold."""
