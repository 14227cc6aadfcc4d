"""de-compare: sensitivity of DE conclusions to quantification input and LFC shrinkage."""

__version__ = "0.1.0"
