"""Fitted-model handles consumed by the shrinkage pipeline.

The statistical fit (size factors, dispersions, Wald test) happens outside
this package. A handle exposes the fitted model's results and its shrunken
variants; ExportedResultsHandle serves them from tables that were produced
by an earlier DESeq2/pyDESeq2 run.
"""

from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

import polars as pl
import structlog

from de_compare.errors import PreconditionError
from de_compare.results.models import Contrast, ShrinkageMethod

logger = structlog.get_logger(__name__)

ShrinkTarget = Union[str, Contrast]

RESULTS_FILENAME = "results.tsv"
COEFFICIENTS_FILENAME = "coefficients.txt"
SHRINK_FILENAME_TEMPLATE = "shrink_{method}.tsv"
NULL_VALUES = ["NA", "NaN", "nan", ""]


@runtime_checkable
class FittedModelHandle(Protocol):
    """Read-only view of a model fitted once per input type."""

    def results(self, contrast: Contrast) -> pl.DataFrame:
        ...

    def shrink(self, target: ShrinkTarget, method: ShrinkageMethod) -> pl.DataFrame:
        ...

    def coefficient_names(self) -> list[str]:
        ...

    def is_fit(self) -> bool:
        ...


def resolve_coefficient(handle: FittedModelHandle, contrast: Contrast) -> str:
    """
    Resolve the model coefficient that corresponds to a two-group contrast.

    Resolution order:
    1. handle.resolve_coefficient(contrast), when the handle provides it
    2. contrast.coefficient_name, when listed in coefficient_names()
    3. the second coefficient of a two-coefficient (intercept + factor) model

    Args:
        handle: Fitted model handle
        contrast: Contrast whose coefficient is needed

    Returns:
        Coefficient name accepted by handle.shrink()

    Raises:
        PreconditionError: If fewer than 2 coefficients exist, or if the
            model has more than 2 and none matches the contrast
    """
    custom = getattr(handle, "resolve_coefficient", None)
    if callable(custom):
        return custom(contrast)

    names = list(handle.coefficient_names())
    if len(names) < 2:
        raise PreconditionError(
            f"Cannot resolve coefficient for {contrast.coefficient_name}: "
            f"model has {len(names)} coefficient(s) {names}, need at least 2"
        )

    if contrast.coefficient_name in names:
        return contrast.coefficient_name

    if len(names) == 2:
        logger.debug(
            "resolve_coefficient_positional",
            contrast=contrast.coefficient_name,
            coefficient=names[1],
        )
        return names[1]

    raise PreconditionError(
        f"Cannot resolve coefficient for {contrast.coefficient_name} among {names}; "
        "multi-level designs need an explicit coefficient name"
    )


class ExportedResultsHandle:
    """
    Handle backed by already computed result tables.

    Args:
        results_frame: Unshrunken results (None means the model was never fit)
        shrunk_frames: Shrunken results keyed by method
        coefficients: Model coefficient names in model order
        contrast: Contrast the exported results were computed for; requests
            for any other contrast are rejected
    """

    def __init__(
        self,
        results_frame: Optional[pl.DataFrame],
        shrunk_frames: Optional[dict[ShrinkageMethod, pl.DataFrame]] = None,
        coefficients: Optional[list[str]] = None,
        contrast: Optional[Contrast] = None,
    ):
        self._results = results_frame
        self._shrunk = dict(shrunk_frames or {})
        self._coefficients = list(coefficients or [])
        self._contrast = contrast

    def _check_contrast(self, contrast: Contrast) -> None:
        if self._contrast is not None and contrast != self._contrast:
            raise PreconditionError(
                f"Exported results were computed for {self._contrast.coefficient_name}, "
                f"not {contrast.coefficient_name}"
            )

    def is_fit(self) -> bool:
        return self._results is not None

    def coefficient_names(self) -> list[str]:
        return list(self._coefficients)

    def results(self, contrast: Contrast) -> pl.DataFrame:
        if self._results is None:
            raise PreconditionError("Model has not been fit; no results available")
        self._check_contrast(contrast)
        return self._results

    def shrink(self, target: ShrinkTarget, method: ShrinkageMethod) -> pl.DataFrame:
        if isinstance(target, Contrast):
            self._check_contrast(target)
        elif target not in self._coefficients:
            raise PreconditionError(
                f"Unknown coefficient '{target}'; model has {self._coefficients}"
            )
        if method not in self._shrunk:
            raise PreconditionError(f"No {method.value} shrinkage results were exported")
        return self._shrunk[method]

    @classmethod
    def from_directory(
        cls,
        directory: Path,
        contrast: Optional[Contrast] = None,
    ) -> "ExportedResultsHandle":
        """
        Load a handle from an export directory.

        Expected layout (tab-separated, DESeq2 column names accepted):
            results.tsv            unshrunken results
            shrink_normal.tsv      one file per exported shrinkage method
            shrink_apeglm.tsv
            shrink_ashr.tsv
            coefficients.txt       one coefficient name per line

        Missing files are not an error here: an absent results.tsv yields an
        unfit handle and an absent shrink file fails only that method.
        """
        directory = Path(directory)

        results_path = directory / RESULTS_FILENAME
        results_frame = _read_table(results_path) if results_path.exists() else None

        shrunk = {}
        for method in ShrinkageMethod:
            if method is ShrinkageMethod.NONE:
                continue
            path = directory / SHRINK_FILENAME_TEMPLATE.format(method=method.value.lower())
            if path.exists():
                shrunk[method] = _read_table(path)

        coefficients = []
        coef_path = directory / COEFFICIENTS_FILENAME
        if coef_path.exists():
            coefficients = [
                line.strip() for line in coef_path.read_text().splitlines() if line.strip()
            ]

        logger.info(
            "load_exported_results",
            directory=str(directory),
            fit=results_frame is not None,
            shrinkage_methods=[m.value for m in shrunk],
            coefficients=coefficients,
        )

        return cls(results_frame, shrunk, coefficients, contrast)


def _read_table(path: Path) -> pl.DataFrame:
    return pl.read_csv(
        path,
        separator="\t",
        null_values=NULL_VALUES,
        infer_schema_length=10000,
    )
