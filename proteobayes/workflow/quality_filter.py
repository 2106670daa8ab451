from dataclasses import dataclass
from typing import Sequence

import numpy as np
import polars as pl

from proteobayes.utils.semantics import COL_INDEX, COL_N
from proteobayes.utils.utils import polars_matrix_to_numpy


@dataclass(frozen=True)
class QualityFilterResult:
    keep: np.ndarray               # bool per input row
    low_evidence: np.ndarray       # N <= min_peptides
    too_missing: np.ndarray        # missing fraction >= max_missing_fraction
    missing_fraction: np.ndarray

    @property
    def n_dropped(self) -> int:
        return int((~self.keep).sum())

    def reasons(self, index: Sequence[str]) -> pl.DataFrame:
        """Long table (INDEX, STAGE, REASON) of every dropped row and why."""
        rows = []
        for i, rid in enumerate(index):
            if self.low_evidence[i]:
                rows.append((str(rid), "quality_filter", "low_evidence"))
            if self.too_missing[i]:
                rows.append((str(rid), "quality_filter", "too_missing"))
        return pl.DataFrame(
            rows,
            schema={"INDEX": pl.Utf8, "STAGE": pl.Utf8, "REASON": pl.Utf8},
            orient="row",
        )


def quality_masks(
    n_children: np.ndarray,
    mat: np.ndarray,
    min_peptides: int = 3,
    max_missing_fraction: float = 0.5,
) -> QualityFilterResult:
    """
    Evaluate both row predicates independently on the same row set, so the
    outcome does not depend on the order they are applied in.
    """
    n_children = np.asarray(n_children)
    mat = np.asarray(mat, dtype=np.float64)
    if mat.shape[0] != n_children.shape[0]:
        raise ValueError("Child counts and matrix rows are not aligned.")

    if mat.shape[1] == 0:
        missing_fraction = np.ones(mat.shape[0])
    else:
        missing_fraction = np.isnan(mat).sum(axis=1) / mat.shape[1]

    low_evidence = n_children <= min_peptides
    too_missing = missing_fraction >= max_missing_fraction
    keep = ~(low_evidence | too_missing)
    return QualityFilterResult(keep, low_evidence, too_missing, missing_fraction)


def filter_proteins(
    df: pl.DataFrame,
    sample_cols: Sequence[str],
    min_peptides: int = 3,
    max_missing_fraction: float = 0.5,
    n_col: str = COL_N,
    index_col: str = COL_INDEX,
):
    """
    Apply the quality filter to a protein-level wide table.

    Returns:
        (kept_df, QualityFilterResult). The input frame is untouched.
    """
    mat = polars_matrix_to_numpy(df, sample_cols)
    result = quality_masks(
        df.get_column(n_col).to_numpy(),
        mat,
        min_peptides=min_peptides,
        max_missing_fraction=max_missing_fraction,
    )
    kept = df.filter(pl.Series(result.keep))
    return kept, result
