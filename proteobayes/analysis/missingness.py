from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
import anndata as ad

from proteobayes.utils.semantics import LAYER_LOG2, LAYER_RAW


@dataclass(frozen=True)
class MissingnessResult:
    df: pd.DataFrame
    source: str
    rule: str


def _missingness_counts(intensity_matrix_GxN: np.ndarray, conditions: list[str]) -> dict[str, np.ndarray]:
    cond_arr = np.asarray(conditions, dtype=str)
    out: dict[str, np.ndarray] = {}
    for cond in np.unique(cond_arr):
        sub = intensity_matrix_GxN[:, cond_arr == cond]
        out[str(cond)] = np.isnan(sub).sum(axis=1)
    return out


def compute_missingness(adata: ad.AnnData) -> MissingnessResult:
    """
    Per-protein, per-condition count of absent entries before imputation.

    Source: layers['log2'] if present, else layers['raw'], else adata.X.
    """
    if LAYER_LOG2 in adata.layers:
        mat = np.asarray(adata.layers[LAYER_LOG2]).T  # (G x N)
        source = LAYER_LOG2
    elif LAYER_RAW in adata.layers:
        mat = np.asarray(adata.layers[LAYER_RAW]).T
        source = LAYER_RAW
    else:
        mat = np.asarray(adata.X).T
        source = "X"

    counts = _missingness_counts(mat, adata.obs["CONDITION"].astype(str).tolist())
    df = pd.DataFrame(counts, index=adata.var_names.tolist())
    return MissingnessResult(df=df, source=source, rule="nan-is-missing")
