from __future__ import annotations

import numpy as np
from scipy.stats import t as t_dist
from statsmodels.stats.multitest import multipletests


def raw_stats_from_fit(
    *,
    coefs: np.ndarray,
    unscaled_var: np.ndarray,
    sigma2: np.ndarray,
    df_res: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Ordinary (unmoderated) statistics:
      se = sqrt(unscaled_var * sigma2[:, None])
      t  = coefs / se
      p  = 2 * t.sf(|t|, df=df_res[:, None]), 1 where df_res is 0
    """
    with np.errstate(invalid="ignore", divide="ignore"):
        se = np.sqrt(unscaled_var * sigma2[:, None])
        t = coefs / se
        p = 2 * t_dist.sf(np.abs(t), df=df_res[:, None])
    p = np.where((df_res[:, None] > 0) & np.isfinite(p), p, 1.0)
    return se, t, p


def bh_qvalues(p: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg q-values, applied per contrast/column."""
    if p.ndim != 2:
        raise ValueError(f"Expected 2D p-value array (n_features x n_contrasts), got shape {p.shape}")
    if p.shape[0] == 0:
        return p.copy()
    q = np.vstack([multipletests(p[:, j], method="fdr_bh")[1] for j in range(p.shape[1])]).T
    return q
