"""Mean-variance trend decomposition and Hedges' g effect sizes."""

from typing import List, Tuple

import anndata as ad
import numpy as np
import pandas as pd
from skmisc.loess import loess

from proteobayes.analysis import adata_schema as K
from proteobayes.design.contrastbuilder import split_contrast_name
from proteobayes.utils.utils import log_info, log_time, log_warning

MIN_PROTEINS_FOR_TREND = 10


def variance_trend(mean: np.ndarray, var: np.ndarray, span: float = 0.75) -> Tuple[np.ndarray, bool]:
    """
    Loess trend of variance against mean, evaluated at every protein.

    Returns (trend, fitted); `fitted` is False when the median variance was used instead.
    """
    ok = np.isfinite(mean) & np.isfinite(var)
    trend = np.full(mean.shape, np.nan)
    fallback = float(np.median(var[ok])) if ok.any() else np.nan

    if ok.sum() < MIN_PROTEINS_FOR_TREND:
        trend[ok] = fallback
        return trend, False

    try:
        model = loess(mean[ok], var[ok], span=span, degree=2)
        model.fit()
        fitted = np.asarray(model.outputs.fitted_values, dtype=float)
    except ValueError:
        trend[ok] = fallback
        return trend, False

    if not np.all(np.isfinite(fitted)):
        trend[ok] = fallback
        return trend, False

    trend[ok] = fitted
    return trend, True


def decompose_variance(mat: np.ndarray, span: float = 0.75):
    """
    Split per-protein variance of a (proteins x samples) matrix into a technical
    part (the mean-variance trend) and a biological remainder (can be negative).
    """
    mean = np.nanmean(mat, axis=1)
    total = np.nanvar(mat, axis=1, ddof=1)
    tech, fitted = variance_trend(mean, total, span=span)
    bio = total - tech
    return pd.DataFrame({"MEAN": mean, "TOTAL_VAR": total, "TECH_VAR": tech, "BIO_VAR": bio}), fitted


def hedges_correction(n_total: int) -> float:
    """Small-sample factor J = 1 - 3 / (4 (nT + nC) - 9)."""
    denom = 4 * n_total - 9
    if denom <= 0:
        return np.nan
    return 1.0 - 3.0 / denom


def hedges_g(treatment: np.ndarray, control: np.ndarray) -> np.ndarray:
    """
    Per-row Hedges' g between two (proteins x replicates) blocks:
    g = J (mean_T - mean_C) / sqrt((s2_T + s2_C) / 2)
    """
    n_t, n_c = treatment.shape[1], control.shape[1]
    j = hedges_correction(n_t + n_c)
    with np.errstate(invalid="ignore", divide="ignore"):
        diff = np.nanmean(treatment, axis=1) - np.nanmean(control, axis=1)
        s2_t = np.nanvar(treatment, axis=1, ddof=1)
        s2_c = np.nanvar(control, axis=1, ddof=1)
        g = j * diff / np.sqrt((s2_t + s2_c) / 2.0)
    g[~np.isfinite(g)] = np.nan
    return g


def _contrast_levels(adata: ad.AnnData, conditions: np.ndarray) -> List[Tuple[str, str, str]]:
    """(name, treatment, control) per contrast; recorded pairs win over the name."""
    names: List[str] = list(adata.uns.get(K.UNS_CONTRAST_NAMES, []))
    recorded = adata.uns.get(K.UNS_CONTRAST_LEVELS, {}) or {}
    levels = sorted(set(conditions))
    out = []
    for name in names:
        if name in recorded:
            treat, ctrl = (str(x) for x in recorded[name])
        else:
            treat, ctrl = split_contrast_name(name, levels)
        out.append((name, treat, ctrl))
    return out


@log_time("Feature selection")
def run_feature_selection(adata: ad.AnnData, config: dict) -> ad.AnnData:
    """Annotate `adata` in place with variance components and per-contrast Hedges' g."""
    fs_cfg = ((config or {}).get("analysis", {}) or {}).get("feature_selection", {}) or {}
    span = float(fs_cfg.get("span", 0.75))
    threshold = float(fs_cfg.get("hedges_threshold", 0.5))

    warnings_ = list(adata.uns.get(K.UNS_WARNINGS, []))
    mat = np.asarray(adata.X, dtype=np.float64).T  # (G x N)

    comps, fitted = decompose_variance(mat, span=span)
    if not fitted:
        msg = "feature_selection: variance trend could not be fitted; using the median variance as technical variance."
        log_warning(msg)
        warnings_.append(msg)
    for col in comps.columns:
        adata.var[col] = comps[col].to_numpy()
    log_info(f"Proteins with positive biological variance: {int(np.sum(comps['BIO_VAR'] > 0))}/{len(comps)}")

    conditions = adata.obs["CONDITION"].astype(str).to_numpy()
    ids = adata.var_names.astype(str).tolist()

    g_cols, frames = [], []
    for name, treat, ctrl in _contrast_levels(adata, conditions):
        g = hedges_g(mat[:, conditions == treat], mat[:, conditions == ctrl])
        g_cols.append(g)
        frames.append(pd.DataFrame({
            "INDEX": ids,
            "CONTRAST": name,
            "HEDGES_G": g,
            "SELECTED": np.abs(np.nan_to_num(g, nan=0.0)) > threshold,
        }))
        log_info(f"{name}: {int(frames[-1]['SELECTED'].sum())} protein(s) with |g| > {threshold}")

    if g_cols:
        adata.varm[K.VARM_HEDGES_G] = np.column_stack(g_cols)
        table = pd.concat(frames, ignore_index=True)[K.FEATURE_SELECTION_COLUMNS]
    else:
        table = pd.DataFrame({
            "INDEX": pd.Series(dtype=str),
            "CONTRAST": pd.Series(dtype=str),
            "HEDGES_G": pd.Series(dtype=float),
            "SELECTED": pd.Series(dtype=bool),
        })

    adata.uns[K.UNS_FEATURE_SELECTION] = table
    adata.uns[K.UNS_WARNINGS] = warnings_
    return adata
