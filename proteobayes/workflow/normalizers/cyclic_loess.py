from itertools import combinations
from typing import Optional, Tuple, Union

import numpy as np
from statsmodels.nonparametric.smoothers_lowess import lowess

MODES = ("fast", "pairs", "average")
FAST_SUBSAMPLE = 0.5
MIN_FIT_POINTS = 50


def _subsample_index(idx: np.ndarray, subsample: Optional[Union[int, float]], rng) -> np.ndarray:
    """Rows used to fit a curve: all of them, a fraction (<= 1) or a count (> 1)."""
    if subsample is None:
        return idx
    n_fit = int(round(subsample * idx.size)) if subsample <= 1 else int(subsample)
    # small matrices are always fitted on every point
    n_fit = max(n_fit, MIN_FIT_POINTS)
    if n_fit >= idx.size:
        return idx
    return np.sort(rng.choice(idx, size=n_fit, replace=False))


def lowess_curve(
    x: np.ndarray,
    y: np.ndarray,
    span: float = 0.7,
    robust_iterations: int = 3,
    subsample: Optional[Union[int, float]] = None,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Fit LOWESS y ~ x on the finite points (optionally a subsample of them) and
    evaluate the curve at every finite x by linear interpolation.

    Returns an array like x, 0 where x or y is absent or no fit was possible.
    """
    rng = rng if rng is not None else np.random.default_rng(42)
    curve = np.zeros(x.shape[0], dtype=np.float64)

    finite = np.isfinite(x) & np.isfinite(y)
    idx = _subsample_index(np.where(finite)[0], subsample, rng)
    if idx.size < 3:
        return curve

    fitted = lowess(y[idx], x[idx], frac=span, it=robust_iterations, return_sorted=True)
    ok = np.isfinite(fitted[:, 1])
    if not ok.any():
        return curve

    curve[finite] = np.interp(x[finite], fitted[ok, 0], fitted[ok, 1])
    return curve


def cyclic_loess_normalization(
    mat: np.ndarray,
    mode: str = "fast",
    span: float = 0.7,
    iterations: int = 3,
    subsample: Optional[Union[int, float]] = None,
    tol: float = 1e-4,
    robust_iterations: int = 3,
    random_state: Optional[int] = 42,
) -> Tuple[np.ndarray, dict]:
    """
    Cyclic loess normalization of a (proteins x samples) log2 matrix.

    Parameters:
        mat (np.ndarray): 2D array (proteins x samples). NaNs are not used in fits
            and stay NaN.
        mode (str): "pairs" fits M vs A for every pair of samples on all points
            and splits the curve between both; "fast" does the same pairwise
            cycle on a subsample of points (FAST_SUBSAMPLE unless `subsample` is
            given); "average" fits each sample against the row average.
        span (float): LOWESS smoothing fraction.
        iterations (int): Maximum number of full cycles over samples/pairs.
        subsample (int|float|None): Points used per fit (fraction <= 1 or count).
            Fits never use fewer than MIN_FIT_POINTS points.
        tol (float): Stop when the largest adjustment of a cycle is below this.
        robust_iterations (int): LOWESS robustifying iterations.
        random_state (int|None): Seed for subsampling.

    Returns:
        Tuple[np.ndarray, dict]: Normalized matrix (new array) and run info
        ({"cycles": int, "max_adjustment": float, "converged": bool, "subsample": ...}).
    """
    if mode not in MODES:
        raise ValueError(f"Invalid cyclic loess mode '{mode}'. Choose one of {', '.join(MODES)}.")
    if subsample is None and mode == "fast":
        subsample = FAST_SUBSAMPLE

    out = np.array(mat, dtype=np.float64, copy=True)
    n_samples = out.shape[1]
    rng = np.random.default_rng(random_state)
    info = {"cycles": 0, "max_adjustment": 0.0, "converged": False, "subsample": subsample}
    if n_samples < 2:
        info["converged"] = True
        return out, info

    for cycle in range(int(iterations)):
        max_adj = 0.0

        if mode == "average":
            with np.errstate(invalid="ignore"):
                average = np.nanmean(out, axis=1)
            adjustments = np.zeros_like(out)
            for j in range(n_samples):
                adjustments[:, j] = lowess_curve(
                    average, out[:, j] - average, span, robust_iterations, subsample, rng
                )
            out -= adjustments
            max_adj = float(np.nanmax(np.abs(adjustments)))
        else:
            for j, k in combinations(range(n_samples), 2):
                m = out[:, j] - out[:, k]
                a = (out[:, j] + out[:, k]) / 2.0
                f = lowess_curve(a, m, span, robust_iterations, subsample, rng)
                out[:, j] -= f / 2.0
                out[:, k] += f / 2.0
                max_adj = max(max_adj, float(np.max(np.abs(f))) / 2.0)

        info["cycles"] = cycle + 1
        info["max_adjustment"] = max_adj
        if max_adj < tol:
            info["converged"] = True
            break

    return out, info


def median_normalization(mat: np.ndarray) -> np.ndarray:
    """Shift each sample so its median matches the global median (log space)."""
    col_meds = np.nanmedian(mat, axis=0, keepdims=True)
    return mat - col_meds + np.nanmedian(mat)
