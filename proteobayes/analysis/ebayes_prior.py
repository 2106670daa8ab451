import numpy as np
from scipy.special import polygamma, digamma


def squeeze_var_input_filter(s2: np.ndarray, df) -> tuple[np.ndarray, np.ndarray]:
    """Keep the informative proteins: finite positive variance and positive df."""
    s2 = np.asarray(s2, dtype=float)
    # If df is scalar, broadcast it to shape of s2
    if np.isscalar(df) or np.ndim(df) == 0:
        df = np.full_like(s2, df)
    df = np.asarray(df, dtype=float)

    mask = np.isfinite(s2) & (s2 > 0) & np.isfinite(df) & (df > 0)
    return s2[mask], df[mask]


def trigamma_inverse(y: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """Solve trigamma(x) = y for x > 0."""
    if y > 1e7:
        return 1.0 / np.sqrt(y)
    if y < 1e-6:
        return 1.0 / y

    x = 0.5 + 1.0 / y
    for _ in range(max_iter):
        tri = polygamma(1, x)
        dif = tri * (1.0 - tri / y) / polygamma(2, x)
        x = x + dif
        if -dif / x < tol:
            break
    return float(x)


def fit_fdist(s2: np.ndarray, df1) -> tuple[float, float]:
    """
    Moment estimate of the scaled-F prior on protein variances.

    Returns (s20, d0). d0 is +inf when the moment equation for d0 has no
    positive solution (observed log-variance spread smaller than sampling
    noise), and NaN when fewer than two proteins are informative.
    """
    x, d = squeeze_var_input_filter(s2, df1)
    if x.size < 2:
        return np.nan, np.nan

    # Avoid zeros like limma does
    x = np.maximum(x, 1e-5 * np.median(x))
    z = np.log(x)

    e = z - digamma(d / 2.0) + np.log(d / 2.0)
    emean = np.mean(e)
    evar = np.sum((e - emean) ** 2) / (x.size - 1)
    evar_adj = evar - np.mean(polygamma(1, d / 2.0))

    if evar_adj > 0:
        d0 = 2 * trigamma_inverse(evar_adj)
        s20 = np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0))
    else:
        d0 = np.inf
        s20 = np.exp(emean)

    return float(s20), float(d0)
