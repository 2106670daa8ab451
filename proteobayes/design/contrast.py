import numpy as np
from proteobayes.utils.utils import log_time


@log_time("Apply Contrasts")
def apply_contrasts(fit_results: dict, contrast_matrix: np.ndarray):
    """
    Applies contrast matrix to fitted model results.

    Parameters:
    - fit_results: output of LinearModelFitter.get_results()
    - contrast_matrix: shape (p x m) -> p = design coefficients, m = contrasts

    Returns:
    - beta_contrasts: (n_proteins x m) log2FC, c^T alpha per protein
    - unscaled_var: (n_proteins x m) c^T (X'X)^-1 c per protein
    """
    B = fit_results["coefficients"]                 # (n_proteins x p)
    C = np.asarray(contrast_matrix, dtype=float)    # (p x m)

    beta_contrasts = B @ C

    per_feature = fit_results.get("xtx_inv_per_feature")
    if per_feature is None:
        XtX_inv = fit_results["xtx_inv"]            # (p x p), same for all
        v = np.einsum("pm,pq,qm->m", C, XtX_inv, C)
        unscaled_var = np.broadcast_to(v, beta_contrasts.shape).copy()
    else:
        # (n_proteins x p x p), NaN for non-estimable proteins
        unscaled_var = np.einsum("pm,gpq,qm->gm", C, per_feature, C)

    return beta_contrasts, unscaled_var
