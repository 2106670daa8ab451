import numpy as np
from scipy.stats import t as t_dist
from proteobayes.utils.utils import log_time, log_warning
from proteobayes.analysis.ebayes_prior import fit_fdist
from proteobayes.analysis.stats_ops import bh_qvalues


class EbayesModerator:
    def __init__(self, sigma2, df_residual):
        """
        Parameters:
        - sigma2: (n_proteins,) vector of residual variances (NaN when df is 0)
        - df_residual: scalar or array of degrees of freedom (per protein)
        """
        self.sigma2 = np.asarray(sigma2, dtype=float)
        df = np.asarray(df_residual, dtype=float)
        self.df_residual = np.broadcast_to(df, self.sigma2.shape).astype(float)
        self.d0 = None
        self.s02 = None
        self.df_total = None
        self.s2_post = None
        self.warnings = []

    def fit(self):
        """
        Estimate prior variance s0² and prior df d0 from the informative proteins.
        Falls back to d0 = 0 (no moderation) when no positive d0 exists.
        """
        s20, d0 = fit_fdist(self.sigma2, self.df_residual)

        if not np.isfinite(d0) or d0 <= 0:
            if np.isnan(d0):
                reason = "fewer than two proteins with residual degrees of freedom"
            else:
                reason = "variance spread is not larger than sampling noise"
            msg = f"prior degrees of freedom could not be estimated ({reason}); using d0 = 0 (no moderation)."
            log_warning(msg)
            self.warnings.append(msg)
            d0 = 0.0
            if not np.isfinite(s20):
                ok = np.isfinite(self.sigma2) & (self.sigma2 > 0)
                s20 = float(np.median(self.sigma2[ok])) if ok.any() else np.nan

        self.d0 = float(d0)
        self.s02 = float(s20)
        return self.d0, self.s02

    def moderate(self):
        """
        Returns:
        - moderated variances
        - total degrees of freedom (dg + d0), capped at the pooled residual df
        """
        if self.d0 is None:
            self.fit()

        d = self.df_residual
        d0 = self.d0
        weighted_s2 = np.where(d > 0, d * np.nan_to_num(self.sigma2, nan=0.0), 0.0)

        denom = d0 + d
        with np.errstate(invalid="ignore", divide="ignore"):
            if d0 > 0:
                s2_post = (d0 * self.s02 + weighted_s2) / denom
            else:
                s2_post = np.where(d > 0, self.sigma2, np.nan)

        df_total = np.minimum(denom, np.sum(d))

        self.s2_post = s2_post
        self.df_total = df_total
        return s2_post, df_total

    @log_time("EBayes Computation")
    def apply_to_contrasts(self, log2fc, unscaled_var):
        """
        Recalculate se, t, p, q using moderated variances

        Parameters:
        - log2fc: (n_proteins x n_contrasts)
        - unscaled_var: (n_proteins x n_contrasts) c^T (X'X)^-1 c per protein

        Returns:
        - dict: se, t, p, q (each of shape n_proteins x n_contrasts)
        """
        s2_post, df_total = self.moderate()

        with np.errstate(invalid="ignore", divide="ignore"):
            se = np.sqrt(s2_post[:, None] * unscaled_var)
            t_stat = log2fc / se
            p_val = 2 * t_dist.sf(np.abs(t_stat), df=df_total[:, None])

        # proteins without residual df carry no information of their own, even if
        # the prior gives them a finite posterior variance
        informative = (self.df_residual[:, None] > 0) & (df_total[:, None] > 0)
        p_val = np.where(informative & np.isfinite(p_val), p_val, 1.0)
        q_val = bh_qvalues(p_val)

        return {
            "se_ebayes": se,
            "t_ebayes": t_stat,
            "p_ebayes": p_val,
            "q_ebayes": q_val,
        }
