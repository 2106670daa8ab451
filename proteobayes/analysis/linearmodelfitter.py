import numpy as np
from proteobayes.utils.errors import DesignError
from proteobayes.utils.utils import log_time


class LinearModelFitter:
    def __init__(self, expression: np.ndarray, design_matrix: np.ndarray):
        """
        Parameters:
        - expression: (n_samples x n_proteins) matrix (adata.X or a layer)
        - design_matrix: (n_samples x n_covariates) matrix from DesignMatrixBuilder
        """
        self.Y = np.asarray(expression, dtype=np.float64)
        self.X = np.asarray(design_matrix, dtype=np.float64)
        if self.Y.shape[0] != self.X.shape[0]:
            raise DesignError(
                f"Expression has {self.Y.shape[0]} samples but design has {self.X.shape[0]} rows."
            )
        rank = np.linalg.matrix_rank(self.X)
        if rank < self.X.shape[1]:
            raise DesignError(f"Design matrix is singular (rank {rank} < {self.X.shape[1]} columns).")

        self.coefficients = None
        self.residuals = None
        self.residual_variance = None
        self.df_residual = None
        self.xtx_inv = None  # (X^T X)^(-1)
        self.xtx_inv_per_feature = None

    @log_time("Linear Regressions")
    def fit(self):
        """
        Fits OLS for all proteins simultaneously.
        Vectorized across proteins when the matrix is complete; proteins with
        missing values are refit on their observed samples only.
        """
        X = self.X
        Y = self.Y  # shape: (n_samples x n_proteins)
        n, p = X.shape
        n_prot = Y.shape[1]

        self.xtx_inv = np.linalg.inv(X.T @ X)

        if np.isfinite(Y).all():
            betas = self.xtx_inv @ X.T @ Y  # shape: (n_covariates x n_proteins)
            self.coefficients = betas.T     # shape: (n_proteins x n_covariates)

            resid = Y - X @ betas
            self.residuals = resid.T        # shape: (n_proteins x n_samples)

            df = n - p
            self.df_residual = np.full(n_prot, float(df))
            rss = np.sum(resid**2, axis=0)
            self.residual_variance = rss / df if df > 0 else np.full(n_prot, np.nan)
            return self

        self._fit_masked()
        return self

    def _fit_masked(self):
        X, Y = self.X, self.Y
        n, p = X.shape
        n_prot = Y.shape[1]

        coefs = np.full((n_prot, p), np.nan)
        resid = np.full((n_prot, n), np.nan)
        sigma2 = np.full(n_prot, np.nan)
        df_res = np.zeros(n_prot)
        xtx_inv_g = np.full((n_prot, p, p), np.nan)

        for g in range(n_prot):
            obs = np.isfinite(Y[:, g])
            Xg = X[obs]
            # a condition without any observation leaves its coefficient non-estimable
            if Xg.shape[0] < p or np.linalg.matrix_rank(Xg) < p:
                continue
            inv = np.linalg.inv(Xg.T @ Xg)
            beta = inv @ Xg.T @ Y[obs, g]
            r = Y[obs, g] - Xg @ beta
            df = Xg.shape[0] - p

            coefs[g] = beta
            resid[g, obs] = r
            xtx_inv_g[g] = inv
            df_res[g] = df
            if df > 0:
                sigma2[g] = float(r @ r) / df

        self.coefficients = coefs
        self.residuals = resid
        self.residual_variance = sigma2
        self.df_residual = df_res
        self.xtx_inv_per_feature = xtx_inv_g

    def get_results(self) -> dict:
        """
        Returns a dictionary of results.
        """
        return {
            "coefficients": self.coefficients,
            "residuals": self.residuals,
            "residual_variance": self.residual_variance,
            "df_residual": self.df_residual,
            "xtx_inv": self.xtx_inv,
            "xtx_inv_per_feature": self.xtx_inv_per_feature,
        }
