import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin


class MinDetImputer(BaseEstimator, TransformerMixin):
    """
    Deterministic left-censored imputation (MinDet).

    Every missing cell of a sample takes that sample's low-tail quantile minus a
    fixed shift, i.e. "below detection". Assumes log2 values,
    X shape = (n_features, n_samples).
    """

    def __init__(self, quantile=0.01, shift=0.2):
        """
        Args:
            quantile (float): Low-tail quantile per sample used as detection limit.
            shift (float): Subtracted from the detection limit (log2 units).
        """
        self.quantile = quantile
        self.shift = shift

    def fit(self, X, y=None):
        X = np.asarray(X, dtype=np.float64)
        observed = ~np.isnan(X)
        if not observed.any():
            raise ValueError("MinDet imputation needs at least one observed value.")

        lod = np.full(X.shape[1], np.nanmin(X), dtype=np.float64)
        has_val = observed.any(axis=0)
        if has_val.any():
            lod[has_val] = np.nanquantile(X[:, has_val], float(self.quantile), axis=0)
        self.sample_fill_ = lod - float(self.shift)
        self.failed_rows_ = np.array([], dtype=int)
        return self

    def transform(self, X):
        X = np.asarray(X, dtype=np.float64)
        rows, cols = np.where(np.isnan(X))
        X_imp = X.copy()
        X_imp[rows, cols] = self.sample_fill_[cols]
        return X_imp

    def fit_transform(self, X, y=None):
        return self.fit(X).transform(X)
