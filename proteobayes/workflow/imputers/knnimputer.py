import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin

from proteobayes.utils.errors import ImputationError


class PairwiseKNNImputer(BaseEstimator, TransformerMixin):
    """
    k-nearest-neighbor imputation over FEATURES (rows), pairwise-complete.

    Matrix shape: X is (n_features, n_samples)  [rows = proteins, cols = samples]

    For each row with at least one missing and one observed value:
      - Euclidean distance to every other row over the columns observed in BOTH
        rows; pairs sharing fewer than `min_overlap` columns are not candidates.
      - Keep the `n_neighbors` closest rows (ties broken by row order).
      - Each missing cell gets the mean of that column over the neighbors that
        have a value there.

    A cell with no informative neighbor raises ImputationError when
    on_failure="raise". With on_failure="drop" the row is left untouched and its
    index is listed in `failed_rows_`, so the caller can drop it.

    Attributes:
        n_neighbors (int): Number of neighbors to use.
        min_overlap (int): Minimum shared observed columns for a candidate pair.
        on_failure (str): "raise" or "drop".
    """

    def __init__(self, n_neighbors=10, min_overlap=1, on_failure="raise"):
        self.n_neighbors = n_neighbors
        self.min_overlap = min_overlap
        self.on_failure = on_failure

    def fit(self, X, y=None):
        X = np.asarray(X, dtype=np.float64)
        if self.on_failure not in ("raise", "drop"):
            raise ValueError(f"on_failure must be 'raise' or 'drop', got {self.on_failure!r}")
        if int(self.n_neighbors) < 1:
            raise ValueError("n_neighbors must be >= 1")
        self.n_features_, self.n_samples_ = X.shape
        return self

    def pairwise_distances(self, observed, filled, i):
        """
        Distances from row i to all rows (inf where not a candidate, incl. itself).

        observed is the non-NaN mask of the matrix and filled the matrix with NaN
        set to 0; both are built once per transform.
        """
        shared = observed & observed[i]                    # (n_features, n_samples)
        n_shared = shared.sum(axis=1)
        diff = np.where(shared, filled - filled[i], 0.0)
        dist = np.sqrt((diff ** 2).sum(axis=1))

        dist[n_shared < max(int(self.min_overlap), 1)] = np.inf
        dist[i] = np.inf
        return dist

    def transform(self, X):
        X = np.asarray(X, dtype=np.float64)
        if getattr(self, "n_features_", None) is None:
            # allow transform without a prior fit
            self.fit(X)

        n_features, n_samples = X.shape
        X_imputed = X.copy()
        nan_mask = np.isnan(X)
        observed = ~nan_mask
        filled = np.where(observed, X, 0.0)
        failed = []

        k = int(self.n_neighbors)
        for i in np.where(nan_mask.any(axis=1))[0]:
            if nan_mask[i].all():
                if self.on_failure == "raise":
                    raise ImputationError(int(i), -1, f"Row {i} has no observed value to compute distances from.")
                failed.append(int(i))
                continue

            dist = self.pairwise_distances(observed, filled, i)
            candidates = np.where(np.isfinite(dist))[0]
            # stable sort keeps row order among equal distances
            order = candidates[np.argsort(dist[candidates], kind="stable")]
            neighbors = order[:k]

            row_values = {}
            for j in np.where(nan_mask[i])[0]:
                vals = X[neighbors, j]
                vals = vals[~np.isnan(vals)]
                if vals.size == 0:
                    if self.on_failure == "raise":
                        raise ImputationError(int(i), int(j))
                    failed.append(int(i))
                    row_values = None
                    break
                row_values[j] = vals.mean()

            if row_values:
                for j, v in row_values.items():
                    X_imputed[i, j] = v

        self.failed_rows_ = np.array(sorted(set(failed)), dtype=int)
        return X_imputed

    def fit_transform(self, X, y=None):
        return self.fit(X, y).transform(X)
