from typing import Any, Optional


def get_imputer(**kwargs) -> Optional[Any]:
    """
    Returns an imputer instance based on the given method, or None for "none".

    Valid methods:
        - "knn": PairwiseKNNImputer (pairwise-complete distances between proteins).
        - "mindet": MinDetImputer (left-censored, per-sample detection limit).
        - "none": no imputation; downstream fits run per protein on observed values.

    All imputers take (n_proteins, n_samples) matrices.
    """
    method = kwargs.pop("method", "knn")

    if method == "knn":
        from proteobayes.workflow.imputers.knnimputer import PairwiseKNNImputer
        return PairwiseKNNImputer(
            n_neighbors=kwargs.get("knn_k", 10),
            min_overlap=kwargs.get("min_overlap", 1),
            on_failure=kwargs.get("on_failure", "raise"),
        )
    elif method == "mindet":
        from proteobayes.workflow.imputers.min_imputers import MinDetImputer
        return MinDetImputer(
            quantile=kwargs.get("lc_quantile", 0.01),
            shift=kwargs.get("lc_shift", 0.2),
        )
    elif method in (None, "none"):
        return None
    else:
        raise ValueError(f"Invalid imputation method: {method}.\n"
                         "Options: knn, mindet, none")
