"""Tests for imputers."""

import numpy as np
import pytest

from proteobayes.utils.errors import ImputationError
from proteobayes.workflow.imputer_factory import get_imputer
from proteobayes.workflow.imputers.knnimputer import PairwiseKNNImputer
from proteobayes.workflow.imputers.min_imputers import MinDetImputer


class TestPairwiseKNNImputer:
    """Tests for pairwise-complete kNN imputation over proteins."""

    def test_dense_matrix_is_a_no_op(self):
        rng = np.random.default_rng(0)
        X = rng.normal(25, 2, size=(30, 8))
        out = PairwiseKNNImputer(n_neighbors=5).fit_transform(X)
        assert np.array_equal(out, X)
        assert out is not X

    def test_fills_with_neighbor_mean(self):
        X = np.array([
            [1.0, 2.0, np.nan],
            [1.1, 2.1, 10.0],
            [0.9, 1.9, 12.0],
            [9.0, 9.0, 100.0],
        ])
        out = PairwiseKNNImputer(n_neighbors=2).fit_transform(X)
        assert out[0, 2] == pytest.approx(11.0)
        # observed cells untouched
        np.testing.assert_array_equal(out[1:], X[1:])

    def test_ties_broken_by_row_order(self):
        X = np.array([
            [0.0, np.nan],
            [1.0, 5.0],
            [-1.0, 7.0],
        ])
        out = PairwiseKNNImputer(n_neighbors=1).fit_transform(X)
        assert out[0, 1] == 5.0

    def test_distance_uses_shared_columns_only(self):
        X = np.array([
            [1.0, np.nan, 3.0],
            [1.0, 100.0, np.nan],
        ])
        observed = ~np.isnan(X)
        dist = PairwiseKNNImputer().pairwise_distances(observed, np.where(observed, X, 0.0), 0)
        assert dist[1] == 0.0
        assert np.isinf(dist[0])

    def test_shared_masks_match_per_row_distances(self):
        rng = np.random.default_rng(4)
        X = rng.normal(size=(30, 6))
        X[rng.uniform(size=X.shape) < 0.2] = np.nan
        observed = ~np.isnan(X)
        filled = np.where(observed, X, 0.0)
        imputer = PairwiseKNNImputer()
        for i in (0, 7, 29):
            dist = imputer.pairwise_distances(observed, filled, i)
            for r in range(30):
                both = observed[i] & observed[r]
                if r == i or not both.any():
                    assert np.isinf(dist[r])
                else:
                    assert dist[r] == pytest.approx(np.sqrt(np.sum((X[i, both] - X[r, both]) ** 2)))

    def test_no_informative_neighbor_raises(self):
        X = np.array([
            [1.0, np.nan],
            [1.0, np.nan],
            [2.0, np.nan],
        ])
        with pytest.raises(ImputationError) as exc:
            PairwiseKNNImputer(n_neighbors=2).fit_transform(X)
        assert exc.value.column == 1

    def test_drop_policy_reports_failed_rows(self):
        X = np.array([
            [1.0, 2.0, np.nan],
            [1.0, 2.0, np.nan],
            [5.0, 6.0, 7.0],
            [np.nan, np.nan, np.nan],
        ])
        imp = PairwiseKNNImputer(n_neighbors=1, on_failure="drop")
        out = imp.fit_transform(X)
        # rows 0 and 1 are each other's nearest neighbor, both missing column 2
        assert imp.failed_rows_.tolist() == [0, 1, 3]
        assert np.isnan(out[0, 2])

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            PairwiseKNNImputer(on_failure="zero").fit(np.ones((2, 2)))


class TestMinDetImputer:
    def test_fills_below_detection_limit(self):
        X = np.array([
            [10.0, 11.0],
            [12.0, np.nan],
            [14.0, 15.0],
        ])
        imp = MinDetImputer(quantile=0.0, shift=0.5)
        out = imp.fit_transform(X)
        assert out[1, 1] == pytest.approx(10.5)
        assert imp.failed_rows_.size == 0


class TestImputerFactory:
    def test_methods(self):
        assert isinstance(get_imputer(method="knn", knn_k=3), PairwiseKNNImputer)
        assert isinstance(get_imputer(method="mindet"), MinDetImputer)
        assert get_imputer(method="none") is None

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            get_imputer(method="magic")
