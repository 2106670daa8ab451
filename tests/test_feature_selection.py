"""Tests for variance decomposition and Hedges' g."""

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from proteobayes.analysis.limma_pipeline import run_limma_pipeline
from proteobayes.analysis.variance_decomposition import (
    decompose_variance,
    hedges_correction,
    hedges_g,
    run_feature_selection,
    variance_trend,
)


class TestHedgesG:
    def test_correction_factor(self):
        assert hedges_correction(6) == pytest.approx(1 - 3 / 15)
        assert hedges_correction(10) == pytest.approx(1 - 3 / 31)
        assert np.isnan(hedges_correction(2))

    def test_known_value(self):
        treatment = np.array([[4.0, 5.0, 6.0]])
        control = np.array([[1.0, 2.0, 3.0]])
        # mean difference 3, both variances 1
        g = hedges_g(treatment, control)
        assert g[0] == pytest.approx((1 - 3 / 15) * 3.0)

    def test_sign_follows_contrast(self):
        a = np.array([[1.0, 2.0, 3.0]])
        b = np.array([[4.0, 5.0, 6.0]])
        assert hedges_g(a, b)[0] < 0

    def test_constant_rows_give_nan(self):
        g = hedges_g(np.ones((1, 3)), np.ones((1, 3)))
        assert np.isnan(g[0])


class TestVarianceDecomposition:
    def test_components_add_up(self):
        rng = np.random.default_rng(0)
        means = rng.uniform(18, 30, size=200)
        sd = 0.1 + 0.02 * (30 - means)
        mat = means[:, None] + rng.normal(size=(200, 6)) * sd[:, None]

        comps, fitted = decompose_variance(mat)
        np.testing.assert_allclose(comps["TOTAL_VAR"], comps["TECH_VAR"] + comps["BIO_VAR"])
        np.testing.assert_allclose(comps["MEAN"], mat.mean(axis=1))
        assert fitted

    def test_trend_follows_mean_variance_relation(self):
        rng = np.random.default_rng(1)
        means = np.sort(rng.uniform(18, 30, size=300))
        sd = 0.1 + 0.05 * (30 - means)
        mat = means[:, None] + rng.normal(size=(300, 8)) * sd[:, None]
        comps, fitted = decompose_variance(mat)
        assert fitted
        low, high = comps["TECH_VAR"].iloc[:50].mean(), comps["TECH_VAR"].iloc[-50:].mean()
        assert low > high

    def test_few_proteins_fall_back_to_median(self):
        mean = np.arange(5, dtype=float)
        var = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        trend, fitted = variance_trend(mean, var)
        assert not fitted
        np.testing.assert_allclose(trend, 3.0)


class TestRunFeatureSelection:
    def test_annotates_adata(self, five_group_matrix):
        mat, obs, ids = five_group_matrix
        adata = ad.AnnData(X=mat.T.copy(), obs=obs.copy(), var=pd.DataFrame(index=ids))
        adata.uns["contrast_names"] = ["Ampicillin_vs_Control", "Kanamycin_vs_Control"]

        out = run_feature_selection(adata, {"analysis": {"feature_selection": {"hedges_threshold": 0.5}}})

        for col in ("MEAN", "TOTAL_VAR", "TECH_VAR", "BIO_VAR"):
            assert col in out.var.columns
        table = out.uns["feature_selection"]
        assert list(table.columns) == ["INDEX", "CONTRAST", "HEDGES_G", "SELECTED"]
        assert len(table) == 40
        amp = table[table["CONTRAST"] == "Ampicillin_vs_Control"].set_index("INDEX")
        assert amp.loc[["PROT00", "PROT01", "PROT02"], "SELECTED"].all()
        assert out.varm["hedges_g"].shape == (20, 2)

    def test_no_contrasts_gives_empty_table(self, five_group_matrix):
        mat, obs, ids = five_group_matrix
        adata = ad.AnnData(X=mat.T.copy(), obs=obs.copy(), var=pd.DataFrame(index=ids))
        out = run_feature_selection(adata, {})
        assert out.uns["feature_selection"].empty
        assert "hedges_g" not in out.varm

    def test_condition_containing_separator(self):
        rng = np.random.default_rng(3)
        mat = rng.normal(20, 0.1, size=(30, 6))
        mat[0, 3:] += 2.0
        obs = pd.DataFrame(
            {"CONDITION": ["Ctrl"] * 3 + ["Drug_vs_Ctrl"] * 3},
            index=[f"s{i}" for i in range(6)],
        )
        ids = [f"PROT{i:02d}" for i in range(30)]
        adata = ad.AnnData(X=mat.T.copy(), obs=obs, var=pd.DataFrame(index=ids))
        adata = run_limma_pipeline(adata, {"analysis": {"reference_condition": "Ctrl"}})
        assert adata.uns["contrast_levels"] == {"Drug_vs_Ctrl_vs_Ctrl": ["Drug_vs_Ctrl", "Ctrl"]}

        out = run_feature_selection(adata, {})
        table = out.uns["feature_selection"].set_index("INDEX")
        assert table.loc["PROT00", "HEDGES_G"] > 5
        assert table.loc["PROT00", "SELECTED"]

        # without recorded pairs the name is resolved against the conditions
        del adata.uns["contrast_levels"]
        again = run_feature_selection(adata, {})
        np.testing.assert_allclose(
            again.uns["feature_selection"]["HEDGES_G"], out.uns["feature_selection"]["HEDGES_G"]
        )
