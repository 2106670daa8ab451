"""Tests for the reference comparison."""

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from proteobayes.analysis.limma_pipeline import run_limma_pipeline
from proteobayes.analysis.reference import compare_results, load_reference, run_reference_comparison
from proteobayes.utils.errors import SchemaError


@pytest.fixture
def reference_file(tmp_path, five_group_matrix):
    mat, obs, ids = five_group_matrix
    rng = np.random.default_rng(99)
    linear = 2 ** (mat + rng.normal(0, 0.05, size=mat.shape))
    df = pd.DataFrame(linear, columns=obs.index)
    df.insert(0, "Protein", ids)
    path = tmp_path / "reference.tsv"
    df.to_csv(path, sep="\t", index=False)
    return path


class TestLoadReference:
    def test_loads_and_log_transforms(self, reference_file, five_group_matrix):
        mat, obs, ids = five_group_matrix
        ref, ref_ids, ref_obs = load_reference({
            "matrix_file": str(reference_file), "index_column": "Protein", "log_transform": True,
        })
        assert ref.shape == (20, 15)
        assert ref_ids == ids
        assert list(ref_obs["CONDITION"]) == list(obs["CONDITION"])
        np.testing.assert_allclose(ref, mat, atol=0.3)

    def test_missing_index_column(self, reference_file):
        with pytest.raises(SchemaError):
            load_reference({"matrix_file": str(reference_file), "index_column": "Gene"})


class TestCompareResults:
    def test_summary(self):
        pipeline = pd.DataFrame({
            "INDEX": ["a", "b", "c", "d"],
            "CONTRAST": "B_vs_A",
            "LOG2FC": [1.0, 2.0, 3.0, 4.0],
            "SIGNIFICANT": [True, True, False, False],
        })
        reference = pd.DataFrame({
            "INDEX": ["b", "c", "d", "e"],
            "CONTRAST": "B_vs_A",
            "LOG2FC": [2.1, 2.9, 4.2, 0.0],
            "SIGNIFICANT": [True, False, True, False],
        })
        summary = compare_results(pipeline, reference)
        row = summary.iloc[0]
        assert row["CONTRAST"] == "B_vs_A"
        assert row["N_SHARED"] == 3
        assert row["PEARSON_R"] > 0.95
        assert row["N_SIG_PIPELINE"] == 1
        assert row["N_SIG_REFERENCE"] == 2
        assert row["N_SIG_BOTH"] == 1

    def test_disjoint_contrasts_are_skipped(self):
        a = pd.DataFrame({"INDEX": ["a"], "CONTRAST": "X_vs_Y", "LOG2FC": [1.0], "SIGNIFICANT": [False]})
        b = pd.DataFrame({"INDEX": ["a"], "CONTRAST": "Z_vs_Y", "LOG2FC": [1.0], "SIGNIFICANT": [False]})
        assert compare_results(a, b).empty


class TestRunReferenceComparison:
    def test_results_tagged_and_correlated(self, reference_file, five_group_matrix):
        mat, obs, ids = five_group_matrix
        config = {"analysis": {
            "reference_condition": "Control",
            "reference": {"matrix_file": str(reference_file), "index_column": "Protein", "log_transform": True},
        }}
        adata = ad.AnnData(X=mat.T.copy(), obs=obs.copy(), var=pd.DataFrame(index=ids))
        adata = run_limma_pipeline(adata, config)
        adata = run_reference_comparison(adata, config)

        ref = adata.uns["reference"]
        assert (ref["results"]["METHOD"] == "reference").all()
        summary = ref["comparison"].set_index("CONTRAST")
        assert summary.loc["Ampicillin_vs_Control", "N_SHARED"] == 20
        assert summary.loc["Ampicillin_vs_Control", "PEARSON_R"] > 0.9

    def test_no_reference_configured_is_a_no_op(self, five_group_matrix):
        mat, obs, ids = five_group_matrix
        adata = ad.AnnData(X=mat.T.copy(), obs=obs.copy(), var=pd.DataFrame(index=ids))
        out = run_reference_comparison(adata, {"analysis": {}})
        assert "reference" not in out.uns
