"""Tests for evidence loading, harmonization and the protein-level AnnData."""

import numpy as np
import pandas as pd
import polars as pl
import pytest

from proteobayes.dataset.layers import add_layer
from proteobayes.design.designmatrixbuilder import DesignMatrixBuilder
from proteobayes.utils.errors import EmptyResultError, SchemaError
from proteobayes.utils.harmonizer import DataHarmonizer, sanitize_condition
from proteobayes.workflow.dataset import Dataset, load_table


class TestHarmonizer:
    """Tests for column renaming and sample annotation."""

    def test_missing_columns_are_all_listed(self, evidence_df):
        df = pl.from_pandas(evidence_df.drop(columns=["Intensity", "Charge"]))
        with pytest.raises(SchemaError) as exc:
            DataHarmonizer({}).harmonize(df)
        assert "Intensity" in str(exc.value)
        assert "Charge" in str(exc.value)

    def test_renames_to_canonical_columns(self, evidence_df):
        out = DataHarmonizer({}).harmonize(pl.from_pandas(evidence_df))
        assert out.columns == [
            "CHARGE", "PEPTIDE_SEQ", "MODIFIED_SEQUENCE", "PROTEIN_GROUP", "INDEX",
            "FILENAME", "REVERSE", "CONTAMINANT", "SIGNAL",
        ]
        assert out.schema["SIGNAL"] == pl.Float64

    def test_custom_column_names(self, evidence_df):
        df = pl.from_pandas(evidence_df.rename(columns={"Intensity": "Abundance"}))
        out = DataHarmonizer({"signal_column": "Abundance"}).harmonize(df)
        assert "SIGNAL" in out.columns

    def test_labels_parsed_with_default_pattern(self):
        ann = DataHarmonizer({}).sample_annotation(["Control_1", "Control_2", "Amp-1"])
        assert ann.get_column("CONDITION").to_list() == ["Control", "Control", "Amp"]
        assert ann.get_column("REPLICATE").to_list() == [1, 2, 1]

    def test_unparseable_label_raises(self):
        with pytest.raises(SchemaError):
            DataHarmonizer({}).sample_annotation(["Control_1", "nolabel"])

    def test_annotation_file(self, tmp_path):
        path = tmp_path / "annotation.tsv"
        pd.DataFrame({"Experiment": ["s1", "s2", "s3"], "Condition": ["A", "A", "B"]}).to_csv(
            path, sep="\t", index=False
        )
        ann = DataHarmonizer({"annotation_file": str(path)}).sample_annotation(["s1", "s2", "s3"])
        assert ann.get_column("CONDITION").to_list() == ["A", "A", "B"]
        # replicates filled by order within condition
        assert ann.get_column("REPLICATE").to_list() == [1, 2, 1]

    def test_annotation_missing_sample_raises(self, tmp_path):
        path = tmp_path / "annotation.tsv"
        pd.DataFrame({"Experiment": ["s1"], "Condition": ["A"]}).to_csv(path, sep="\t", index=False)
        with pytest.raises(SchemaError):
            DataHarmonizer({"annotation_file": str(path)}).sample_annotation(["s1", "s2"])

    def test_sanitize_condition(self):
        assert sanitize_condition("Amp 10 uM") == "Amp_10_uM"
        assert sanitize_condition("10mM") == "C_10mM"
        assert sanitize_condition("") == "C_UNLABELED"


class TestLoadTable:
    def test_unsupported_extension(self, tmp_path):
        with pytest.raises(ValueError):
            load_table(str(tmp_path / "data.xlsx"))

    @pytest.mark.parametrize("method", ["polars", "pandas", "pyarrow"])
    def test_load_methods_agree(self, evidence_file, method):
        df = load_table(str(evidence_file), method)
        assert df.height == len(pd.read_csv(evidence_file, sep="\t"))
        assert "Intensity" in df.columns


class TestDataset:
    """End-to-end preprocessing into a layered AnnData."""

    def test_layers_and_metadata(self, base_config):
        adata = Dataset(**base_config).get_anndata()

        assert list(adata.layers.keys()) == ["raw", "log2", "imputed", "normalized"]
        assert adata.n_obs == 6
        assert list(adata.obs.columns[:3]) == ["CONDITION", "CONDITION_ORIG", "REPLICATE"]
        np.testing.assert_allclose(adata.X, adata.layers["normalized"])
        np.testing.assert_allclose(
            adata.layers["log2"], np.log2(adata.layers["raw"]), equal_nan=True
        )
        assert not np.isnan(adata.layers["imputed"]).any()

    def test_cyclic_loess_layer(self, base_config):
        base_config["preprocessing"]["normalization"] = {"method": "cyclic_loess", "mode": "pairs"}
        adata = Dataset(**base_config).get_anndata()
        assert np.isfinite(adata.layers["normalized"]).all()
        assert not np.array_equal(adata.layers["normalized"], adata.layers["imputed"])
        runs = adata.uns["preprocessing"]["normalization"]["runs"]
        assert runs[0]["method"] == "cyclic_loess"
        assert 1 <= runs[0]["cycles"] <= 3

    def test_decoys_contaminants_and_low_evidence_removed(self, base_config):
        adata = Dataset(**base_config).get_anndata()
        ids = set(adata.var_names)
        assert "REV__P99" not in ids
        assert "CON__P98" not in ids
        assert "P13" not in ids
        assert ids == {f"P{i:02d}" for i in range(1, 13)}

        dropped = adata.uns["filtering"]["dropped"]
        assert set(dropped.loc[dropped["INDEX"] == "P13", "REASON"]) == {"low_evidence"}

    def test_child_counts(self, base_config):
        adata = Dataset(**base_config).get_anndata()
        assert (adata.var["N"] == 5).all()
        # first peptide seen at two charges in 6 runs, four more peptides in 6 runs
        assert adata.var.loc["P01", "NUM_PSMS"] == 12 + 4 * 6
        assert adata.var.loc["P12", "NUM_PSMS"] == 10 + 4 * 5

    def test_psm_counts_per_experiment_and_sequence(self, base_config):
        adata = Dataset(**base_config).get_anndata()
        psms = adata.uns["psms"]

        # K0 is seen at charge 2 and 3 in every run: two rows per group, both carry the count
        k0 = psms[psms["MODIFIED_SEQUENCE"] == "_PEPTIDEP01K0_"]
        assert len(k0) == 2 * 6
        assert (k0["NUMBER_PEPTIDES"] == 2).all()
        assert set(k0["CHARGE"]) == {2, 3}

        k1 = psms[psms["MODIFIED_SEQUENCE"] == "_PEPTIDEP01K1_"]
        assert len(k1) == 6
        assert (k1["NUMBER_PEPTIDES"] == 1).all()
        assert psms["PSM_ID"].is_unique

    def test_partial_exclusion_drops_only_that_sample(self, base_config):
        full = Dataset(**base_config).get_anndata()
        base_config["dataset"]["exclude_experiments"] = ["Treated_3", "Unknown_9"]
        part = Dataset(**base_config).get_anndata()

        assert "Treated_3" not in part.obs_names
        assert part.obs["CONDITION"].value_counts().to_dict() == {"Control": 3, "Treated": 2}
        assert part.n_vars == full.n_vars
        assert not part.uns["psms"].columns.str.contains("Treated_3").any()
        X, _ = DesignMatrixBuilder(part.obs, {"reference": "Control"}).build()
        assert X.shape == (5, 2)

        # protein medians are per sample, so the remaining samples are unchanged
        kept = full[list(part.obs_names), list(part.var_names)]
        np.testing.assert_allclose(part.layers["raw"], kept.layers["raw"], equal_nan=True)

    def test_missing_protein_cell_is_imputed(self, base_config):
        adata = Dataset(**base_config).get_anndata()
        i = adata.obs_names.get_loc("Treated_1")
        j = adata.var_names.get_loc("P12")
        assert np.isnan(adata.layers["raw"][i, j])
        assert np.isfinite(adata.layers["imputed"][i, j])

    def test_peptide_and_psm_tables(self, base_config):
        adata = Dataset(**base_config).get_anndata()
        pep = adata.uns["peptides"]
        assert len(pep["rows"]) == 12 * 5 + 2
        assert pep["raw"].shape == (len(pep["rows"]), 6)
        assert set(adata.uns["psms"].columns) >= {"PSM_ID", "INDEX", "CHARGE"}

    def test_all_decoys_raises_empty(self, tmp_path, evidence_df):
        evidence_df["Reverse"] = "+"
        path = tmp_path / "decoys.txt"
        evidence_df.to_csv(path, sep="\t", index=False)
        with pytest.raises(EmptyResultError) as exc:
            Dataset(dataset={"input_file": str(path)})
        assert exc.value.stage == "filtering"

    def test_excluding_every_experiment_raises_empty(self, base_config, evidence_df):
        base_config["dataset"]["exclude_experiments"] = sorted(evidence_df["Experiment"].unique())
        with pytest.raises(EmptyResultError) as exc:
            Dataset(**base_config)
        assert exc.value.stage == "loading"

    def test_strict_quality_filter_raises_empty(self, base_config):
        base_config["preprocessing"]["filtering"]["min_peptides"] = 10
        with pytest.raises(EmptyResultError) as exc:
            Dataset(**base_config)
        assert exc.value.stage == "quality_filter"

    def test_missing_column_is_fatal(self, tmp_path, evidence_df):
        path = tmp_path / "bad.txt"
        evidence_df.drop(columns=["Modified sequence"]).to_csv(path, sep="\t", index=False)
        with pytest.raises(SchemaError):
            Dataset(dataset={"input_file": str(path)})


class TestLayers:
    def test_layers_are_append_only(self, base_config):
        adata = Dataset(**base_config).get_anndata()
        with pytest.raises(ValueError):
            add_layer(adata, "log2", np.zeros((adata.n_vars, adata.n_obs)))

    def test_shape_is_checked(self, base_config):
        adata = Dataset(**base_config).get_anndata()
        with pytest.raises(ValueError):
            add_layer(adata, "extra", np.zeros((adata.n_obs, adata.n_vars + 1)))
