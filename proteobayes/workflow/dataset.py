import warnings
from typing import Set, Union

import anndata as ad
import numpy as np
import pandas as pd
import polars as pl
import pyarrow.csv as pv_csv

from proteobayes.dataset.layers import add_layer
from proteobayes.utils.errors import EmptyResultError
from proteobayes.utils.harmonizer import DataHarmonizer
from proteobayes.utils.semantics import (
    COL_INDEX, COL_MODIFIED_SEQUENCE, COL_PEPTIDE_ID, LAYER_IMPUTED, LAYER_LOG2,
    LAYER_NORMALIZED, LAYER_RAW,
)
from proteobayes.utils.utils import log_info, log_time, polars_matrix_to_numpy
from proteobayes.workflow.preprocessing import Preprocessor

# Suppress the ImplicitModificationWarning from AnnData
warnings.filterwarnings("ignore", category=UserWarning, message=".*Transforming to str index.*")


def _to_set(x) -> Set[str]:
    """Accept a string or a list of names."""
    if x is None:
        return set()
    if isinstance(x, str):
        return {x.strip()} if x.strip() else set()
    return {str(v).strip() for v in x if str(v).strip()}


def load_table(file_path: str, load_method: str = "polars") -> pl.DataFrame:
    """Load a CSV/TSV/TXT table using different libraries."""
    file_path = str(file_path)
    if not file_path.endswith((".csv", ".tsv", ".txt")):
        raise ValueError("Only CSV, TSV or TXT files are supported.")

    delimiter = "," if file_path.endswith(".csv") else "\t"

    if load_method == "polars":
        return pl.read_csv(file_path,
                           separator=delimiter,
                           infer_schema_length=10000,
                           null_values=["NA", "NaN", "N/A", ""])
    elif load_method == "pyarrow":
        parse_options = pv_csv.ParseOptions(delimiter=delimiter)
        arrow_table = pv_csv.read_csv(file_path, parse_options=parse_options)
        return pl.from_arrow(arrow_table)
    elif load_method == "pandas":
        df = pd.read_csv(file_path, delimiter=delimiter)
        return pl.from_pandas(df)
    else:
        raise ValueError(f"Unknown load method: {load_method}")


class Dataset:
    """Loads the evidence table, runs preprocessing and converts the result to AnnData."""

    def __init__(self, **kwargs):
        """
        Initialize the dataset object.

        Args:
            kwargs: dict with all the config elements
        """
        dataset_cfg = kwargs.get("dataset", {}) or {}
        self.file_path = dataset_cfg.get("input_file", None)
        self.load_method = dataset_cfg.get("load_method", "polars")
        self.exclude_experiments = _to_set(dataset_cfg.get("exclude_experiments"))

        self.harmonizer = DataHarmonizer(dataset_cfg)
        self.preprocessor = Preprocessor(kwargs.get("preprocessing", {}) or {})

        self._load_and_process()

    def _load_and_process(self):
        # Load data
        self.rawinput = self._load_rawdata(self.file_path)

        # Harmonize data
        self.rawinput = self.harmonizer.harmonize(self.rawinput)

        # Exclude experiments if any
        self.rawinput = self._apply_exclude_experiments(self.rawinput)

        # Sample design
        samples = sorted(self.rawinput.get_column("FILENAME").unique().to_list())
        self.annotation = self.harmonizer.sample_annotation(samples)

        # Apply preprocessing
        self.preprocessed_data = self._apply_preprocessing(self.rawinput)

        # Convert to AnnData format
        self._convert_to_anndata()

    def _apply_exclude_experiments(self, df: pl.DataFrame) -> pl.DataFrame:
        """Drop experiments (by FILENAME) if requested."""
        if df.height == 0:
            raise EmptyResultError("loading", "input table has no rows")
        if not self.exclude_experiments:
            return df

        present = set(df.get_column("FILENAME").drop_nulls().to_list())
        to_drop = sorted(self.exclude_experiments & present)
        missing = sorted(self.exclude_experiments - present)

        if missing:
            head = ", ".join(missing[:10])
            tail = " ..." if len(missing) > 10 else ""
            log_info(f"Exclude experiments: {len(missing)} not found in data -> ignored: [{head}{tail}]")

        if not to_drop:
            log_info("Exclude experiments: nothing to drop.")
            return df

        n_before = df.height
        df2 = df.filter(~pl.col("FILENAME").is_in(to_drop))
        log_info(f"Exclude experiments: dropped {len(to_drop)} experiment(s), removed {n_before - df2.height} row(s).")

        if df2.height == 0:
            raise EmptyResultError("loading", f"excluding {to_drop} removed every row")
        return df2

    @log_time("Data Loading")
    def _load_rawdata(self, file_path: str) -> pl.DataFrame:
        if not file_path:
            raise ValueError("dataset.input_file is required.")
        return load_table(file_path, self.load_method)

    @log_time("Data Processing")
    def _apply_preprocessing(self, df: pl.DataFrame):
        return self.preprocessor.fit_transform(df, self.annotation)

    @log_time("Conversion to AnnData")
    def _convert_to_anndata(self):
        """Convert the protein-level matrices to an AnnData object (obs = samples, var = proteins)."""
        pre = self.preprocessed_data
        samples = pre.condition_pivot.get_column("Sample").to_list()

        obs = pre.condition_pivot.to_pandas().set_index("Sample")
        obs["REPLICATE"] = obs["REPLICATE"].astype(int)
        var = pre.protein_meta.to_pandas().set_index(COL_INDEX)
        var.index = var.index.astype(str)

        normalized = pre.layers[LAYER_NORMALIZED]
        self.adata = ad.AnnData(
            X=np.array(normalized.T, dtype=np.float64),
            obs=obs.loc[samples],
            var=var,
        )

        for name in (LAYER_RAW, LAYER_LOG2, LAYER_IMPUTED, LAYER_NORMALIZED):
            add_layer(self.adata, name, pre.layers[name])

        self.adata.uns["preprocessing"] = {
            "imputation": pre.meta_imputation,
            "normalization": pre.meta_normalization,
            "count_children": self.preprocessor.count_children,
        }
        self.adata.uns["filtering"] = {
            "summary": pre.meta_filtering,
            "dropped": pre.dropped.to_pandas(),
        }
        self.adata.uns["warnings"] = list(pre.warnings)

        # Peptide-level table (n_peptides x n_samples), HDF5-friendly
        peptides = pre.peptides
        self.adata.uns["peptides"] = {
            "rows": peptides.get_column(COL_PEPTIDE_ID).cast(pl.Utf8).to_list(),
            "protein_index": peptides.get_column(COL_INDEX).cast(pl.Utf8).to_list(),
            "modified_sequence": peptides.get_column(COL_MODIFIED_SEQUENCE).cast(pl.Utf8).to_list(),
            "n": peptides.get_column("N").to_numpy(),
            "cols": samples,
            "raw": polars_matrix_to_numpy(peptides, samples),
        }

        # PSM-level wide table
        psms = pre.psms.to_pandas()
        psms.index = psms.index.astype(str)
        self.adata.uns["psms"] = psms

        assert list(self.adata.var_names) == [str(i) for i in self.preprocessor.intermediate_results.index]

    def get_anndata(self) -> ad.AnnData:
        """Export the processed dataset as an AnnData object."""
        return self.adata
