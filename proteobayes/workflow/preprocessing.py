"""Preprocessing pipeline for proteobayes.

This module performs:
1) Filtering (reversed hits, contaminants, non-positive intensities)
2) PSM annotation (unique PSM_ID, NUMBER_PEPTIDES) and sample metadata
3) Pivoting PSMs to a wide matrix (one column per experiment)
4) Median rollup PSM -> peptide -> protein
5) Quality filter (peptide evidence, missingness)
6) log2, imputation, normalization

All steps record intermediate artifacts to `IntermediateResults`, which are then
assembled into a `PreprocessResults` container consumed by downstream code.
"""

from typing import List, Optional

import numpy as np
import polars as pl

from proteobayes.dataset.intermediateresults import IntermediateResults
from proteobayes.dataset.preprocessresults import PreprocessResults
from proteobayes.utils.errors import EmptyResultError
from proteobayes.utils.harmonizer import sanitize_condition
from proteobayes.utils.semantics import (
    COL_INDEX, COL_MODIFIED_SEQUENCE, COL_N, COL_NUMBER_PEPTIDES, COL_PEPTIDE_ID,
    COL_PROTEIN_GROUP, COL_PSM_ID, COUNT_ALL, LAYER_IMPUTED, LAYER_LOG2,
    LAYER_NORMALIZED, LAYER_RAW,
)
from proteobayes.utils.utils import log_info, log_indent, log_time, polars_matrix_to_numpy
from proteobayes.workflow.imputer_factory import get_imputer
from proteobayes.workflow.normalizers.cyclic_loess import (
    cyclic_loess_normalization, median_normalization,
)
from proteobayes.workflow.quality_filter import filter_proteins
from proteobayes.workflow.rollup import rollup_median

PSM_KEYS = [COL_PSM_ID, COL_NUMBER_PEPTIDES, COL_MODIFIED_SEQUENCE, COL_INDEX, COL_PROTEIN_GROUP, "CHARGE"]


class Preprocessor:
    """Handles filtering, pivoting, rollup, imputation and normalization for evidence data."""

    available_normalization = ["cyclic_loess", "median", "none"]
    available_imputation = ["knn", "mindet", "none"]

    def __init__(self, config: Optional[dict] = None):
        """Initialize from the `preprocessing` section of the config."""
        config = config or {}
        self.intermediate_results = IntermediateResults()

        # Filtering
        self.filtering = config.get("filtering") or {}
        self.sentinel = str(self.filtering.get("sentinel", "+"))
        self.min_peptides = int(self.filtering.get("min_peptides", 3))
        self.max_missing_fraction = float(self.filtering.get("max_missing_fraction", 0.5))

        # Rollup
        self.rollup = config.get("rollup") or {}
        self.count_children = self.rollup.get("count_children", COUNT_ALL)

        # Imputation
        self.imputation = dict(config.get("imputation") or {"method": "knn"})

        # Normalization
        self.normalization = dict(config.get("normalization") or {"method": "cyclic_loess"})
        method = self.normalization.get("method", "cyclic_loess")
        methods = [method] if isinstance(method, str) or method is None else list(method)
        for m in methods:
            if (m or "none") not in self.available_normalization:
                raise ValueError(f"Invalid normalization method: {m}")
        self.normalization_methods = methods

        self.annotation: Optional[pl.DataFrame] = None

    def fit_transform(self, df: pl.DataFrame, annotation: pl.DataFrame) -> PreprocessResults:
        """Run the full preprocessing pipeline and return a `PreprocessResults` bundle.

        Args:
            df: harmonized long evidence table (one row per PSM).
            annotation: per-sample table (FILENAME, CONDITION, REPLICATE).
        """
        self.annotation = annotation

        # Step 1: Filtering
        df = self._filter(df)

        # Step 2: PSM ids and per-group counts
        df = self._annotate_psms(df)

        # Sample metadata
        self._get_condition_map(df)

        # Step 3: Pivoting
        self._pivot_data(df)

        # Step 4: Rollup
        self._rollup()

        # Step 5: Quality filter
        self._quality_filter()

        # Step 6: log2 + imputation
        self._log_and_impute()

        # Step 7: Normalization
        self._normalize()

        ir = self.intermediate_results
        dropped = ir.dfs.get("dropped")
        return PreprocessResults(
            psms=ir.dfs["psms_wide"],
            peptides=ir.dfs["peptides_wide"],
            proteins=ir.dfs["proteins_final"],
            protein_meta=ir.dfs["protein_metadata"],
            condition_pivot=ir.dfs["condition_pivot"],
            layers={name: ir.matrices[name] for name in
                    (LAYER_RAW, LAYER_LOG2, LAYER_IMPUTED, LAYER_NORMALIZED)},
            dropped=dropped,
            meta_filtering=ir.metadata["filtering"],
            meta_imputation=ir.metadata["imputation"],
            meta_normalization=ir.metadata["normalization"],
            warnings=list(ir.warnings),
        )

    @log_time("Filtering")
    def _filter(self, df: pl.DataFrame) -> pl.DataFrame:
        """Drop reversed hits and contaminants; censor non-positive intensities."""
        n_before = df.height
        is_flagged = (
            (pl.col("REVERSE").fill_null("").str.strip_chars() == self.sentinel)
            | (pl.col("CONTAMINANT").fill_null("").str.strip_chars() == self.sentinel)
        )
        n_reverse = df.filter(pl.col("REVERSE").fill_null("").str.strip_chars() == self.sentinel).height
        n_cont = df.filter(pl.col("CONTAMINANT").fill_null("").str.strip_chars() == self.sentinel).height
        df = df.filter(~is_flagged)
        log_info(f"Reverse/contaminant filtering: kept={df.height} dropped={n_before - df.height} "
                 f"(reverse={n_reverse}, contaminant={n_cont}, sentinel='{self.sentinel}').")

        if df.height == 0:
            raise EmptyResultError("filtering", "every evidence row is a reversed hit or contaminant")

        # Absent is null, never zero
        n_nonpos = df.filter(pl.col("SIGNAL") <= 0).height
        df = df.with_columns(
            pl.when(pl.col("SIGNAL") > 0).then(pl.col("SIGNAL")).otherwise(None).alias("SIGNAL")
        )
        if n_nonpos:
            log_info(f"Non-positive intensities set to absent: {n_nonpos}.")

        self.intermediate_results.add_metadata("filtering", "meta_cont", {
            "sentinel": self.sentinel,
            "number_reverse": n_reverse,
            "number_contaminant": n_cont,
            "number_kept": df.height,
            "number_dropped": n_before - df.height,
            "number_nonpositive": n_nonpos,
        })
        self.intermediate_results.add_df("filtered", df)
        return df

    def _annotate_psms(self, df: pl.DataFrame) -> pl.DataFrame:
        """Assign PSM_ID and count rows per (experiment, modified sequence, protein)."""
        return (
            df.with_row_index(COL_PSM_ID)
              .with_columns(
                  pl.col(COL_PSM_ID).cast(pl.Int64),
                  pl.len().over(["FILENAME", COL_MODIFIED_SEQUENCE, COL_INDEX])
                    .cast(pl.Int64).alias(COL_NUMBER_PEPTIDES),
              )
        )

    def _get_condition_map(self, df: pl.DataFrame) -> None:
        """Build a Sample -> condition/replicate map with a patsy-safe condition token."""
        present = set(df.get_column("FILENAME").unique().to_list())
        condition_mapping = (
            self.annotation
                .filter(pl.col("FILENAME").is_in(list(present)))
                .rename({"FILENAME": "Sample"})
                .sort("Sample")
        )

        # keep original for display, use sanitized for modeling
        condition_mapping = condition_mapping.with_columns(
            pl.col("CONDITION").alias("CONDITION_ORIG"),
            pl.col("CONDITION")
              .cast(pl.Utf8, strict=False)
              .map_elements(sanitize_condition, return_dtype=pl.Utf8)
              .alias("CONDITION"),
        ).select(["Sample", "CONDITION", "CONDITION_ORIG", "REPLICATE"])

        self.intermediate_results.add_df("condition_pivot", condition_mapping)

    @property
    def samples(self) -> List[str]:
        return self.intermediate_results.dfs["condition_pivot"].get_column("Sample").to_list()

    @log_time("Pivoting data")
    def _pivot_data(self, df: pl.DataFrame) -> None:
        """Long -> wide at PSM level. PSM_ID is unique, so no aggregation happens here."""
        wide = df.pivot(
            on="FILENAME",
            index=PSM_KEYS,
            values="SIGNAL",
        )
        # Experiments that lost all PSMs still get a column
        missing_cols = [s for s in self.samples if s not in wide.columns]
        if missing_cols:
            wide = wide.with_columns([pl.lit(None, dtype=pl.Float64).alias(s) for s in missing_cols])
        wide = wide.select(PSM_KEYS + self.samples).sort(COL_PSM_ID)

        log_info(f"PSM matrix: {wide.height} rows x {len(self.samples)} samples.")
        self.intermediate_results.add_df("psms_wide", wide)

    @log_time("Rollup")
    def _rollup(self) -> None:
        """Median rollup PSM -> peptide (per protein) -> protein."""
        samples = self.samples
        psms = self.intermediate_results.dfs["psms_wide"]

        peptides = rollup_median(
            psms,
            keys=[COL_MODIFIED_SEQUENCE, COL_INDEX],
            sample_cols=samples,
            count_children=self.count_children,
            carry=[COL_PROTEIN_GROUP],
        ).with_columns(
            pl.concat_str([pl.col(COL_INDEX), pl.col(COL_MODIFIED_SEQUENCE)], separator="|")
              .alias(COL_PEPTIDE_ID)
        )
        log_info(f"Peptide matrix: {peptides.height} rows (count_children={self.count_children}).")

        proteins = rollup_median(
            peptides,
            keys=[COL_INDEX],
            sample_cols=samples,
            count_children=self.count_children,
            carry=[COL_PROTEIN_GROUP],
        )
        num_psms = peptides.group_by(COL_INDEX).agg(pl.col(COL_N).sum().alias("NUM_PSMS"))
        proteins = proteins.join(num_psms, on=COL_INDEX, how="left")
        log_info(f"Protein matrix: {proteins.height} rows.")

        self.intermediate_results.add_df("peptides_wide", peptides)
        self.intermediate_results.add_df("proteins_wide", proteins)
        self.intermediate_results.add_metadata("rollup", "count_children", self.count_children)

    @log_time("Quality filter")
    def _quality_filter(self) -> None:
        proteins = self.intermediate_results.dfs["proteins_wide"]
        kept, result = filter_proteins(
            proteins,
            self.samples,
            min_peptides=self.min_peptides,
            max_missing_fraction=self.max_missing_fraction,
        )
        log_info(f"Quality filter: kept={kept.height} dropped={result.n_dropped} "
                 f"(N <= {self.min_peptides}: {int(result.low_evidence.sum())}, "
                 f"missing >= {self.max_missing_fraction}: {int(result.too_missing.sum())}).")

        self.intermediate_results.add_metadata("filtering", "meta_quality", {
            "min_peptides": self.min_peptides,
            "max_missing_fraction": self.max_missing_fraction,
            "number_kept": kept.height,
            "number_dropped": result.n_dropped,
            "number_low_evidence": int(result.low_evidence.sum()),
            "number_too_missing": int(result.too_missing.sum()),
        })
        self.intermediate_results.add_df(
            "dropped", result.reasons(proteins.get_column(COL_INDEX).to_list())
        )

        if kept.height == 0:
            raise EmptyResultError("quality_filter", "no protein passes the peptide-count and missingness thresholds")

        self.intermediate_results.add_df("proteins_filtered", kept)

    @log_time("Imputation")
    def _log_and_impute(self) -> None:
        """log2 transform and impute; rows the imputer cannot fill are dropped with a warning."""
        proteins = self.intermediate_results.dfs["proteins_filtered"]
        samples = self.samples

        raw = polars_matrix_to_numpy(proteins, samples)
        with np.errstate(divide="ignore", invalid="ignore"):
            log2 = np.where(raw > 0, np.log2(raw), np.nan)

        method = self.imputation.get("method", "knn")
        imputer = get_imputer(**self.imputation)
        if imputer is None:
            imputed = log2.copy()
            failed = np.array([], dtype=int)
        else:
            imputed = imputer.fit_transform(log2)
            failed = getattr(imputer, "failed_rows_", np.array([], dtype=int))

        keep = np.ones(proteins.height, dtype=bool)
        if failed.size:
            keep[failed] = False
            ids = proteins.get_column(COL_INDEX).to_list()
            dropped_ids = [ids[i] for i in failed]
            self.intermediate_results.add_warning(
                "imputation",
                f"{failed.size} protein(s) had a missing cell with no informative neighbor and were dropped: "
                f"{dropped_ids[:10]}{' ...' if failed.size > 10 else ''}",
            )
            extra = pl.DataFrame(
                {"INDEX": [str(i) for i in dropped_ids], "STAGE": "imputation", "REASON": "no_informative_neighbor"},
                schema={"INDEX": pl.Utf8, "STAGE": pl.Utf8, "REASON": pl.Utf8},
            )
            self.intermediate_results.add_df(
                "dropped", pl.concat([self.intermediate_results.dfs["dropped"], extra])
            )
            proteins = proteins.filter(pl.Series(keep))
            if proteins.height == 0:
                raise EmptyResultError("imputation", "every protein failed imputation")

        n_imputed = int(np.isnan(log2[keep]).sum() - np.isnan(imputed[keep]).sum())
        log_info(f"Imputation ({method}): filled {n_imputed} cell(s).")

        ir = self.intermediate_results
        ir.add_df("proteins_final", proteins)
        ir.set_columns_and_index(proteins.select([COL_INDEX] + samples), index_col=COL_INDEX)
        ir.add_matrix(LAYER_RAW, raw[keep])
        ir.add_matrix(LAYER_LOG2, log2[keep])
        ir.add_matrix(LAYER_IMPUTED, imputed[keep])
        ir.add_metadata("imputation", "method", method)
        ir.add_metadata("imputation", "params", {k: v for k, v in self.imputation.items() if k != "method"})
        ir.add_metadata("imputation", "number_imputed", n_imputed)
        ir.add_metadata("imputation", "number_dropped", int(failed.size))

        meta = proteins.select([COL_INDEX, COL_PROTEIN_GROUP, COL_N, "NUM_PSMS"])
        ir.add_df("protein_metadata", meta)

    @log_time("Normalization")
    def _normalize(self) -> None:
        """Apply the configured normalization chain to the imputed log2 matrix."""
        mat = self.intermediate_results.matrices[LAYER_IMPUTED]
        runs = []

        with log_indent():
            for method in self.normalization_methods:
                if method == "cyclic_loess":
                    mat, info = cyclic_loess_normalization(
                        mat,
                        mode=self.normalization.get("mode", "fast"),
                        span=float(self.normalization.get("span", 0.7)),
                        iterations=int(self.normalization.get("iterations", 3)),
                        subsample=self.normalization.get("subsample"),
                        tol=float(self.normalization.get("tol", 1e-4)),
                        robust_iterations=int(self.normalization.get("robust_iterations", 3)),
                        random_state=self.normalization.get("random_state", 42),
                    )
                    log_info(f"Cyclic loess: cycles={info['cycles']} "
                             f"max_adjustment={info['max_adjustment']:.3g} converged={info['converged']}.")
                    if not info["converged"]:
                        self.intermediate_results.add_warning(
                            "normalization",
                            f"cyclic loess did not converge within {info['cycles']} cycle(s) "
                            f"(last max adjustment {info['max_adjustment']:.3g})",
                        )
                    runs.append({"method": method, **info})
                elif method == "median":
                    mat = median_normalization(mat)
                    runs.append({"method": method})
                else:
                    log_info("Skipping normalization")
                    mat = mat.copy()
                    runs.append({"method": "none"})

        self.intermediate_results.add_matrix(LAYER_NORMALIZED, mat)
        self.intermediate_results.add_metadata("normalization", "method", self.normalization_methods)
        self.intermediate_results.add_metadata("normalization", "runs", runs)
        self.intermediate_results.add_metadata(
            "normalization", "params", {k: v for k, v in self.normalization.items() if k != "method"}
        )
