"""Run the differential engine on a reference abundance matrix and compare."""

from typing import List, Tuple

import anndata as ad
import numpy as np
import pandas as pd
import polars as pl
from scipy.stats import pearsonr

from proteobayes.analysis import adata_schema as K
from proteobayes.analysis.limma_pipeline import differential_abundance
from proteobayes.utils.errors import EmptyResultError, SchemaError
from proteobayes.utils.harmonizer import DataHarmonizer, sanitize_condition
from proteobayes.utils.semantics import METHOD_PIPELINE, METHOD_REFERENCE
from proteobayes.utils.utils import log_info, log_time
from proteobayes.workflow.dataset import load_table


def load_reference(reference_cfg: dict) -> Tuple[np.ndarray, List[str], pd.DataFrame]:
    """
    Load a wide reference matrix (index column + one column per sample) and its
    sample design.

    Returns (matrix proteins x samples, protein ids, obs indexed by sample).
    """
    path = reference_cfg.get("matrix_file")
    if not path:
        raise ValueError("analysis.reference.matrix_file is required.")
    index_col = reference_cfg.get("index_column", "INDEX")

    df = load_table(path, reference_cfg.get("load_method", "polars"))
    if index_col not in df.columns:
        raise SchemaError(f"Reference matrix {path!r} has no index column '{index_col}'.")
    if df.height == 0:
        raise EmptyResultError("reference", f"{path} has no rows")

    samples = [c for c in df.columns if c != index_col]
    ids = df.get_column(index_col).cast(pl.Utf8).to_list()
    mat = (
        df.select([pl.col(c).cast(pl.Float64, strict=False) for c in samples])
          .to_numpy()
          .astype(np.float64)
    )

    if reference_cfg.get("log_transform", False):
        with np.errstate(divide="ignore", invalid="ignore"):
            mat = np.where(mat > 0, np.log2(mat), np.nan)

    ann = DataHarmonizer(reference_cfg).sample_annotation(samples).to_pandas()
    obs = pd.DataFrame({
        "CONDITION": [sanitize_condition(c) for c in ann["CONDITION"]],
        "CONDITION_ORIG": ann["CONDITION"].astype(str).to_numpy(),
        "REPLICATE": ann["REPLICATE"].astype(int).to_numpy(),
    }, index=pd.Index(samples, name="Sample"))

    keep = np.isfinite(mat).any(axis=1)
    if not keep.any():
        raise EmptyResultError("reference", "every reference row is absent")
    log_info(f"Reference matrix: {int(keep.sum())} proteins x {len(samples)} samples")
    return mat[keep], [i for i, k in zip(ids, keep) if k], obs


def compare_results(pipeline: pd.DataFrame, reference: pd.DataFrame) -> pd.DataFrame:
    """
    One row per contrast present in both tables: shared proteins, Pearson
    correlation of log2FC and overlap of significant calls.
    """
    rows = []
    contrasts = [c for c in pipeline["CONTRAST"].unique() if c in set(reference["CONTRAST"])]
    for name in contrasts:
        a = pipeline.loc[pipeline["CONTRAST"] == name, ["INDEX", "LOG2FC", "SIGNIFICANT"]]
        b = reference.loc[reference["CONTRAST"] == name, ["INDEX", "LOG2FC", "SIGNIFICANT"]]
        m = a.merge(b, on="INDEX", suffixes=("_PIPELINE", "_REFERENCE"))

        x = m["LOG2FC_PIPELINE"].to_numpy(dtype=float)
        y = m["LOG2FC_REFERENCE"].to_numpy(dtype=float)
        ok = np.isfinite(x) & np.isfinite(y)
        r = np.nan
        if ok.sum() >= 3 and np.std(x[ok]) > 0 and np.std(y[ok]) > 0:
            r = float(pearsonr(x[ok], y[ok])[0])

        sig_a = m["SIGNIFICANT_PIPELINE"].astype(bool)
        sig_b = m["SIGNIFICANT_REFERENCE"].astype(bool)
        rows.append({
            "CONTRAST": name,
            "N_SHARED": int(len(m)),
            "PEARSON_R": r,
            "N_SIG_PIPELINE": int(sig_a.sum()),
            "N_SIG_REFERENCE": int(sig_b.sum()),
            "N_SIG_BOTH": int((sig_a & sig_b).sum()),
        })

    return pd.DataFrame(rows, columns=[
        "CONTRAST", "N_SHARED", "PEARSON_R", "N_SIG_PIPELINE", "N_SIG_REFERENCE", "N_SIG_BOTH",
    ])


@log_time("Reference comparison")
def run_reference_comparison(adata: ad.AnnData, config: dict) -> ad.AnnData:
    """Analyse the configured reference matrix and store results in `adata.uns['reference']`."""
    analysis_cfg = (config or {}).get("analysis", {}) or {}
    reference_cfg = analysis_cfg.get("reference") or {}
    if not reference_cfg.get("matrix_file"):
        return adata

    p_cutoff = float(analysis_cfg.get("p_cutoff", 0.005))
    lfc_cutoff = float(analysis_cfg.get("lfc_cutoff", 0.5))

    mat, ids, obs = load_reference(reference_cfg)
    res = differential_abundance(mat, obs, ids, analysis_cfg)
    table = res.to_table(METHOD_REFERENCE, p_cutoff, lfc_cutoff)

    pipeline_table = adata.uns.get(K.UNS_RESULTS)
    if pipeline_table is None:
        pipeline_table = pd.DataFrame(columns=K.RESULT_COLUMNS)
    pipeline_table = pipeline_table[pipeline_table["METHOD"] == METHOD_PIPELINE]
    summary = compare_results(pipeline_table, table)
    for row in summary.itertuples(index=False):
        log_info(f"{row.CONTRAST}: shared={row.N_SHARED} r={row.PEARSON_R:.3f} "
                 f"significant pipeline/reference/both={row.N_SIG_PIPELINE}/{row.N_SIG_REFERENCE}/{row.N_SIG_BOTH}")

    adata.uns[K.UNS_REFERENCE] = {"results": table, "comparison": summary}
    warnings_ = list(adata.uns.get(K.UNS_WARNINGS, []))
    warnings_.extend(f"reference: {w}" for w in res.warnings)
    adata.uns[K.UNS_WARNINGS] = warnings_
    return adata
