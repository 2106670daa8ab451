"""Limma-style moderated differential abundance.

This module provides:
  - `differential_abundance`: the three-phase engine on any (proteins x samples) matrix
  - `run_limma_pipeline`: the engine applied to `adata.X`, results written to the AnnData
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import anndata as ad
import numpy as np
import pandas as pd

from proteobayes.analysis import adata_schema as K
from proteobayes.analysis.ebayes_moderator import EbayesModerator
from proteobayes.analysis.linearmodelfitter import LinearModelFitter
from proteobayes.analysis.missingness import compute_missingness
from proteobayes.analysis.stats_ops import bh_qvalues, raw_stats_from_fit
from proteobayes.design.contrast import apply_contrasts
from proteobayes.design.contrastbuilder import ContrastBuilder
from proteobayes.design.designmatrixbuilder import DesignMatrixBuilder
from proteobayes.utils.harmonizer import sanitize_condition
from proteobayes.utils.semantics import METHOD_PIPELINE
from proteobayes.utils.utils import log_info, log_time, log_warning


@dataclass
class DifferentialResult:
    feature_ids: List[str]
    contrast_names: List[str]
    contrast_pairs: List[Tuple[str, str]]   # (treatment, control) per contrast
    levels: List[str]
    reference: str
    formula: str
    log2fc: np.ndarray                  # (n_proteins x n_contrasts)
    se_raw: np.ndarray
    t_raw: np.ndarray
    p_raw: np.ndarray
    q_raw: np.ndarray
    se_ebayes: np.ndarray
    t_ebayes: np.ndarray
    p_ebayes: np.ndarray
    q_ebayes: np.ndarray
    sigma2: np.ndarray                  # (n_proteins,)
    df_residual: np.ndarray
    s2_post: np.ndarray
    df_total: np.ndarray
    d0: float
    s02: float
    warnings: List[str] = field(default_factory=list)

    def to_table(
        self,
        method: str = METHOD_PIPELINE,
        p_cutoff: float = 0.005,
        lfc_cutoff: float = 0.5,
    ) -> pd.DataFrame:
        """Flat (protein, contrast) results table."""
        frames = []
        for j, name in enumerate(self.contrast_names):
            lfc = self.log2fc[:, j]
            adj = self.q_ebayes[:, j]
            frames.append(pd.DataFrame({
                "INDEX": self.feature_ids,
                "CONTRAST": name,
                "LOG2FC": lfc,
                "S2_POST": self.s2_post,
                "P_VALUE": self.p_ebayes[:, j],
                "ADJ_P_VALUE": adj,
                "SIGNIFICANT": (adj < p_cutoff) & (np.abs(lfc) > lfc_cutoff),
                "METHOD": method,
            }))
        if not frames:
            return empty_results_table()
        return pd.concat(frames, ignore_index=True)[K.RESULT_COLUMNS]


def empty_results_table() -> pd.DataFrame:
    return pd.DataFrame({
        "INDEX": pd.Series(dtype=str),
        "CONTRAST": pd.Series(dtype=str),
        "LOG2FC": pd.Series(dtype=float),
        "S2_POST": pd.Series(dtype=float),
        "P_VALUE": pd.Series(dtype=float),
        "ADJ_P_VALUE": pd.Series(dtype=float),
        "SIGNIFICANT": pd.Series(dtype=bool),
        "METHOD": pd.Series(dtype=str),
    })


def _as_list(x) -> list:
    if x is None:
        return []
    if isinstance(x, str):
        return [x] if x.strip() else []
    return list(x)


def _ebayes_enabled(analysis_cfg: dict) -> bool:
    eb = analysis_cfg.get("ebayes", True)
    if isinstance(eb, dict):
        return bool(eb.get("enabled", True))
    return bool(eb)


def select_contrasts(builder: ContrastBuilder, analysis_cfg: dict):
    """only_contrasts wins; otherwise `contrasts: reference | pairwise`."""
    only_list = _as_list(analysis_cfg.get("only_contrasts"))
    if only_list:
        log_info("Analysis only on selected contrasts")
        sanitized = []
        for it in only_list:
            s = str(it)
            sep = "_vs_" if "_vs_" in s else "_v_"
            if sep in s:
                a, b = s.split(sep, 1)
                s = f"{sanitize_condition(a)}_vs_{sanitize_condition(b)}"
            sanitized.append(s)
        return builder.make_from_names(sanitized)

    mode = str(analysis_cfg.get("contrasts", "reference")).lower()
    if mode == "pairwise":
        return builder.make_all_pairwise_contrasts()
    if mode != "reference":
        raise ValueError(f"analysis.contrasts must be 'reference' or 'pairwise', got '{mode}'")
    return builder.make_against_reference()


@log_time("Differential abundance")
def differential_abundance(
    expression: np.ndarray,
    obs: pd.DataFrame,
    feature_ids: Sequence[str],
    analysis_cfg: Optional[dict] = None,
) -> DifferentialResult:
    """
    Moderated differential abundance on a (proteins x samples) log2 matrix.

    Phase 1 fits every protein independently, phase 2 estimates the shared
    prior (d0, s0²) once from all proteins, phase 3 moderates each protein.
    """
    cfg = analysis_cfg or {}
    warnings: List[str] = []

    reference = cfg.get("reference_condition")
    if reference is not None:
        reference = sanitize_condition(str(reference))

    dmb = DesignMatrixBuilder(obs, {"group_column": "CONDITION", "reference": reference})
    X, design_info = dmb.build()
    log_info(f"Design: {dmb.formula} ({X.shape[0]} samples x {X.shape[1]} columns)")

    builder = ContrastBuilder(design_info, dmb.levels, dmb.reference)
    contrast_matrix, contrast_names = select_contrasts(builder, cfg)
    log_info(f"Contrasts: {contrast_names}")

    # Phase 1: per-protein fits
    Y = np.asarray(expression, dtype=np.float64)
    fit = LinearModelFitter(Y.T, X).fit().get_results()
    sigma2 = fit["residual_variance"]
    df_res = fit["df_residual"]
    n_zero_df = int(np.sum(df_res == 0))
    if n_zero_df:
        log_info(f"{n_zero_df} protein(s) without residual degrees of freedom.")

    log2fc, unscaled_var = apply_contrasts(fit, contrast_matrix)
    se_raw, t_raw, p_raw = raw_stats_from_fit(
        coefs=log2fc, unscaled_var=unscaled_var, sigma2=sigma2, df_res=df_res,
    )
    q_raw = bh_qvalues(p_raw)

    # Phase 2 + 3: shared prior, then moderation
    moderator = EbayesModerator(sigma2, df_res)
    if _ebayes_enabled(cfg):
        d0, s02 = moderator.fit()
        warnings.extend(f"ebayes: {w}" for w in moderator.warnings)
    else:
        log_info("Empirical Bayes disabled; moderated statistics equal ordinary ones.")
        moderator.d0, moderator.s02 = 0.0, np.nan
        d0, s02 = 0.0, np.nan
    log_info(f"Prior: d0={d0:.3g} s0^2={s02:.3g}")

    moderated = moderator.apply_to_contrasts(log2fc, unscaled_var)

    return DifferentialResult(
        feature_ids=[str(f) for f in feature_ids],
        contrast_names=list(contrast_names),
        contrast_pairs=list(builder.pairs),
        levels=list(dmb.levels),
        reference=dmb.reference,
        formula=dmb.formula,
        log2fc=log2fc,
        se_raw=se_raw,
        t_raw=t_raw,
        p_raw=p_raw,
        q_raw=q_raw,
        se_ebayes=moderated["se_ebayes"],
        t_ebayes=moderated["t_ebayes"],
        p_ebayes=moderated["p_ebayes"],
        q_ebayes=moderated["q_ebayes"],
        sigma2=sigma2,
        df_residual=df_res,
        s2_post=moderator.s2_post,
        df_total=moderator.df_total,
        d0=float(d0),
        s02=float(s02),
        warnings=warnings,
    )


@log_time("Analysis pipeline")
def run_limma_pipeline(adata: ad.AnnData, config: dict) -> ad.AnnData:
    """Moderated differential abundance on `adata.X`; returns an annotated copy."""
    analysis_cfg = (config or {}).get("analysis", {}) or {}
    p_cutoff = float(analysis_cfg.get("p_cutoff", 0.005))
    lfc_cutoff = float(analysis_cfg.get("lfc_cutoff", 0.5))

    out = adata.copy()
    run_warnings = list(out.uns.get(K.UNS_WARNINGS, []))

    missing = compute_missingness(adata)
    out.uns[K.UNS_MISSINGNESS] = missing.df
    out.uns[K.UNS_MISSINGNESS_SOURCE] = missing.source
    out.uns[K.UNS_MISSINGNESS_RULE] = missing.rule

    levels = sorted(out.obs["CONDITION"].astype(str).unique())
    repl_counts = out.obs["CONDITION"].value_counts()

    # Single condition: nothing to contrast
    if len(levels) < 2:
        msg = "analysis: pilot study mode, only 1 condition detected; statistical analysis skipped."
        log_warning(msg)
        run_warnings.append(msg)
        out.uns[K.UNS_CONTRAST_NAMES] = []
        out.uns[K.UNS_CONTRAST_LEVELS] = {}
        out.uns[K.UNS_PILOT_MODE] = True
        out.uns[K.UNS_RESULTS] = empty_results_table()
        out.uns[K.UNS_WARNINGS] = run_warnings
        return out

    if repl_counts.min() <= 1:
        msg = (f"analysis: condition(s) {sorted(repl_counts[repl_counts <= 1].index.astype(str))} "
               f"have a single replicate; their variance comes from the other conditions only.")
        log_warning(msg)
        run_warnings.append(msg)

    res = differential_abundance(
        np.asarray(out.X, dtype=np.float64).T,
        out.obs,
        out.var_names.tolist(),
        analysis_cfg,
    )
    run_warnings.extend(res.warnings)

    out.varm[K.VARM_LOG2FC] = res.log2fc
    out.varm[K.VARM_SE_RAW] = res.se_raw
    out.varm[K.VARM_T_RAW] = res.t_raw
    out.varm[K.VARM_P_RAW] = res.p_raw
    out.varm[K.VARM_Q_RAW] = res.q_raw
    out.varm[K.VARM_SE_EBAYES] = res.se_ebayes
    out.varm[K.VARM_T_EBAYES] = res.t_ebayes
    out.varm[K.VARM_P_EBAYES] = res.p_ebayes
    out.varm[K.VARM_Q_EBAYES] = res.q_ebayes

    out.var["S2_POST"] = res.s2_post
    out.var["DF_RESIDUAL"] = res.df_residual

    out.uns[K.UNS_CONTRAST_NAMES] = res.contrast_names
    out.uns[K.UNS_CONTRAST_LEVELS] = {n: list(pair) for n, pair in zip(res.contrast_names, res.contrast_pairs)}
    out.uns[K.UNS_PILOT_MODE] = False
    out.uns[K.UNS_RESIDUAL_VARIANCE] = res.sigma2
    out.uns[K.UNS_EBAYES] = {"d0": res.d0, "s02": res.s02, "enabled": _ebayes_enabled(analysis_cfg)}
    out.uns[K.UNS_DESIGN] = {"formula": res.formula, "reference": res.reference, "levels": res.levels}

    table = res.to_table(METHOD_PIPELINE, p_cutoff, lfc_cutoff)
    out.uns[K.UNS_RESULTS] = table
    for name in res.contrast_names:
        n_sig = int(table.loc[table["CONTRAST"] == name, "SIGNIFICANT"].sum())
        log_info(f"{name}: {n_sig} significant protein(s) (adj.p < {p_cutoff}, |log2FC| > {lfc_cutoff})")

    out.uns[K.UNS_WARNINGS] = run_warnings
    return out
