"""Export differential-abundance results to TSV and write a cleaned .h5ad.

Tables share the configured prefix:
  <prefix>_results.tsv               pipeline (and reference) results, METHOD column
  <prefix>_feature_selection.tsv     Hedges' g per (protein, contrast)
  <prefix>_peptides.tsv              peptide-by-sample raw medians
  <prefix>_psms.tsv                  PSM-by-sample raw intensities
  <prefix>_reference_comparison.tsv  only when a reference was analysed
"""
import numpy as np
import pandas as pd
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Optional
from importlib.metadata import version as _pkg_version, PackageNotFoundError

from proteobayes.analysis import adata_schema as K
from proteobayes.utils.utils import log_info, log_time


def _h5_safe(obj):
    """Recursively coerce uns content to types anndata can write (None and empty lists dropped)."""
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            v2 = _h5_safe(v)
            if v2 is not None:
                out[str(k)] = v2
        return out
    if isinstance(obj, (list, tuple)):
        if not obj:
            return None
        if all(isinstance(v, dict) for v in obj):
            return {str(i): _h5_safe(v) for i, v in enumerate(obj)}
        if any(v is None for v in obj):
            obj = [str(v) for v in obj]
        arr = np.asarray(obj)
        return arr.astype(str) if arr.dtype == object else arr
    if obj is None:
        return None
    if isinstance(obj, (str, bool, int, float, np.generic, np.ndarray, pd.DataFrame)):
        return obj
    return str(obj)


class DEExporter:
    def __init__(self, adata, output_path):
        """TSV and .h5ad exporter for an analysed `AnnData`; `output_path` is the table prefix."""
        self.adata = adata
        self.output_path = Path(output_path)
        self.contrasts = list(self.adata.uns.get(K.UNS_CONTRAST_NAMES, []))

    def results_table(self) -> pd.DataFrame:
        """Pipeline results followed by reference results, if any."""
        frames = []
        res = self.adata.uns.get(K.UNS_RESULTS)
        if res is not None:
            frames.append(res)
        ref = self.adata.uns.get(K.UNS_REFERENCE)
        if ref is not None and ref.get("results") is not None:
            frames.append(ref["results"])
        if not frames:
            return pd.DataFrame(columns=K.RESULT_COLUMNS)
        return pd.concat(frames, ignore_index=True)[K.RESULT_COLUMNS]

    def peptide_table(self) -> Optional[pd.DataFrame]:
        pep = self.adata.uns.get("peptides")
        if pep is None:
            return None
        meta = pd.DataFrame({
            "PEPTIDE_ID": pep["rows"],
            "INDEX": pep["protein_index"],
            "MODIFIED_SEQUENCE": pep["modified_sequence"],
            "N": pep["n"],
        })
        raw = pd.DataFrame(pep["raw"], columns=list(pep["cols"]))
        return pd.concat([meta, raw], axis=1)

    def _tables(self) -> Dict[str, Optional[pd.DataFrame]]:
        ref = self.adata.uns.get(K.UNS_REFERENCE)
        return {
            "results": self.results_table(),
            "feature_selection": self.adata.uns.get(K.UNS_FEATURE_SELECTION),
            "peptides": self.peptide_table(),
            "psms": self.adata.uns.get("psms"),
            "reference_comparison": ref.get("comparison") if ref is not None else None,
        }

    @log_time("Differential abundance - exporting tables")
    def export(self) -> List[Path]:
        """Write every available table as `<prefix>_<name>.tsv`."""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        prefix = self.output_path.with_suffix("") if self.output_path.suffix == ".tsv" else self.output_path

        written = []
        for name, df in self._tables().items():
            if df is None:
                continue
            path = Path(f"{prefix}_{name}.tsv")
            df.to_csv(path, sep="\t", index=False, na_rep="NA")
            log_info(f"Wrote {path} ({len(df)} rows)")
            written.append(path)
        return written

    @log_time("Exporting .h5ad")
    def export_adata(self, h5ad_path: str) -> None:
        """Write a .h5ad with categorical metadata and h5-compatible uns."""
        out = self.adata.copy()
        for col in ["CONDITION", "CONDITION_ORIG", "PROTEIN_GROUP"]:
            if col in out.obs.columns:
                out.obs[col] = out.obs[col].astype(str).astype("category")
            if col in out.var.columns:
                out.var[col] = out.var[col].astype(str).astype("category")

        try:
            pb_version = _pkg_version("proteobayes")
        except PackageNotFoundError:
            pb_version = "0+unknown"
        out.uns["proteobayes"] = {
            "version": pb_version,
            "created_at": datetime.now().isoformat(timespec="seconds"),
        }

        cleaned = {}
        for key, value in out.uns.items():
            v = _h5_safe(value)
            if v is not None:
                cleaned[key] = v
        out.uns = cleaned

        Path(h5ad_path).parent.mkdir(parents=True, exist_ok=True)
        out.write_h5ad(h5ad_path, compression="gzip")
        log_info(f"Wrote {h5ad_path}")
