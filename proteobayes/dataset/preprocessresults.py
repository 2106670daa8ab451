from dataclasses import dataclass, field
import numpy as np
import polars as pl
from typing import Dict, List


@dataclass
class PreprocessResults:
    psms: pl.DataFrame                  # wide, one row per PSM_ID
    peptides: pl.DataFrame              # wide, one row per (MODIFIED_SEQUENCE, INDEX)
    proteins: pl.DataFrame              # wide, post quality filter, raw medians
    protein_meta: pl.DataFrame          # INDEX, N, NUM_PSMS, PROTEIN_GROUP
    condition_pivot: pl.DataFrame       # Sample, CONDITION, CONDITION_ORIG, REPLICATE
    layers: Dict[str, np.ndarray]       # proteins x samples; raw, log2, imputed, normalized
    dropped: pl.DataFrame               # INDEX, STAGE, REASON
    meta_filtering: Dict
    meta_imputation: Dict
    meta_normalization: Dict
    warnings: List[str] = field(default_factory=list)
