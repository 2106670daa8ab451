from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
import numpy as np
import polars as pl

from proteobayes.utils.utils import log_warning

STEPS = ("loading", "rollup", "filtering", "imputation", "normalization")


@dataclass
class IntermediateResults:
    # Store matrices at various stages of preprocessing
    matrices: Dict[str, np.ndarray] = field(default_factory=dict)

    # Store Polars DataFrames at various stages
    dfs: Dict[str, pl.DataFrame] = field(default_factory=dict)

    # Metadata per preprocessing step
    metadata: Dict[str, Dict[str, Any]] = field(default_factory=lambda: {s: {} for s in STEPS})

    # Data-quality warnings, surfaced at the end of the run
    warnings: List[str] = field(default_factory=list)

    # Sample columns of the protein matrix
    columns: Optional[list] = None

    # Protein identifiers, row order of every protein matrix
    index: Optional[np.ndarray] = None

    def set_columns_and_index(self, df: pl.DataFrame, index_col: str = "INDEX"):
        """Set columns and index once from a pivoted DataFrame."""
        self.columns = [col for col in df.columns if col != index_col]
        self.index = df.select(index_col).to_series().to_numpy()

    def add_matrix(self, name: str, matrix: np.ndarray):
        """Add a matrix with shape validation. Stored matrices are never overwritten."""
        if self.index is not None and matrix.shape[0] != len(self.index):
            raise ValueError(f"Matrix '{name}' has inconsistent row dimension.")
        if name in self.matrices:
            raise ValueError(f"Matrix '{name}' already recorded.")
        self.matrices[name] = matrix

    def add_df(self, name: str, df: pl.DataFrame):
        self.dfs[name] = df

    def add_metadata(self, step: str, key: str, value: Any):
        """Store per-step metadata (thresholds, counts, dropped rows...)."""
        if step not in self.metadata:
            raise ValueError(f"step must be one of {STEPS}")
        self.metadata[step][key] = value

    def add_warning(self, step: str, message: str):
        text = f"{step}: {message}"
        log_warning(text)
        self.warnings.append(text)
