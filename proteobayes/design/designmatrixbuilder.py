import pandas as pd
import numpy as np
import patsy
from typing import Optional, Dict, Any, List
from proteobayes.utils.errors import DesignError


class DesignMatrixBuilder:
    """
    Treatment-coded design: an intercept (the reference condition) plus one
    indicator column per other condition.
    """

    def __init__(
        self,
        sample_metadata: pd.DataFrame,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.meta = sample_metadata.copy()
        self.config = config or {}
        self.group_col = self.config.get("group_column", "CONDITION")
        self.formula: Optional[str] = None
        self.design_matrix: Optional[np.ndarray] = None
        self.design_info: Optional[patsy.DesignInfo] = None
        self.levels: List[str] = []
        self.reference: Optional[str] = None

    def build(self):
        if self.group_col not in self.meta.columns:
            raise DesignError(f"{self.group_col} not found in sample metadata.")

        self.levels = sorted(self.meta[self.group_col].astype(str).unique())
        if len(self.levels) < 2:
            raise DesignError(f"Need >= 2 conditions for a group design; found {self.levels}")

        reference = self.config.get("reference")
        if reference is None:
            reference = self.levels[0]
        if reference not in self.levels:
            raise DesignError(f"Reference condition '{reference}' not found in {self.levels}")
        self.reference = reference

        self.meta[self.group_col] = pd.Categorical(self.meta[self.group_col].astype(str), categories=self.levels)
        self.formula = f"1 + C({self.group_col}, Treatment(reference={reference!r}))"
        design_df = patsy.dmatrix(self.formula, self.meta, return_type="dataframe")

        self.design_matrix = design_df.to_numpy(dtype=np.float64)
        self.design_info = design_df.design_info

        rank = np.linalg.matrix_rank(self.design_matrix)
        if rank < self.design_matrix.shape[1]:
            raise DesignError(
                f"Design matrix is singular (rank {rank} < {self.design_matrix.shape[1]} columns)."
            )

        return self.design_matrix, self.design_info
