import itertools
from typing import List, Optional, Sequence, Tuple

import numpy as np

from proteobayes.utils.errors import DesignError


def split_contrast_name(name: str, levels: Sequence[str]) -> Tuple[str, str]:
    """
    Split 'A_vs_B' (or 'A_v_B') into (A, B) with both sides in `levels`.

    Every separator position is tried, so levels that themselves contain the
    separator are resolved correctly.
    """
    s = str(name).strip()
    known = set(levels)
    for sep in ("_vs_", "_v_"):
        start = s.find(sep)
        while start != -1:
            a, b = s[:start].strip(), s[start + len(sep):].strip()
            if a in known and b in known:
                return a, b
            start = s.find(sep, start + 1)
    if "_vs_" not in s and "_v_" not in s:
        raise DesignError(f"Contrast '{s}' must use _v_ or _vs_ as separator")
    raise DesignError(f"Contrast '{s}': conditions must be in {sorted(known)}")


class ContrastBuilder:
    def __init__(self, design_info, levels: Sequence[str], reference: str):
        """
        Parameters:
        - design_info: patsy DesignInfo of a treatment-coded design
        - levels: condition levels (sorted)
        - reference: the level absorbed by the intercept
        """
        self.design_info = design_info
        self.column_names = design_info.column_names
        self.levels = list(levels)
        self.reference = reference
        self.pairs: List[Tuple[str, str]] = []

    def _coef_index(self, level: str) -> Optional[int]:
        """Design column of a level, None for the reference level."""
        if level == self.reference:
            return None
        for i, name in enumerate(self.column_names):
            if name.endswith(f"[T.{level}]"):
                return i
        raise DesignError(f"No design column for condition '{level}'.")

    def _contrast_vector(self, group1: str, group2: str) -> np.ndarray:
        """
        Contrast vector for group1 - group2 (the intercept always cancels).
        """
        vec = np.zeros(len(self.column_names))
        i1, i2 = self._coef_index(group1), self._coef_index(group2)
        if i1 is not None:
            vec[i1] += 1
        if i2 is not None:
            vec[i2] -= 1
        return vec

    def _build(self, pairs: List[Tuple[str, str]]) -> Tuple[np.ndarray, List[str]]:
        if not pairs:
            raise DesignError("No contrast to test.")
        matrix = np.vstack([self._contrast_vector(a, b) for a, b in pairs]).T  # (p x m)
        names = [f"{a}_vs_{b}" for a, b in pairs]
        self.pairs = list(pairs)
        return matrix, names

    def make_against_reference(self):
        """Every non-reference level against the reference level."""
        return self._build([(lvl, self.reference) for lvl in self.levels if lvl != self.reference])

    def make_all_pairwise_contrasts(self):
        """
        Generate all pairwise contrasts between levels (not just vs baseline)
        Returns:
        - contrast_matrix: np.ndarray (p x m)
        - contrast_names: list of str (e.g., "B_vs_A")
        """
        return self._build(list(itertools.combinations(self.levels, 2)))

    def make_from_names(self, names: Sequence[str]):
        """Parse ['A_vs_B', 'A_v_B', ...] into contrasts."""
        return self._build([split_contrast_name(it, self.levels) for it in names])
