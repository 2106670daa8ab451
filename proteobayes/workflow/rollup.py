"""Hierarchical median rollup (PSM -> peptide -> protein).

Each call collapses child rows sharing a grouping key into one parent row whose
per-sample value is the median of the children's present values. A parent with
no present child value for a sample stays absent (null), never zero. The number
of aggregated children is stored per parent in the `N` column.
"""

from typing import List, Optional, Sequence

import polars as pl

from proteobayes.utils.semantics import COL_N, COUNT_ALL, COUNT_PRESENT


def _as_nullable(sample_cols: Sequence[str]) -> List[pl.Expr]:
    # NaN coming back from numpy means absent
    return [pl.col(c).cast(pl.Float64).fill_nan(None).alias(c) for c in sample_cols]


def rollup_median(
    df: pl.DataFrame,
    keys: Sequence[str],
    sample_cols: Sequence[str],
    count_children: str = COUNT_ALL,
    carry: Optional[Sequence[str]] = None,
    n_col: str = COL_N,
) -> pl.DataFrame:
    """
    Median-aggregate `sample_cols` of child rows grouped by `keys`.

    Args:
        df: child-level wide table.
        keys: grouping key columns (parent identity).
        sample_cols: numeric sample columns to aggregate.
        count_children: "all" counts every child row; "present" counts only
            children with at least one present value.
        carry: extra columns copied from the first child of each group.
        n_col: name of the child-count column.

    Returns:
        One row per distinct key, in first-appearance order:
        keys + carry + [n_col] + sample_cols.
    """
    if count_children not in (COUNT_ALL, COUNT_PRESENT):
        raise ValueError(f"count_children must be '{COUNT_ALL}' or '{COUNT_PRESENT}', got {count_children!r}")

    keys = list(keys)
    sample_cols = list(sample_cols)
    carry = [c for c in (carry or []) if c not in keys]

    if count_children == COUNT_ALL:
        n_expr = pl.len().cast(pl.Int64).alias(n_col)
    else:
        n_expr = (
            pl.any_horizontal([pl.col(c).is_not_null() for c in sample_cols])
              .sum()
              .cast(pl.Int64)
              .alias(n_col)
        )

    out = (
        df.with_columns(_as_nullable(sample_cols))
          .group_by(keys, maintain_order=True)
          .agg(
              [pl.first(c).alias(c) for c in carry]
              + [n_expr]
              + [pl.col(c).median().alias(c) for c in sample_cols]
          )
    )
    return out.select(keys + carry + [n_col] + sample_cols)
