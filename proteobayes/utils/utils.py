import logging
import sys
import time
from contextlib import contextmanager
from functools import wraps
from typing import Callable, Optional, Sequence

import numpy as np
import polars as pl

logger = logging.getLogger("proteobayes")
if not logger.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%H:%M:%S"))
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

_INDENT = {"level": 0}


def _prefix(msg: str) -> str:
    return "  " * _INDENT["level"] + str(msg)


def log_info(msg: str) -> None:
    logger.info(_prefix(msg))


def log_warning(msg: str) -> None:
    logger.warning(_prefix(msg))


@contextmanager
def log_indent():
    """Indent every log line emitted inside the block by one level."""
    _INDENT["level"] += 1
    try:
        yield
    finally:
        _INDENT["level"] -= 1


def log_time(label: str) -> Callable:
    """Decorator logging start and wall time of a pipeline step."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            log_info(f"{label}...")
            start = time.perf_counter()
            with log_indent():
                result = func(*args, **kwargs)
            log_info(f"{label} done in {time.perf_counter() - start:.2f}s")
            return result
        return wrapper
    return decorator


def polars_matrix_to_numpy(
    df: pl.DataFrame,
    columns: Optional[Sequence[str]] = None,
    index_col: str = "INDEX",
) -> np.ndarray:
    """Float matrix of the given (default: all non-index) columns, NaN for nulls."""
    if columns is None:
        columns = [c for c in df.columns if c != index_col]
    return (
        df.select([pl.col(c).cast(pl.Float64) for c in columns])
          .to_numpy()
          .astype(np.float64)
    )
