import numpy as np
import anndata as ad


def add_layer(adata: ad.AnnData, name: str, matrix: np.ndarray) -> None:
    """
    Append a named, read-only layer to `adata`.

    `matrix` is (n_proteins x n_samples) like every preprocessing matrix; it is
    stored transposed to AnnData's (obs x var). Existing layers are never replaced.
    """
    if name in adata.layers:
        raise ValueError(f"Layer '{name}' already exists; layers are append-only.")
    arr = np.array(matrix, dtype=np.float64, copy=True).T
    if arr.shape != adata.shape:
        raise ValueError(f"Layer '{name}' has shape {arr.shape}, expected {adata.shape}.")
    arr = np.ascontiguousarray(arr)
    arr.flags.writeable = False
    adata.layers[name] = arr
