# utils/utils.py
import numpy as np

from ..errors import ConfigurationError


def _check_embedding_args(E, tau):
    if isinstance(E, bool) or not (isinstance(E, (int, np.integer)) and E >= 1):
        raise ConfigurationError(f"E must be an integer >= 1, got {E!r}.")
    if isinstance(tau, bool) or not (isinstance(tau, (int, np.integer)) and tau >= 1):
        raise ConfigurationError(f"tau must be an integer >= 1, got {tau!r}.")


def embed_series(ts, E, tau):
    """
    Time-delay embedding aligned to the rows of the series.

    Row i holds (x[i], x[i - tau], ..., x[i - (E-1)*tau]). Rows that reach
    before the start of the series, or that reference a missing value, are
    marked invalid and filled with NaN.

    Args:
        ts (list or np.ndarray): Shape (n_samples,). Missing values are NaN.
        E (int): Embedding dimension.
        tau (int): Time delay (stride).

    Returns:
        tuple[np.ndarray, np.ndarray]: embedding of shape (n_samples, E) and
        boolean validity mask of shape (n_samples,).
    """
    x = np.asarray(ts, dtype=np.float64)
    if x.ndim != 1:
        raise ConfigurationError("ts must have shape (n_samples,).")
    _check_embedding_args(E, tau)

    n = x.shape[0]
    window_size = (E - 1) * tau + 1
    emb = np.full((n, E), np.nan, dtype=np.float64)
    if n >= window_size:
        # newest coordinate first
        td = get_td_embedding_np(x[:, None], E, tau)[:, ::-1, 0]
        emb[window_size - 1:] = td

    valid = ~np.isnan(emb).any(axis=1)
    return emb, valid


def get_td_embedding_np(time_series, dim, stride):
    num_points, num_dims = time_series.shape
    # Calculate the size of the unfolding window
    window_size = (dim - 1) * stride + 1

    if num_points < window_size:
        raise ValueError("Time series is too short for the given dimensions and stride.")

    shape = (num_points - window_size + 1, dim, num_dims)
    strides = (time_series.strides[0], stride * time_series.strides[0], time_series.strides[1])
    tdemb = np.lib.stride_tricks.as_strided(time_series, shape=shape, strides=strides, writeable=False)

    return tdemb


def target_rows(num_rows, rows, tp):
    """
    Target row (row + tp) for each row and whether it lies inside the series.
    """
    rows = np.asarray(rows)
    target = rows + tp
    inside = (target >= 0) & (target < num_rows)
    return target, inside
