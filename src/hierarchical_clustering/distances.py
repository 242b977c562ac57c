"""
Condensed pairwise distances: the input side of the linkage engine.

A condensed distance array stores the strict upper triangle of a symmetric
m x m distance matrix, pair by pair: (0,1), (0,2), ..., (0,m-1), (1,2), ...
It has n = m(m-1)/2 entries. Entries may be NaN; those are carried through
linkage as "larger than anything".

Doxygen-style docstrings are used (with @param / @return tags).
"""

from typing import Callable, Optional, Tuple, Union
import math

import numpy as np
from scipy.spatial.distance import pdist, squareform

__all__ = [
    "compute_pairwise_distances",
    "num_observations",
    "condensed_index",
    "to_square",
    "to_condensed",
    "as_condensed",
]

Metric = Union[str, Callable[[np.ndarray, np.ndarray], float]]


def _euclidean(X: np.ndarray) -> np.ndarray:
    sq = np.sum(X * X, axis=1, keepdims=True)  # (m,1)
    D2 = sq + sq.T - 2.0 * (X @ X.T)
    # Numerical safety: clip small negatives to zero
    D2[D2 < 0] = 0.0
    D = np.sqrt(D2, dtype=float)
    iu = np.triu_indices(X.shape[0], k=1)
    return D[iu]


def compute_pairwise_distances(X: np.ndarray, metric: Metric = "euclidean") -> np.ndarray:
    """
    Compute the condensed pairwise distance array for the rows of X.

    @param X: 2D array, shape (m, n_features). Rows are observations.
    @param metric: 'euclidean' (vectorized NumPy), any other metric name understood
                   by scipy.spatial.distance.pdist, or a callable f(u, v) -> float
                   applied to every pair of rows.
    @return: 1D float array of length m(m-1)/2, ordered (0,1), (0,2), ..., (m-2,m-1).
    @raises ValueError: if X is not 2D.
    """
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ValueError("X must be a 2D array (n_samples, n_features).")
    m = X.shape[0]

    if callable(metric):
        out = np.empty(m * (m - 1) // 2, dtype=float)
        p = 0
        for i in range(m):
            for j in range(i + 1, m):
                out[p] = float(metric(X[i], X[j]))
                p += 1
        return out
    if metric == "euclidean":
        return _euclidean(X)
    return pdist(X, metric=metric)


def num_observations(D: np.ndarray) -> int:
    """
    Number of observations m encoded by a condensed distance array.

    @param D: 1D condensed distance array of length n.
    @return: m such that m(m-1)/2 == n. An empty array maps to a single observation.
    @raises ValueError: if n is not a triangular number.
    """
    n = int(np.asarray(D).shape[0])
    if n == 0:
        return 1
    m = int(math.ceil(math.sqrt(2.0 * n)))
    if m * (m - 1) // 2 != n:
        raise ValueError(
            f"Condensed distance array of length {n} does not match any number "
            "of observations (expected m(m-1)/2 entries)."
        )
    return m


def condensed_index(m: int, i: int, j: int) -> int:
    """
    Offset of pair (i, j) in a condensed array over m observations.

    @param m: number of observations
    @param i: row index, 0 <= i < m
    @param j: column index, 0 <= j < m, j != i
    @return: position of d(i, j) in the condensed array
    """
    if i == j:
        raise ValueError("The diagonal is not stored in a condensed array.")
    if i > j:
        i, j = j, i
    return m * i - (i * (i + 1)) // 2 + (j - i - 1)


def to_square(D: np.ndarray) -> np.ndarray:
    """
    Expand a condensed array into the full symmetric matrix with a zero diagonal.

    @param D: 1D condensed distance array
    @return: 2D array shape (m, m)
    """
    D = np.asarray(D, dtype=float)
    num_observations(D)
    return squareform(D, force="tomatrix", checks=False)


def to_condensed(M: np.ndarray) -> np.ndarray:
    """
    Pack a symmetric distance matrix into its condensed form.

    NaN entries are allowed as long as they are mirrored across the diagonal.

    @param M: 2D array shape (m, m), symmetric, zero diagonal
    @return: 1D condensed array of length m(m-1)/2
    @raises ValueError: if M is not square, not symmetric or has a non-zero diagonal.
    """
    M = np.asarray(M, dtype=float)
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise ValueError(f"Distance matrix must be square, got shape {M.shape}.")
    if not np.all(np.diag(M) == 0):
        raise ValueError("Distance matrix must have a zero diagonal.")
    if not np.allclose(M, M.T, equal_nan=True):
        raise ValueError("Distance matrix must be symmetric.")
    return M[np.triu_indices(M.shape[0], k=1)].copy()


def as_condensed(D: np.ndarray, n_observations: Optional[int] = None) -> Tuple[np.ndarray, int]:
    """
    Normalize linkage input to a private float64 condensed copy.

    @param D: condensed 1D array, or a square (m, m) distance matrix
    @param n_observations: optional expected m; checked against the data
    @return: tuple (condensed copy, m)
    @raises ValueError: on malformed shape or a dimension mismatch
    """
    D = np.asarray(D, dtype=float)
    if D.ndim == 2:
        y = to_condensed(D)
        m = D.shape[0]
    elif D.ndim == 1:
        y = D.copy()
        m = num_observations(y)
    else:
        raise ValueError("Distances must be a condensed 1D array or a square 2D matrix.")

    if n_observations is not None:
        expected = int(n_observations)
        # zero and one observation both have no pairs
        if not (expected == m or (y.size == 0 and expected in (0, 1))):
            raise ValueError(
                f"Distance array of length {y.size} does not describe {expected} observations "
                f"(expected {expected * (expected - 1) // 2} entries)."
            )
        m = expected
    return y, m
