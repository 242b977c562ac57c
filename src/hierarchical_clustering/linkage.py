#!/usr/bin/env python3
# linkage.py
"""
Agglomerative hierarchical cluster tree from condensed pairwise distances.

The distances live in a square working matrix whose active part shrinks by one
row/column per merge: the two merged clusters (k, l) are replaced by the new
cluster in row/col l, and the leftmost active row/col bc is moved into row/col k.
Instead of searching the whole active matrix for the minimum at every step, a
short sorted list of the N smallest known distances (the candidate list) is kept
and only rebuilt by a full scan once it runs empty. Entries of the list stay valid
until one of their endpoints is merged, and entries not smaller than the smallest
distance created by the last merge are dropped, since that new distance may now
be the minimum.

Distances to the merged cluster are updated with the Lance-Williams rules:
    - 'single', 'complete', 'average', 'weighted', 'centroid', 'median', 'ward'

NaN distances are never selected. If only NaN distances remain before m-1 merges
are done, the remaining clusters are joined pairwise with NaN heights.

Doxygen-style docstrings are used (with @param / @return tags).
"""

from typing import Optional, Tuple, Union
import logging

import numpy as np

from hierarchical_clustering.dendrogram import Dendrogram
from hierarchical_clustering.distances import as_condensed, to_square

__all__ = [
    "LINKAGE_METHODS",
    "candidate_list_size",
    "lance_williams_update",
    "rebuild_candidates",
    "prune_candidates",
    "linkage",
]

logger = logging.getLogger(__name__)

LINKAGE_METHODS = ("single", "complete", "average", "weighted", "centroid", "median", "ward")

# methods whose update depends on cluster cardinalities
_methods_using_sizes = frozenset({"average", "centroid", "ward"})

# (m above which the size applies, candidate list size)
_candidate_sizes = ((1023, 512), (511, 256), (255, 128), (127, 64), (63, 32))
_min_candidate_size = 16

Candidates = Tuple[np.ndarray, np.ndarray, np.ndarray]


def _check_method(method: str) -> None:
    if method not in LINKAGE_METHODS:
        raise ValueError(
            f"Unsupported linkage: {method!r}. Expected one of {', '.join(LINKAGE_METHODS)}."
        )


def candidate_list_size(m: int, method: str) -> int:
    """
    Number of smallest distances kept between two full scans.

    @param m: number of observations
    @param method: linkage method; single linkage uses half the size
    @return: N in 8..512
    """
    N = _min_candidate_size
    for bound, size in _candidate_sizes:
        if m > bound:
            N = size
            break
    if method == "single":
        N //= 2
    return N


def lance_williams_update(method: str,
                          d_kq: Union[float, np.ndarray],
                          d_lq: Union[float, np.ndarray],
                          d_kl: float,
                          n_k: int = 1,
                          n_l: int = 1,
                          n_q: Union[int, np.ndarray] = 1) -> Union[float, np.ndarray]:
    """
    Distance between the merged cluster {k, l} and cluster q.

    Works elementwise on arrays of q. For 'single' and 'complete' a NaN distance
    loses against a number: the other side is taken.

    @param method: one of LINKAGE_METHODS
    @param d_kq: distance(s) between cluster k and q
    @param d_lq: distance(s) between cluster l and q
    @param d_kl: distance between k and l (the merge height)
    @param n_k: size of cluster k
    @param n_l: size of cluster l
    @param n_q: size(s) of cluster q (only used by 'ward')
    @return: updated distance(s) d({k, l}, q)
    @raises ValueError: on an unknown method
    """
    _check_method(method)
    a = np.asarray(d_kq, dtype=float)
    b = np.asarray(d_lq, dtype=float)
    with np.errstate(invalid="ignore"):
        out = _update(method, a, b, d_kl, n_k, n_l, n_q)

    if np.ndim(out) == 0:
        return float(out)
    return out


def _update(method, a, b, d_kl, n_k, n_l, n_q):
    if method == "single":
        out = np.where(a < b, a, np.where(np.isnan(b), a, b))
    elif method == "complete":
        out = np.where(a > b, a, np.where(np.isnan(b), a, b))
    elif method == "average":
        nkpnl = n_k + n_l
        out = a * (n_k / nkpnl) + b * (n_l / nkpnl)
    elif method == "weighted":
        out = (a + b) / 2
    elif method == "centroid":
        nkpnl = n_k + n_l
        shift = d_kl * (n_k * n_l) / (nkpnl * nkpnl)
        out = a * (n_k / nkpnl) + b * (n_l / nkpnl) - shift
    elif method == "median":
        out = (a + b) / 2 - d_kl / 4
    else:  # ward
        n_q = np.asarray(n_q)
        out = (a * (n_k + n_q) + b * (n_l + n_q) - d_kl * n_q) / (n_k + n_l + n_q)
    return out


def rebuild_candidates(Y: np.ndarray, bc: int, N: int) -> Candidates:
    """
    Scan the active part Y[bc:, bc:] and collect its N smallest non-NaN distances.

    Pairs are visited row by row (j < i). Equal distances are ordered with the
    later visited pair first.

    @param Y: square working distance matrix
    @param bc: first active row/col
    @param N: candidate list size
    @return: tuple (T, K, L) sorted by T ascending, with K < L absolute positions
    """
    rows, cols = np.triu_indices(Y.shape[0] - bc, k=1)
    values = Y[bc:, bc:][rows, cols]
    order = np.nonzero(~np.isnan(values))[0]
    if order.size > N:
        # keep every tie of the N-th smallest value, the sort below breaks them
        nth = values[order][np.argpartition(values[order], N - 1)[N - 1]]
        order = order[values[order] <= nth]
    order = order[np.lexsort((-order, values[order]))][:N]
    return values[order], rows[order] + bc, cols[order] + bc


def prune_candidates(T: np.ndarray, K: np.ndarray, L: np.ndarray,
                     k: int, l: int, bc: int) -> Candidates:
    """
    Drop candidates invalidated by merging k and l and follow the move of row bc to k.

    @param T: candidate distances (sorted)
    @param K: candidate row positions
    @param L: candidate column positions, K < L
    @param k: merged row/col that receives the leftmost row/col bc
    @param l: merged row/col that receives the new cluster
    @param bc: leftmost active row/col
    @return: tuple (T, K, L), order preserved
    """
    keep = (K != k) & (L != l) & (K != l) & (L != k)
    T, K, L = T[keep], K[keep].copy(), L[keep].copy()
    moved = K == bc
    if np.any(moved):
        other = L[moved]
        K[moved] = np.minimum(other, k)
        L[moved] = np.maximum(other, k)
    return T, K, L


def linkage(D: np.ndarray,
            method: str = "single",
            n_observations: Optional[int] = None) -> Dendrogram:
    """
    Build the agglomerative hierarchical cluster tree.

    @param D: condensed distance array of length m(m-1)/2, or a square (m, m)
              distance matrix. Never modified; a private copy is used.
    @param method: one of 'single', 'complete', 'average', 'weighted', 'centroid',
                   'median', 'ward'
    @param n_observations: optional m, checked against the length of D
    @return: Dendrogram with m-1 merges (empty for m <= 1). Record i creates the
             cluster with id m+1+i; ids are 1-based, the smaller one goes left.
    @raises ValueError: on an unknown method or malformed / mismatching D
    """
    _check_method(method)
    y, m = as_condensed(D, n_observations)
    if m <= 1:
        return Dendrogram.empty(m)

    Y = to_square(y)
    bn = m - 1  # number of merges
    left = np.empty(bn, dtype=np.int64)
    right = np.empty(bn, dtype=np.int64)
    height = np.full(bn, np.nan)

    obp = np.arange(m, dtype=np.int64)  # position -> 0-based node id
    uses_sizes = method in _methods_using_sizes
    scl = np.ones(m, dtype=np.int64) if uses_sizes else None
    nk = nl = 1
    nq = 1

    N = candidate_list_size(m, method)
    T = np.empty(0)
    K = np.empty(0, dtype=np.int64)
    L = np.empty(0, dtype=np.int64)
    t3 = np.inf
    rebuilds = 0

    bc = 0
    while bc < bn:
        # sorted, NaN-free: the entries below t3 form a prefix
        h = int(np.count_nonzero(T < t3))
        T, K, L = T[:h], K[:h], L[:h]
        t3 = np.inf
        if T.size == 0:
            T, K, L = rebuild_candidates(Y, bc, N)
            rebuilds += 1
            if T.size == 0:
                break

        k, l, t1 = int(K[0]), int(L[0]), float(T[0])
        T, K, L = prune_candidates(T[1:], K[1:], L[1:], k, l, bc)

        a, b = obp[k], obp[l]
        left[bc], right[bc] = (a + 1, b + 1) if a < b else (b + 1, a + 1)
        height[bc] = t1

        obp[k] = obp[bc]
        obp[l] = m + bc

        others = np.arange(bc, m)
        others = others[(others != k) & (others != l)]
        if uses_sizes:
            nk, nl = int(scl[k]), int(scl[l])
            scl[k] = scl[bc]
            scl[l] = nk + nl
            nq = scl[others]

        if others.size:
            new = lance_williams_update(method, Y[k, others], Y[l, others], t1, nk, nl, nq)
            Y[l, others] = new
            Y[others, l] = new
            finite = new[~np.isnan(new)]
            if finite.size:
                t3 = float(finite.min())

        # move the leftmost row/col into the freed slot k
        if k != bc:
            rest = np.arange(bc + 1, m)
            rest = rest[rest != k]
            Y[k, rest] = Y[bc, rest]
            Y[rest, k] = Y[rest, bc]

        bc += 1

    if bc < bn:
        logger.warning(
            "Only NaN distances left after %d of %d merges; joining the rest with NaN heights.",
            bc, bn,
        )
    for bc in range(bc, bn):
        k, l = bc, bc + 1
        a, b = obp[k], obp[l]
        left[bc], right[bc] = (a + 1, b + 1) if a < b else (b + 1, a + 1)
        obp[l] = m + bc

    logger.debug("linkage(%s): m=%d, candidate list size %d, %d full scans", method, m, N, rebuilds)
    return Dendrogram(left, right, height, m)
