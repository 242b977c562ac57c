"""
Flat clusters from a dendrogram cut at a distance threshold.

checkcut marks which internal nodes stay connected under the cutoff,
labeltree pushes cluster numbers from the split nodes down to the leaves,
cluster chains the two.
"""

from typing import Union
import logging
import math

import numpy as np

from hierarchical_clustering.dendrogram import Dendrogram

__all__ = ["checkcut", "labeltree", "cluster", "cluster_ids"]

logger = logging.getLogger(__name__)

TreeLike = Union[Dendrogram, np.ndarray]


def _as_dendrogram(Z: TreeLike) -> Dendrogram:
    if isinstance(Z, Dendrogram):
        return Z
    return Dendrogram.from_matrix(Z)


def _check_cutoff(cutoff) -> float:
    try:
        value = float(cutoff)
    except (TypeError, ValueError):
        raise ValueError(f"Cutoff must be a real number, got {cutoff!r}.") from None
    if math.isnan(value):
        raise ValueError("Cutoff must not be NaN.")
    return value


def _children(tree: Dendrogram) -> np.ndarray:
    return np.column_stack([tree.left, tree.right]).reshape(-1, 2)


def checkcut(Z: TreeLike, cutoff: float) -> np.ndarray:
    """Find the internal nodes whose whole subtree merges at or below the cutoff.

    Args:
        Z: Dendrogram or (m-1, 3) linkage matrix with 1-based ids.
        cutoff: Distance threshold. +/-inf are allowed, NaN is not.

    Returns:
        Boolean array conn of length m-1; conn[i] describes the node created by
        merge i. NaN heights are never connected.
    """
    tree = _as_dendrogram(Z)
    cutoff = _check_cutoff(cutoff)
    m = tree.n_observations
    children = _children(tree)

    conn = tree.height <= cutoff
    # a connected node can still be cut below through a non-leaf child
    todo = conn & np.any(children > m, axis=1)

    while np.any(todo):
        rows = np.nonzero(todo)[0]
        cdone = np.ones((rows.size, 2), dtype=bool)
        for j in range(2):
            crows = children[rows, j]
            t = crows > m
            if np.any(t):
                child = crows[t] - m - 1
                cdone[t, j] = ~todo[child]
                conn[rows[t]] &= conn[child]
        todo[rows[np.all(cdone, axis=1)]] = False

    return conn


def labeltree(Z: TreeLike, conn: np.ndarray, dense: bool = True) -> np.ndarray:
    """Assign a cluster number to every leaf.

    Each side of internal node i starts with its own number (left i+1, right
    m+i). Starting from the nodes that are cut, a side's number is written to
    the leaf below it, or to both sides of a connected child node, which is then
    processed the same way. A fully connected tree is a single cluster 1.

    Args:
        Z: Dendrogram or (m-1, 3) linkage matrix with 1-based ids.
        conn: Output of checkcut for Z.
        dense: Renumber the clusters 1..k in the order of their raw numbers.

    Returns:
        Integer array of length m, the cluster of each observation.
    """
    tree = _as_dendrogram(Z)
    n = len(tree)
    m = tree.n_observations
    conn = np.array(conn, dtype=bool).reshape(-1)
    if conn.size != n:
        raise ValueError(f"Connectivity has {conn.size} entries, the tree has {n} nodes.")
    if m == 0:
        return np.empty(0, dtype=np.int64)

    children = _children(tree)
    T = np.ones(m, dtype=np.int64)
    todo = np.ones(n, dtype=bool)
    clustlist = np.column_stack([np.arange(1, n + 1), np.arange(n + 1, 2 * n + 1)]).astype(np.int64)

    while np.any(todo):
        rows = np.nonzero(todo & ~conn)[0]
        if rows.size == 0:
            break
        for j in range(2):
            kids = children[rows, j]
            leaf = kids <= m
            T[kids[leaf] - 1] = clustlist[rows[leaf], j]

            joint = ~leaf
            joint[joint] = conn[kids[joint] - m - 1]
            if np.any(joint):
                childnum = kids[joint] - m - 1
                clustlist[childnum, :] = clustlist[rows[joint], j][:, None]
                conn[childnum] = False
        todo[rows] = False

    if dense:
        _, inverse = np.unique(T, return_inverse=True)
        T = inverse.reshape(-1).astype(np.int64) + 1
    return T


def cluster(Z: TreeLike, threshold: float) -> np.ndarray:
    """Cut the tree at a distance threshold.

    Args:
        Z: Dendrogram or (m-1, 3) linkage matrix with 1-based ids.
        threshold: Merges above this height are undone.

    Returns:
        Cluster number (1..k) of each observation.
    """
    conn = checkcut(Z, threshold)
    labels = labeltree(Z, conn)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("cluster(threshold=%s): %d observations in %d clusters",
                     threshold, labels.size, np.unique(labels).size)
    return labels


def cluster_ids(Z: TreeLike, threshold: float) -> np.ndarray:
    """Distinct cluster numbers produced by cluster(Z, threshold)."""
    return np.unique(cluster(Z, threshold))
