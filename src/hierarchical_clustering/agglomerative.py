#!/usr/bin/env python3
# agglomerative.py
"""
Agglomerative clustering of raw observations: distances -> linkage -> cut.

Doxygen-style docstrings are used (with @param / @return tags).
"""

from typing import Optional, Tuple
import logging

import numpy as np

from hierarchical_clustering.cutting import cluster
from hierarchical_clustering.dendrogram import Dendrogram
from hierarchical_clustering.distances import Metric, compute_pairwise_distances
from hierarchical_clustering.linkage import linkage as build_linkage

__all__ = ["agglomerative"]

logger = logging.getLogger(__name__)


def agglomerative(X: np.ndarray,
                  threshold: float,
                  linkage: str = "single",
                  metric: Metric = "euclidean",
                  return_linkage: bool = False) -> Tuple[np.ndarray, Optional[Dendrogram]]:
    """
    Perform agglomerative clustering on data matrix X and cut the tree at threshold.

    @param X: data matrix shape (n_samples, n_features)
    @param threshold: merges higher than this distance are undone
    @param linkage: one of 'single', 'complete', 'average', 'weighted', 'centroid',
                    'median', 'ward'
    @param metric: 'euclidean', a scipy.spatial.distance.pdist metric name, or a
                   callable f(u, v) -> float
    @param return_linkage: if True, also return the Dendrogram

    @return: tuple (labels, dendrogram_or_None)
        - labels: integer array shape (n_samples,) with labels 1..k
        - dendrogram_or_None: Dendrogram with n_samples-1 merges if return_linkage else None
    """
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ValueError("X must be a 2D array (n_samples, n_features).")

    D = compute_pairwise_distances(X, metric=metric)
    Z = build_linkage(D, method=linkage, n_observations=X.shape[0])
    labels = cluster(Z, threshold)
    logger.info("agglomerative(%s): %d samples -> %d clusters at threshold %s",
                linkage, X.shape[0], np.unique(labels).size, threshold)

    if return_linkage:
        return labels, Z
    return labels, None
