import logging
import warnings

import numpy as np
import pytest
from scipy.cluster import hierarchy

from hierarchical_clustering.distances import compute_pairwise_distances, to_square
from hierarchical_clustering.linkage import (
    LINKAGE_METHODS,
    candidate_list_size,
    lance_williams_update,
    rebuild_candidates,
    prune_candidates,
    linkage,
)


def two_blobs(seed=0, size=10):
    rng = np.random.default_rng(seed)
    A = rng.normal(loc=0.0, scale=0.2, size=(size, 2))
    B = rng.normal(loc=3.0, scale=0.2, size=(size, 2))
    return np.vstack([A, B])


@pytest.mark.parametrize(
    "m, method, expected",
    [
        (2, "average", 16),
        (63, "ward", 16),
        (64, "ward", 32),
        (200, "complete", 64),
        (600, "average", 256),
        (5000, "median", 512),
        (10, "single", 8),
        (5000, "single", 256),
    ],
)
def test_candidate_list_size(m, method, expected):
    assert candidate_list_size(m, method) == expected


@pytest.mark.parametrize(
    "method, expected",
    [
        ("single", 2.0),
        ("complete", 5.0),
        ("average", (1 * 2.0 + 3 * 5.0) / (1 + 3)),
        ("weighted", 3.5),
        ("centroid", (1 * 2.0 + 3 * 5.0) / 4 - 1.0 * 3 / 16),
        ("median", 3.5 - 0.25),
        ("ward", ((1 + 2) * 2.0 + (3 + 2) * 5.0 - 2 * 1.0) / (1 + 3 + 2)),
    ],
)
def test_lance_williams_update_scalar(method, expected):
    """
    Test the Lance-Williams update formula for every linkage method.
    """
    out = lance_williams_update(method, 2.0, 5.0, 1.0, n_k=1, n_l=3, n_q=2)
    assert pytest.approx(out, abs=1e-12) == expected


def test_lance_williams_update_vectorized_ward_uses_each_size():
    out = lance_williams_update("ward", np.array([2.0, 2.0]), np.array([4.0, 4.0]), 1.0,
                                n_k=1, n_l=1, n_q=np.array([1, 3]))
    assert np.allclose(out, [(2 * 2.0 + 2 * 4.0 - 1.0) / 3, (4 * 2.0 + 4 * 4.0 - 3.0) / 5])


@pytest.mark.parametrize("method, pick", [("single", min), ("complete", max)])
def test_lance_williams_update_nan_loses(method, pick):
    """A NaN distance on either side is replaced by the other one."""
    out = lance_williams_update(method, np.array([np.nan, 3.0, 1.0]),
                                np.array([3.0, np.nan, 2.0]), 0.5)
    assert np.array_equal(out, [3.0, 3.0, pick(1.0, 2.0)])
    assert np.isnan(lance_williams_update(method, np.nan, np.nan, 0.5))


def test_lance_williams_update_invalid_linkage():
    with pytest.raises(ValueError):
        lance_williams_update("weird", 1.0, 2.0, 0.5)


def test_rebuild_candidates_order_ties_and_nan():
    """
    Smallest distances first, NaN skipped, equal distances with the
    later scanned pair first, limited to N entries.
    """
    D = np.array([1.0, np.nan, 2.0, 1.0, 3.0, 0.5])  # (0,1) (0,2) (0,3) (1,2) (1,3) (2,3)
    Y = to_square(D)

    T, K, L = rebuild_candidates(Y, 0, 4)
    assert np.array_equal(T, [0.5, 1.0, 1.0, 2.0])
    assert np.array_equal(K, [2, 1, 0, 0])
    assert np.array_equal(L, [3, 2, 1, 3])

    # only the active part Y[1:, 1:] is scanned
    T, K, L = rebuild_candidates(Y, 1, 16)
    assert np.array_equal(T, [0.5, 1.0, 3.0])
    assert np.array_equal(K, [2, 1, 1])
    assert np.array_equal(L, [3, 2, 3])


def test_prune_candidates_drops_merged_and_moves_leftmost():
    """
    After merging (k, l) = (2, 4) with leftmost row bc = 0:
    - pairs touching 2 or 4 are dropped
    - pairs in row 0 follow it to row 2, keeping K < L
    """
    T = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    K = np.array([0, 1, 0, 0, 1])
    L = np.array([1, 4, 3, 2, 3])

    T, K, L = prune_candidates(T, K, L, k=2, l=4, bc=0)
    assert np.array_equal(T, [1.0, 3.0, 5.0])
    assert np.array_equal(K, [1, 2, 1])
    assert np.array_equal(L, [2, 3, 3])


def test_single_linkage_four_points_on_a_line():
    """{0, 1} and {10, 11} merge first, then the two groups at distance 9."""
    D = compute_pairwise_distances(np.array([[0.0], [1.0], [10.0], [11.0]]))
    Z = linkage(D, "single")

    assert np.array_equal(Z.to_matrix(), [[3, 4, 1], [1, 2, 1], [5, 6, 9]])


@pytest.mark.parametrize("method", LINKAGE_METHODS)
def test_linkage_tree_structure(method):
    """
    m-1 records; every leaf appears exactly once, every merged cluster
    at most once and only after the record that creates it.
    """
    X = two_blobs(seed=1)
    m = X.shape[0]
    Z = linkage(compute_pairwise_distances(X), method)

    assert len(Z) == m - 1
    Z.validate()
    ids = np.concatenate([Z.left, Z.right])
    leaves = ids[ids <= m]
    assert np.array_equal(np.sort(leaves), np.arange(1, m + 1))
    clusters = ids[ids > m]
    assert len(np.unique(clusters)) == len(clusters) == m - 2
    assert np.all(Z.left < Z.right)


@pytest.mark.parametrize("method", LINKAGE_METHODS)
def test_equidistant_points_merge_at_d(method):
    """With all distances equal, every method merges first at d."""
    Z = linkage(np.array([2.5, 2.5, 2.5]), method)
    assert len(Z) == 2
    assert Z.height[0] == 2.5


@pytest.mark.parametrize("method", ["single", "complete", "average", "weighted"])
@pytest.mark.parametrize("m", [20, 150, 300])
def test_linkage_matches_scipy_heights(method, m):
    """
    For the reducible methods the merge heights equal scipy's; larger m
    forces several rebuilds of the candidate list.
    """
    rng = np.random.default_rng(m)
    D = compute_pairwise_distances(rng.normal(size=(m, 3)))

    Z = linkage(D, method)
    expected = hierarchy.linkage(D, method=method)[:, 2]

    assert np.allclose(np.sort(Z.height), np.sort(expected), rtol=1e-10, atol=1e-12)
    assert np.all(np.diff(Z.height) >= -1e-12)


def test_linkage_ward_two_equal_pairs():
    """Ward update on raw distances: ((nk+nq) d_kq + (nl+nq) d_lq - nq d_kl) / (nk+nl+nq)."""
    D = compute_pairwise_distances(np.array([[0.0], [1.0], [10.0], [11.0]]))
    Z = linkage(D, "ward")

    assert np.allclose(Z.height[:2], [1.0, 1.0])
    # d({10,11},0) = (2*10 + 2*11 - 1)/3, d({10,11},1) = (2*9 + 2*10 - 1)/3
    d0 = (2 * 10.0 + 2 * 11.0 - 1.0) / 3
    d1 = (2 * 9.0 + 2 * 10.0 - 1.0) / 3
    assert pytest.approx(Z.height[2]) == (3 * d0 + 3 * d1 - 2 * 1.0) / 4


def test_linkage_square_input_and_input_not_modified():
    X = two_blobs(seed=2)
    D = compute_pairwise_distances(X)
    D_before = D.copy()

    Z1 = linkage(D, "average")
    Z2 = linkage(to_square(D), "average")

    assert np.array_equal(D, D_before)
    assert np.array_equal(Z1.to_matrix(), Z2.to_matrix())


@pytest.mark.parametrize("method", ["single", "complete", "average"])
def test_linkage_permutation_invariance(method):
    """Relabeling the observations gives the same heights and renamed clusters."""
    from hierarchical_clustering.cutting import cluster

    X = two_blobs(seed=3, size=6)
    perm = np.random.default_rng(4).permutation(X.shape[0])
    M = to_square(compute_pairwise_distances(X))

    Z1 = linkage(M, method)
    Z2 = linkage(M[perm][:, perm], method)
    assert np.allclose(Z1.height, Z2.height)

    h = np.sort(Z1.height)
    thresholds = np.concatenate([[-1.0], (h[:-1] + h[1:]) / 2, [h[-1] + 1.0]])
    for t in thresholds:
        a = cluster(Z1, t)[perm]
        b = cluster(Z2, t)
        assert np.array_equal(a[:, None] == a[None, :], b[:, None] == b[None, :])


def test_linkage_all_nan(caplog):
    """All-NaN distances: m-1 records with NaN heights, adjacent pairs, no error."""
    with caplog.at_level(logging.WARNING, logger="hierarchical_clustering.linkage"):
        Z = linkage(np.full(6, np.nan), "average")

    assert np.all(np.isnan(Z.height))
    assert np.array_equal(Z.left, [1, 3, 4])
    assert np.array_equal(Z.right, [2, 5, 6])
    Z.validate()
    assert "NaN" in caplog.text


def test_linkage_partial_nan():
    """Finite distances are used first, the NaN tail fills the rest."""
    D = np.array([1.0, np.nan, np.nan])  # only d(0, 1) is known
    Z = linkage(D, "single")

    assert np.array_equal(Z.left, [1, 3])
    assert np.array_equal(Z.right, [2, 4])
    assert Z.height[0] == 1.0
    assert np.isnan(Z.height[1])


def test_linkage_nan_loses_in_complete():
    """A NaN distance to one side of a merge is replaced by the other side."""
    D = np.array([1.0, np.nan, 4.0])  # (0,1) (0,2) (1,2)
    Z = linkage(D, "complete")
    assert np.array_equal(Z.to_matrix(), [[1, 2, 1], [3, 4, 4]])


@pytest.mark.parametrize("D", [np.empty(0), np.zeros((1, 1)), np.zeros((0, 0))])
def test_linkage_degenerate_sizes(D):
    Z = linkage(D)
    assert len(Z) == 0
    assert Z.n_observations in (0, 1)


def test_linkage_rejects_invalid_input():
    with pytest.raises(ValueError):
        linkage(np.zeros(4))
    with pytest.raises(ValueError):
        linkage(np.zeros(3), method="unknown")
    with pytest.raises(ValueError):
        linkage(np.zeros(3), n_observations=4)


def test_rebuild_candidates_keeps_all_ties_at_the_cut():
    """
    Many equal distances around the N-th smallest: the selection equals a full
    sort by (distance, later scanned pair first) truncated to N.
    """
    rng = np.random.default_rng(8)
    D = rng.integers(0, 4, size=45).astype(float)  # 10 observations, heavy ties
    D[rng.random(45) < 0.2] = np.nan
    Y = to_square(D)

    for bc in (0, 3):
        rows, cols = np.triu_indices(10 - bc, k=1)
        values = Y[bc:, bc:][rows, cols]
        idx = [i for i in range(values.size) if not np.isnan(values[i])]
        idx = sorted(idx, key=lambda i: (values[i], -i))[:8]

        T, K, L = rebuild_candidates(Y, bc, 8)
        assert np.array_equal(T, values[idx])
        assert np.array_equal(K, rows[idx] + bc)
        assert np.array_equal(L, cols[idx] + bc)


def naive_linkage_heights(D, method):
    """Full rescan of every active pair at each merge; O(m^3)."""
    M = to_square(D)
    m = M.shape[0]
    np.fill_diagonal(M, np.inf)
    sizes = np.ones(m)
    active = list(range(m))
    heights = []
    for _ in range(m - 1):
        sub = M[np.ix_(active, active)]
        i, j = np.unravel_index(np.argmin(sub), sub.shape)
        k, l = active[i], active[j]
        t = M[k, l]
        heights.append(t)
        nk, nl = sizes[k], sizes[l]
        for q in active:
            if q in (k, l):
                continue
            a, b, nq = M[k, q], M[l, q], sizes[q]
            if method == "single":
                new = min(a, b)
            elif method == "complete":
                new = max(a, b)
            elif method == "average":
                new = (nk * a + nl * b) / (nk + nl)
            elif method == "weighted":
                new = (a + b) / 2
            elif method == "centroid":
                new = (nk * a + nl * b) / (nk + nl) - nk * nl * t / (nk + nl) ** 2
            elif method == "median":
                new = (a + b) / 2 - t / 4
            else:
                new = ((nk + nq) * a + (nl + nq) * b - nq * t) / (nk + nl + nq)
            M[l, q] = M[q, l] = new
        sizes[l] = nk + nl
        active.remove(k)
    return np.array(heights)


@pytest.mark.parametrize("method", LINKAGE_METHODS)
@pytest.mark.parametrize("m", [40, 140])
def test_linkage_matches_full_rescan(method, m):
    """
    Heights equal a full rescan at every merge, including the inversions of
    centroid and median; m=140 rebuilds the candidate list many times.
    """
    rng = np.random.default_rng(100 + m)
    D = compute_pairwise_distances(rng.normal(size=(m, 2)))

    Z = linkage(D, method)
    assert np.allclose(Z.height, naive_linkage_heights(D, method), rtol=1e-9, atol=1e-12)


@pytest.mark.parametrize("method", ["centroid", "median", "ward"])
def test_infinite_distances_do_not_warn(method):
    """inf - inf becomes NaN quietly, also with warnings turned into errors."""
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert np.isnan(lance_williams_update(method, np.inf, np.inf, np.inf, 1, 1, 1))
        Z = linkage(np.array([1.0, np.inf, np.inf, np.inf, np.inf, 2.0]), method)
    assert len(Z) == 3
    assert Z.height[0] == 1.0
