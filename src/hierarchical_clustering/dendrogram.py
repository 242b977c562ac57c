"""Dendrogram: the merge sequence produced by linkage and consumed by cluster cutting.

Ids are 1-based. Leaves are 1..m; the cluster created by merge record i
(0-based) gets id m + 1 + i.
"""

from dataclasses import dataclass
from typing import Iterator, NamedTuple, Optional

import numpy as np

__all__ = ["MergeRecord", "Dendrogram"]


class MergeRecord(NamedTuple):
    left: int
    right: int
    height: float


@dataclass(frozen=True, eq=False)
class Dendrogram:
    """Three parallel columns, one row per merge.

    Args:
        left: int array, id of the first merged node (always the smaller id).
        right: int array, id of the second merged node.
        height: float array, merge distance (NaN once the distances ran out).
        n_observations: number of leaves m. Must be len + 1 unless the tree is empty.
    """

    left: np.ndarray
    right: np.ndarray
    height: np.ndarray
    n_observations: int

    def __post_init__(self):
        left = np.array(self.left, dtype=np.int64).reshape(-1)
        right = np.array(self.right, dtype=np.int64).reshape(-1)
        height = np.array(self.height, dtype=float).reshape(-1)
        if not (left.shape == right.shape == height.shape):
            raise ValueError("Dendrogram columns must have the same length.")
        m = int(self.n_observations)
        if left.size == 0:
            if m not in (0, 1):
                raise ValueError(f"An empty dendrogram describes 0 or 1 observations, not {m}.")
        elif m != left.size + 1:
            raise ValueError(f"{left.size} merges require {left.size + 1} observations, got {m}.")
        for arr in (left, right, height):
            arr.flags.writeable = False
        object.__setattr__(self, "left", left)
        object.__setattr__(self, "right", right)
        object.__setattr__(self, "height", height)
        object.__setattr__(self, "n_observations", m)
        self.validate()

    def __len__(self) -> int:
        return int(self.left.size)

    def __getitem__(self, i: int) -> MergeRecord:
        return MergeRecord(int(self.left[i]), int(self.right[i]), float(self.height[i]))

    def __iter__(self) -> Iterator[MergeRecord]:
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        return f"Dendrogram(n_observations={self.n_observations}, merges={len(self)})"

    @classmethod
    def empty(cls, n_observations: int = 1) -> "Dendrogram":
        return cls(np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64),
                   np.empty(0, dtype=float), n_observations)

    @classmethod
    def from_matrix(cls, Z: np.ndarray, n_observations: Optional[int] = None) -> "Dendrogram":
        """Build a dendrogram from an (m-1, 3) matrix [left_id, right_id, height].

        Args:
            Z: matrix with 1-based ids in the first two columns.
            n_observations: only needed to tell 0 from 1 observation for an empty Z.

        Returns:
            A validated Dendrogram.
        """
        Z = np.asarray(Z, dtype=float)
        if Z.ndim != 2 or Z.shape[1] != 3:
            raise ValueError(f"Linkage matrix must have shape (m-1, 3), got {Z.shape}.")
        ids = Z[:, :2]
        if not np.all(np.isfinite(ids)) or not np.all(ids == np.floor(ids)):
            raise ValueError("Linkage matrix ids must be integers.")
        if n_observations is None:
            n_observations = Z.shape[0] + 1
        return cls(ids[:, 0].astype(np.int64), ids[:, 1].astype(np.int64), Z[:, 2], n_observations)

    def to_matrix(self) -> np.ndarray:
        """(m-1, 3) float matrix [left_id, right_id, height] with 1-based ids."""
        return np.column_stack([self.left, self.right, self.height]).astype(float).reshape(-1, 3)

    def to_scipy(self) -> np.ndarray:
        """SciPy-style (m-1, 4) linkage: 0-based ids, height, size of the new cluster."""
        m = self.n_observations
        sizes = np.ones(m + len(self) + 1, dtype=np.int64)
        out = np.empty((len(self), 4), dtype=float)
        for i, (a, b, h) in enumerate(self):
            sizes[m + 1 + i] = sizes[a] + sizes[b]
            out[i] = (a - 1, b - 1, h, sizes[m + 1 + i])
        return out

    def validate(self) -> None:
        """Check that the records form a binary tree over leaves 1..m.

        Raises:
            ValueError: if an id is out of range, used twice, used before it is
                created, or a record is not ordered left < right.
        """
        m = self.n_observations
        used = np.zeros(m + len(self) + 1, dtype=bool)
        for i, (a, b, _) in enumerate(self):
            if a >= b:
                raise ValueError(f"Record {i}: left id {a} must be smaller than right id {b}.")
            for node in (a, b):
                # record i can only reference leaves and clusters made by records < i
                if node < 1 or node > m + i:
                    raise ValueError(f"Record {i}: id {node} is out of range.")
                if used[node]:
                    raise ValueError(f"Record {i}: id {node} is merged twice.")
                used[node] = True
