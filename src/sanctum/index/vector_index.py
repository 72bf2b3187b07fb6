"""Exact cosine-similarity index.

Vectors are L2-normalised on insert and kept in insertion order; a query is a
single matrix-vector product over all rows (linear scan). Ranking is by
descending score, ties going to the earlier insertion, so results are fully
deterministic. The index is rebuilt from storage on startup / unlock and
cleared on lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

import numpy as np


class VectorIndex:
    """Thread-safe exact top-K index keyed by chunk id."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids: list[int] = []
        self._rows: list[np.ndarray] = []
        self._position: dict[int, int] = {}
        self._dimension: int | None = None
        self._matrix: np.ndarray | None = None  # cached stack of _rows

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, chunk_id: int, vector: Iterable[float]) -> None:
        """Add (or replace) the vector for *chunk_id*.

        A replaced vector moves to the end of the insertion order.

        Raises:
            ValueError: On an empty vector or a dimension mismatch.
        """
        row = self._normalise(vector)
        with self._lock:
            self._check_dimension(row)
            if chunk_id in self._position:
                self._remove_locked(chunk_id)
            self._position[chunk_id] = len(self._ids)
            self._ids.append(chunk_id)
            self._rows.append(row)
            self._dimension = row.shape[0]
            self._matrix = None

    def load(self, entries: Iterable[tuple[int, Iterable[float]]]) -> int:
        """Replace the index contents with *entries* (in order). Returns the count."""
        with self._lock:
            self.clear()
            for chunk_id, vector in entries:
                self.insert(chunk_id, vector)
            return len(self._ids)

    def remove(self, chunk_id: int) -> bool:
        """Drop *chunk_id*. Returns False if it was not indexed."""
        with self._lock:
            if chunk_id not in self._position:
                return False
            self._remove_locked(chunk_id)
            return True

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()
            self._rows.clear()
            self._position.clear()
            self._dimension = None
            self._matrix = None

    def _remove_locked(self, chunk_id: int) -> None:
        pos = self._position.pop(chunk_id)
        del self._ids[pos]
        del self._rows[pos]
        for later in self._ids[pos:]:
            self._position[later] -= 1
        if not self._ids:
            self._dimension = None
        self._matrix = None

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(self, vector: Iterable[float], k: int) -> list[tuple[int, float]]:
        """Return up to *k* ``(chunk_id, score)`` pairs, best first.

        Scores are cosine similarities in [-1, 1]; a zero vector scores 0
        against everything.
        """
        if k <= 0:
            return []
        q = self._normalise(vector)
        with self._lock:
            if not self._ids:
                return []
            self._check_dimension(q)
            if self._matrix is None:
                self._matrix = np.vstack(self._rows)
            scores = np.clip(self._matrix @ q, -1.0, 1.0)
            ids = list(self._ids)

        n = scores.shape[0]
        if k < n:
            # Keep every row tied with the k-th best so the tie-break stays exact.
            kth = np.partition(scores, n - k)[n - k]
            candidates = np.nonzero(scores >= kth)[0]
        else:
            candidates = np.arange(n)
        # lexsort: last key is primary; candidates are positions = insertion order
        order = candidates[np.lexsort((candidates, -scores[candidates]))][:k]
        return [(ids[i], float(scores[i])) for i in order]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __contains__(self, chunk_id: object) -> bool:
        with self._lock:
            return chunk_id in self._position

    def check_vector(self, vector: Iterable[float]) -> None:
        """Raise ValueError if *vector* could not be inserted."""
        row = self._normalise(vector)
        with self._lock:
            self._check_dimension(row)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_dimension(self, row: np.ndarray) -> None:
        if self._dimension is not None and row.shape[0] != self._dimension:
            raise ValueError(
                f"Vector dimension {row.shape[0]} does not match index dimension {self._dimension}"
            )

    @staticmethod
    def _normalise(vector: Iterable[float]) -> np.ndarray:
        values = vector if isinstance(vector, np.ndarray) else list(vector)
        row = np.asarray(values, dtype=np.float64).ravel()
        if row.size == 0:
            raise ValueError("Vector must not be empty")
        if not np.all(np.isfinite(row)):
            raise ValueError("Vector contains NaN or infinite values")
        norm = np.linalg.norm(row)
        return row / norm if norm > 0 else row
