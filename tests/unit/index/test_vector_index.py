"""Tests for the exact cosine-similarity index."""

from __future__ import annotations

import numpy as np
import pytest

from sanctum.index import VectorIndex


def test_empty_index_returns_nothing(index):
    assert index.query([1.0, 0.0], k=5) == []
    assert len(index) == 0
    assert index.dimension is None


def test_query_ranks_by_cosine(index):
    index.insert(1, [1.0, 0.0])
    index.insert(2, [0.0, 1.0])
    index.insert(3, [1.0, 1.0])
    result = index.query([2.0, 0.1], k=3)
    assert [cid for cid, _ in result] == [1, 3, 2]
    assert result[0][1] == pytest.approx(0.99875, abs=1e-4)


def test_scale_does_not_matter(index):
    index.insert(1, [3.0, 4.0])
    (cid, score), = index.query([30.0, 40.0], k=1)
    assert cid == 1
    assert score == pytest.approx(1.0)


def test_k_limits_results(index):
    for i in range(10):
        index.insert(i, [1.0, float(i)])
    assert len(index.query([1.0, 0.0], k=4)) == 4
    assert index.query([1.0, 0.0], k=0) == []


def test_k_larger_than_index(index):
    index.insert(1, [1.0, 0.0])
    assert len(index.query([1.0, 0.0], k=50)) == 1


def test_ties_go_to_earlier_insertion(index):
    for cid in (7, 3, 9, 5):
        index.insert(cid, [1.0, 1.0])
    assert [cid for cid, _ in index.query([1.0, 1.0], k=2)] == [7, 3]
    assert [cid for cid, _ in index.query([1.0, 1.0], k=4)] == [7, 3, 9, 5]


def test_zero_vector_scores_zero(index):
    index.insert(1, [0.0, 0.0])
    index.insert(2, [1.0, 0.0])
    scores = dict(index.query([1.0, 0.0], k=2))
    assert scores[1] == 0.0
    assert scores[2] == pytest.approx(1.0)


def test_dimension_mismatch_rejected(index):
    index.insert(1, [1.0, 0.0, 0.0])
    with pytest.raises(ValueError, match="dimension"):
        index.insert(2, [1.0, 0.0])
    with pytest.raises(ValueError, match="dimension"):
        index.query([1.0, 0.0], k=1)
    with pytest.raises(ValueError):
        index.check_vector([1.0])


def test_invalid_vectors_rejected(index):
    with pytest.raises(ValueError, match="empty"):
        index.insert(1, [])
    with pytest.raises(ValueError, match="NaN"):
        index.insert(1, [float("nan"), 1.0])


def test_remove(index):
    index.insert(1, [1.0, 0.0])
    index.insert(2, [0.9, 0.1])
    assert index.remove(1) is True
    assert index.remove(1) is False
    assert 1 not in index
    assert [cid for cid, _ in index.query([1.0, 0.0], k=5)] == [2]


def test_removing_last_resets_dimension(index):
    index.insert(1, [1.0, 0.0])
    index.remove(1)
    assert index.dimension is None
    index.insert(2, [1.0, 0.0, 0.0])
    assert index.dimension == 3


def test_reinsert_moves_to_end(index):
    index.insert(1, [1.0, 0.0])
    index.insert(2, [1.0, 0.0])
    index.insert(1, [1.0, 0.0])
    assert [cid for cid, _ in index.query([1.0, 0.0], k=2)] == [2, 1]
    assert len(index) == 2


def test_load_replaces_contents(index):
    index.insert(99, [0.0, 1.0])
    count = index.load([(1, [1.0, 0.0]), (2, np.array([0.0, 1.0], dtype=np.float32))])
    assert count == 2
    assert 99 not in index


def test_clear(index):
    index.insert(1, [1.0, 0.0])
    index.clear()
    assert len(index) == 0
    assert index.query([1.0, 0.0], k=1) == []


def test_matches_brute_force():
    rng = np.random.default_rng(7)
    vectors = rng.normal(size=(50, 8))
    idx = VectorIndex()
    for i, v in enumerate(vectors):
        idx.insert(i, v)
    q = rng.normal(size=8)
    expected = np.argsort(-(vectors @ q) / np.linalg.norm(vectors, axis=1), kind="stable")[:5]
    assert [cid for cid, _ in idx.query(q, k=5)] == list(expected)
