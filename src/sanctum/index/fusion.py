"""Reciprocal Rank Fusion of the dense and keyword channels.

    score(d) = 1/(k + rank_dense) + 1/(k + rank_keyword)   k = 60

A chunk missing from one channel is treated as ranked just past that
channel's list.
"""

from __future__ import annotations

RRF_K = 60


def rrf_fuse(
    dense: list[tuple[int, float]],
    keyword: list[tuple[int, float]],
    top_k: int,
    k: int = RRF_K,
) -> list[tuple[int, float]]:
    """Combine two best-first ``(chunk_id, score)`` lists.

    Returns up to *top_k* ``(chunk_id, rrf_score)`` pairs, best first. Ties
    keep the order in which chunks first appear (dense list, then keyword).
    """
    dense_rank = {chunk_id: i + 1 for i, (chunk_id, _) in enumerate(dense)}
    keyword_rank = {chunk_id: i + 1 for i, (chunk_id, _) in enumerate(keyword)}
    missing_dense = len(dense) + k
    missing_keyword = len(keyword) + k

    seen = list(dict.fromkeys([c for c, _ in dense] + [c for c, _ in keyword]))
    scored = [
        (
            chunk_id,
            1.0 / (k + dense_rank.get(chunk_id, missing_dense))
            + 1.0 / (k + keyword_rank.get(chunk_id, missing_keyword)),
        )
        for chunk_id in seen
    ]
    # sorted() is stable, so equal scores stay in first-appearance order
    scored = sorted(scored, key=lambda pair: pair[1], reverse=True)
    return scored[:top_k]
