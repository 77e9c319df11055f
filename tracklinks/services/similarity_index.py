"""Cosine similarity ranking over track embeddings."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

import numpy as np

DEFAULT_CANDIDATE_CAP = 500


@dataclass(slots=True, frozen=True)
class IndexEntry:
    track_id: int
    vector: Sequence[float]
    popularity: int = 0
    explicit: bool = False


@dataclass(slots=True, frozen=True)
class RankedTrack:
    track_id: int
    score: float


CandidateFilter = Callable[[IndexEntry], bool]


def exclude_explicit(entry: IndexEntry) -> bool:
    return not entry.explicit


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Returns ``0.0`` when either vector has zero norm or the dimensions differ.
    """

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape or vec_a.size == 0:
        return 0.0
    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0
    return float(np.dot(vec_a, vec_b) / norm)


class SimilarityIndex:
    """Rank a bounded candidate set against a query vector.

    Ordering is score descending, then popularity descending, then track id
    ascending, so identical inputs always rank identically.
    """

    def __init__(self, candidate_cap: int = DEFAULT_CANDIDATE_CAP) -> None:
        self.candidate_cap = max(1, int(candidate_cap))

    def rank(
        self,
        query: Sequence[float],
        candidates: Iterable[IndexEntry],
        limit: int,
        filter: CandidateFilter | None = None,
    ) -> list[RankedTrack]:
        if limit <= 0:
            return []

        entries: list[IndexEntry] = []
        for entry in candidates:
            if filter is not None and not filter(entry):
                continue
            if not entry.vector:
                continue
            entries.append(entry)
            if len(entries) >= self.candidate_cap:
                break
        if not entries:
            return []

        scored = [
            (cosine_similarity(query, entry.vector), entry.popularity or 0, entry.track_id)
            for entry in entries
        ]
        scored.sort(key=lambda item: (-item[0], -item[1], item[2]))
        return [RankedTrack(track_id=track_id, score=score) for score, _, track_id in scored[:limit]]


__all__ = [
    "CandidateFilter",
    "DEFAULT_CANDIDATE_CAP",
    "IndexEntry",
    "RankedTrack",
    "SimilarityIndex",
    "cosine_similarity",
    "exclude_explicit",
]
