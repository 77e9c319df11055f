"""Semantic track search with substring fallback."""

from __future__ import annotations

from collections.abc import Sequence
from time import perf_counter

from tracklinks.config import SearchConfig
from tracklinks.errors import ProviderError
from tracklinks.integrations.embedding_client import EmbeddingClient
from tracklinks.logging import get_logger
from tracklinks.logging_events import elapsed_ms, log_event
from tracklinks.services.enrichment_store import TrackEnrichmentStore, TrackRecord
from tracklinks.services.similarity_index import SimilarityIndex
from tracklinks.services.similarity_index import exclude_explicit as explicit_filter

logger = get_logger(__name__)

MIN_EMBEDDABLE_LENGTH = 5


def criteria_to_description(
    query: str | None = None,
    genres: Sequence[str] | None = None,
    mood: str | None = None,
    tempo: str | None = None,
    era: str | None = None,
) -> str:
    """Render structured search criteria as the text that gets embedded."""

    parts: list[str] = []
    if query and query.strip():
        parts.append(f"{query.strip()}.")
    names = [genre.strip() for genre in genres or () if genre and genre.strip()]
    if names:
        parts.append(f"Genres: {', '.join(names)}.")
    if mood:
        parts.append(f"Mood: {mood}.")
    if tempo:
        parts.append(f"Tempo: {tempo}.")
    if era:
        parts.append(f"Era: {era}.")
    return " ".join(parts)


class SemanticSearchService:
    def __init__(
        self,
        embedder: EmbeddingClient,
        store: TrackEnrichmentStore,
        *,
        index: SimilarityIndex | None = None,
        config: SearchConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._config = config or SearchConfig()
        self._index = index or SimilarityIndex(self._config.candidate_cap)

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._config.default_limit
        return max(1, min(int(limit), self._config.max_limit))

    async def search(
        self,
        text: str,
        limit: int | None = None,
        exclude_explicit: bool = False,
    ) -> list[TrackRecord]:
        """Rank embedded tracks against ``text``.

        Embedding failures degrade to a substring match over titles and artists
        instead of raising. Catalog failures still propagate.
        """

        query = (text or "").strip()
        size = self.clamp_limit(limit)
        if not query:
            return []

        started = perf_counter()
        mode = "semantic"
        if len(query) < MIN_EMBEDDABLE_LENGTH:
            mode = "substring"
            results = await self._store.search_text(query, size, exclude_explicit=exclude_explicit)
        else:
            try:
                vector = await self._embedder.embed(query)
            except ProviderError as exc:
                logger.warning("Embedding failed, falling back to substring search: %s", exc)
                mode = "substring"
                results = await self._store.search_text(
                    query, size, exclude_explicit=exclude_explicit
                )
            else:
                results = await self._semantic(vector, size, exclude_explicit)

        log_event(
            logger,
            "search.query",
            component="search_service",
            mode=mode,
            status="ok",
            results=len(results),
            limit=size,
            exclude_explicit=exclude_explicit,
            duration_ms=elapsed_ms(started),
        )
        return results

    async def _semantic(
        self,
        vector: Sequence[float],
        limit: int,
        exclude_explicit: bool,
    ) -> list[TrackRecord]:
        candidates = await self._store.embedding_candidates(
            self._index.candidate_cap, exclude_explicit=exclude_explicit
        )
        ranked = self._index.rank(
            vector, candidates, limit, filter=explicit_filter if exclude_explicit else None
        )
        scores = {item.track_id: item.score for item in ranked}
        records = await self._store.hydrate_tracks([item.track_id for item in ranked])
        for record in records:
            record.score = round(scores[record.id], 6)
        return records


__all__ = ["MIN_EMBEDDABLE_LENGTH", "SemanticSearchService", "criteria_to_description"]
