"""Backfill embeddings for catalog tracks that do not have one yet."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from time import perf_counter

from tracklinks.config import EmbeddingIndexConfig
from tracklinks.errors import CandidateValidationError, ProviderError
from tracklinks.integrations.embedding_client import EmbeddingClient, render_track_text
from tracklinks.logging import get_logger
from tracklinks.logging_events import elapsed_ms, log_event
from tracklinks.services.enrichment_store import TrackEnrichmentStore

logger = get_logger(__name__)


@dataclass(slots=True)
class IndexRunResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class EmbeddingIndexer:
    """Embed the most popular unindexed tracks first.

    A track whose embedding fails stays unindexed and is picked up again by a
    later run.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: TrackEnrichmentStore,
        *,
        config: EmbeddingIndexConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._config = config or EmbeddingIndexConfig()

    async def run(self, limit: int | None = None) -> IndexRunResult:
        size = self._config.batch_size if limit is None else max(1, int(limit))
        started = perf_counter()
        result = IndexRunResult()

        for track in await self._store.tracks_without_embeddings(size):
            result.processed += 1
            text = render_track_text(track.title, track.artists, track.genres)
            try:
                vector = await self._embedder.embed(text)
                await self._store.upsert_embedding(track.track_id, vector)
            except (ProviderError, CandidateValidationError) as exc:
                result.failed += 1
                logger.warning("Embedding skipped for track %s: %s", track.track_id, exc)
                continue
            result.succeeded += 1

        log_event(
            logger,
            "embedding.index",
            component="embedding_indexer",
            status="ok" if result.failed == 0 else "partial",
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_ms=elapsed_ms(started),
        )
        return result


__all__ = ["EmbeddingIndexer", "IndexRunResult"]
