"""Assign inferred genres to tracks that have none."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from tracklinks.logging import get_logger
from tracklinks.logging_events import log_event
from tracklinks.services.enrichment_store import GenreCandidate, TrackEnrichmentStore
from tracklinks.services.genre_inference import GenreInferenceEngine

logger = get_logger(__name__)

DEFAULT_BACKFILL_LIMIT = 200


@dataclass(slots=True)
class GenreBackfillResult:
    processed: int = 0
    tagged: int = 0
    associations: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class GenreBackfill:
    def __init__(
        self,
        store: TrackEnrichmentStore,
        engine: GenreInferenceEngine | None = None,
    ) -> None:
        self._store = store
        self._engine = engine or GenreInferenceEngine()

    def genres_for(self, candidate: GenreCandidate) -> list[str]:
        """Title keywords win; audio features are consulted before the popular fallback."""

        normalised = (candidate.title or "").lower().strip()
        genres = self._engine.match_keywords(normalised)
        if not genres and candidate.features is not None:
            genres = self._engine.classify_features(candidate.features)
        return genres or self._engine.infer(candidate.title)

    async def run(self, limit: int = DEFAULT_BACKFILL_LIMIT) -> GenreBackfillResult:
        result = GenreBackfillResult()
        for candidate in await self._store.tracks_without_genres(limit):
            result.processed += 1
            added = await self._store.upsert_genres(candidate.track_id, self.genres_for(candidate))
            if added:
                result.tagged += 1
                result.associations += added

        log_event(
            logger,
            "genre.backfill",
            component="genre_backfill",
            status="ok",
            processed=result.processed,
            tagged=result.tagged,
            associations=result.associations,
        )
        return result


__all__ = ["DEFAULT_BACKFILL_LIMIT", "GenreBackfill", "GenreBackfillResult"]
