"""Idempotent persistence of enrichment results against the track catalog."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from tracklinks.db import SessionFactory, run_session
from tracklinks.errors import CandidateValidationError, CatalogUnavailableError
from tracklinks.integrations.platforms import PlatformLink
from tracklinks.logging import get_logger
from tracklinks.logging_events import log_event
from tracklinks.models import (
    SEED_PLATFORM,
    Artist,
    Genre,
    Platform,
    Track,
    TrackArtist,
    TrackGenre,
    TrackPlatformLink,
)
from tracklinks.services.genre_inference import AudioFeatures
from tracklinks.services.similarity_index import IndexEntry

logger = get_logger(__name__)

T = TypeVar("T")

RESOLVABLE_PLATFORMS: tuple[Platform, ...] = tuple(
    platform for platform in Platform if platform is not SEED_PLATFORM
)


@dataclass(slots=True, frozen=True)
class ResolutionCandidate:
    track_id: int
    title: str
    seed_platform: Platform
    seed_platform_id: str


@dataclass(slots=True, frozen=True)
class TrackText:
    """Fields rendered into the canonical embedding text."""

    track_id: int
    title: str
    artists: tuple[str, ...] = ()
    genres: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class GenreCandidate:
    track_id: int
    title: str
    features: AudioFeatures | None = None


@dataclass(slots=True)
class TrackRecord:
    """A catalog track hydrated with artists, genres and platform links."""

    id: int
    title: str
    explicit: bool
    popularity: int | None
    duration: int | None = None
    preview_url: str | None = None
    release_date: datetime | None = None
    artists: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    platforms: dict[str, dict[str, str | None]] = field(default_factory=dict)
    score: float | None = None


def _dialect_insert(session: Session) -> Callable[[Any], Any] | None:
    bind = session.get_bind()
    name = getattr(getattr(bind, "dialect", None), "name", "")
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert
    return None


def _insert_ignore(session: Session, model: Any, values: dict[str, Any]) -> bool:
    """Insert ``values`` unless a unique constraint already holds them.

    Returns ``True`` when a row was written.
    """

    insert = _dialect_insert(session)
    if insert is not None:
        result = session.execute(insert(model).values(**values).on_conflict_do_nothing())
        return bool(result.rowcount)

    savepoint = session.begin_nested()
    try:
        session.add(model(**values))
        session.flush()
    except IntegrityError:
        savepoint.rollback()
        return False
    savepoint.commit()
    return True


def _normalise_genre(name: str) -> str:
    return " ".join(str(name).lower().split())


def _unresolved_clause() -> Any:
    # Own aliases so the subqueries stay independent of any link join in the outer select.
    seed = aliased(TrackPlatformLink)
    other = aliased(TrackPlatformLink)
    seed_link = (
        exists()
        .where(and_(seed.track_id == Track.id, seed.platform == SEED_PLATFORM.value))
        .correlate(Track)
    )
    other_link = exists().where(
        and_(
            other.track_id == Track.id,
            other.platform.in_([platform.value for platform in RESOLVABLE_PLATFORMS]),
        )
    ).correlate(Track)
    return and_(seed_link, ~other_link)


class TrackEnrichmentStore:
    """Catalog reads and conflict-safe enrichment writes.

    Every public method runs in its own session on a worker thread, so each
    track's enrichment commits independently. Any database failure surfaces as
    :class:`CatalogUnavailableError`.
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory

    async def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        try:
            return await run_session(work, factory=self._session_factory)
        except SQLAlchemyError as exc:
            log_event(
                logger,
                "catalog.error",
                level="error",
                component="enrichment_store",
                operation=operation,
                status="error",
                meta={"error": exc.__class__.__name__},
            )
            raise CatalogUnavailableError(operation, cause=exc) from exc

    # Writes ------------------------------------------------------------

    async def upsert_platform_links(self, track_id: int, links: Iterable[PlatformLink]) -> int:
        """Persist ``links`` for ``track_id``; returns the number of new rows.

        Re-applying a link refreshes its URL and never adds a row. A platform
        id already owned by another track is left untouched.
        """

        items = [link for link in links if link.platform_id]

        def _write(session: Session) -> int:
            inserted = 0
            for link in items:
                platform = link.platform.value
                if _insert_ignore(
                    session,
                    TrackPlatformLink,
                    {
                        "track_id": track_id,
                        "platform": platform,
                        "platform_id": link.platform_id,
                        "platform_url": link.platform_url,
                    },
                ):
                    inserted += 1
                    continue

                current = session.execute(
                    select(TrackPlatformLink).where(
                        TrackPlatformLink.track_id == track_id,
                        TrackPlatformLink.platform == platform,
                    )
                ).scalar_one_or_none()
                if current is None:
                    logger.info(
                        "Skipping %s id %s for track %s: already linked to another track",
                        platform,
                        link.platform_id,
                        track_id,
                    )
                    continue
                if (
                    current.platform_id == link.platform_id
                    and link.platform_url
                    and current.platform_url != link.platform_url
                ):
                    current.platform_url = link.platform_url
            return inserted

        return await self._run("upsert_platform_links", _write)

    async def upsert_embedding(self, track_id: int, vector: Sequence[float]) -> None:
        values = [float(value) for value in vector]
        if not values or not any(values) or not all(math.isfinite(value) for value in values):
            raise CandidateValidationError(track_id, "Refusing to store an empty or invalid embedding")

        def _write(session: Session) -> int:
            result = session.execute(
                update(Track)
                .where(Track.id == track_id)
                .values(embedding=values, updated_at=datetime.utcnow())
            )
            return result.rowcount or 0

        if not await self._run("upsert_embedding", _write):
            raise CandidateValidationError(track_id, f"Track {track_id} does not exist")

    async def upsert_genres(self, track_id: int, genres: Iterable[str]) -> int:
        """Associate ``genres`` with the track; returns the number of new links."""

        names = list(dict.fromkeys(n for n in (_normalise_genre(g) for g in genres) if n))

        def _write(session: Session) -> int:
            added = 0
            for name in names:
                _insert_ignore(session, Genre, {"name": name})
                genre_id = session.execute(select(Genre.id).where(Genre.name == name)).scalar_one()
                if _insert_ignore(session, TrackGenre, {"track_id": track_id, "genre_id": genre_id}):
                    added += 1
            return added

        return await self._run("upsert_genres", _write)

    # Selection ---------------------------------------------------------

    async def unresolved_tracks(self, limit: int) -> list[ResolutionCandidate]:
        """Tracks with a seed-platform id and no id on any other platform."""

        def _read(session: Session) -> list[ResolutionCandidate]:
            rows = session.execute(
                select(Track.id, Track.title, TrackPlatformLink.platform_id)
                .join(
                    TrackPlatformLink,
                    and_(
                        TrackPlatformLink.track_id == Track.id,
                        TrackPlatformLink.platform == SEED_PLATFORM.value,
                    ),
                )
                .where(_unresolved_clause())
                .order_by(Track.id)
                .limit(max(0, int(limit)))
            ).all()
            return [
                ResolutionCandidate(
                    track_id=row.id,
                    title=row.title,
                    seed_platform=SEED_PLATFORM,
                    seed_platform_id=row.platform_id,
                )
                for row in rows
            ]

        return await self._run("unresolved_tracks", _read)

    async def tracks_without_embeddings(self, limit: int) -> list[TrackText]:
        def _read(session: Session) -> list[TrackText]:
            tracks = session.execute(
                select(Track.id, Track.title)
                .where(Track.embedding.is_(None))
                .order_by(func.coalesce(Track.popularity, 0).desc(), Track.id)
                .limit(max(0, int(limit)))
            ).all()
            ids = [row.id for row in tracks]
            artists = _primary_artists(session, ids)
            genres = _genres_for(session, ids)
            return [
                TrackText(
                    track_id=row.id,
                    title=row.title,
                    artists=tuple(artists.get(row.id, ())),
                    genres=tuple(genres.get(row.id, ())),
                )
                for row in tracks
            ]

        return await self._run("tracks_without_embeddings", _read)

    async def tracks_without_genres(self, limit: int) -> list[GenreCandidate]:
        def _read(session: Session) -> list[GenreCandidate]:
            has_genre = exists().where(TrackGenre.track_id == Track.id)
            tracks = session.execute(
                select(Track).where(~has_genre).order_by(Track.id).limit(max(0, int(limit)))
            ).scalars()
            return [
                GenreCandidate(
                    track_id=track.id,
                    title=track.title,
                    features=AudioFeatures.from_track_columns(track),
                )
                for track in tracks
            ]

        return await self._run("tracks_without_genres", _read)

    async def embedding_candidates(self, cap: int, *, exclude_explicit: bool) -> list[IndexEntry]:
        """Embedded tracks for ranking, at most ``cap``, explicit filter applied in SQL."""

        def _read(session: Session) -> list[IndexEntry]:
            stmt = select(Track.id, Track.embedding, Track.popularity, Track.explicit).where(
                Track.embedding.is_not(None)
            )
            if exclude_explicit:
                stmt = stmt.where(Track.explicit.is_(False))
            stmt = stmt.order_by(func.coalesce(Track.popularity, 0).desc(), Track.id).limit(
                max(0, int(cap))
            )
            return [
                IndexEntry(
                    track_id=row.id,
                    vector=row.embedding,
                    popularity=row.popularity or 0,
                    explicit=bool(row.explicit),
                )
                for row in session.execute(stmt)
                if row.embedding
            ]

        return await self._run("embedding_candidates", _read)

    async def search_text(self, query: str, limit: int, *, exclude_explicit: bool) -> list[TrackRecord]:
        """Substring match over titles and artist names."""

        pattern = f"%{query.strip().lower()}%"

        def _read(session: Session) -> list[TrackRecord]:
            artist_match = exists().where(
                and_(
                    TrackArtist.track_id == Track.id,
                    TrackArtist.artist_id == Artist.id,
                    func.lower(Artist.name).like(pattern),
                )
            )
            stmt = select(Track.id).where(or_(func.lower(Track.title).like(pattern), artist_match))
            if exclude_explicit:
                stmt = stmt.where(Track.explicit.is_(False))
            stmt = stmt.order_by(func.coalesce(Track.popularity, 0).desc(), Track.id).limit(
                max(0, int(limit))
            )
            ids = list(session.execute(stmt).scalars())
            return _hydrate(session, ids)

        return await self._run("search_text", _read)

    async def hydrate_tracks(self, track_ids: Sequence[int]) -> list[TrackRecord]:
        """Full records for ``track_ids`` in the given order; unknown ids are dropped."""

        ids = list(track_ids)
        return await self._run("hydrate_tracks", lambda session: _hydrate(session, ids))

    # Statistics --------------------------------------------------------

    async def statistics(self) -> dict[str, Any]:
        def _read(session: Session) -> dict[str, Any]:
            total = session.execute(select(func.count(Track.id))).scalar_one()
            counts = dict(
                session.execute(
                    select(
                        TrackPlatformLink.platform,
                        func.count(func.distinct(TrackPlatformLink.track_id)),
                    ).group_by(TrackPlatformLink.platform)
                ).all()
            )
            needing = session.execute(
                select(func.count(Track.id)).where(_unresolved_clause())
            ).scalar_one()
            return {
                "totalTracks": int(total),
                "platforms": {platform.value: int(counts.get(platform.value, 0)) for platform in Platform},
                "tracksWithSeed": int(counts.get(SEED_PLATFORM.value, 0)),
                "tracksNeedingResolution": int(needing),
                "lastUpdated": datetime.utcnow().isoformat(),
            }

        return await self._run("statistics", _read)

    async def embedding_statistics(self) -> dict[str, Any]:
        def _read(session: Session) -> dict[str, Any]:
            total = int(session.execute(select(func.count(Track.id))).scalar_one())
            embedded = int(
                session.execute(
                    select(func.count(Track.id)).where(Track.embedding.is_not(None))
                ).scalar_one()
            )
            percent = round(embedded * 100.0 / total, 2) if total else 0.0
            return {
                "total": total,
                "withEmbeddings": embedded,
                "withoutEmbeddings": total - embedded,
                "percentComplete": percent,
            }

        return await self._run("embedding_statistics", _read)


def _primary_artists(session: Session, track_ids: Sequence[int]) -> dict[int, list[str]]:
    """Primary artists per track, falling back to every credited artist."""

    if not track_ids:
        return {}
    rows = session.execute(
        select(TrackArtist.track_id, Artist.name, TrackArtist.is_primary)
        .join(Artist, Artist.id == TrackArtist.artist_id)
        .where(TrackArtist.track_id.in_(track_ids))
        .order_by(TrackArtist.track_id, TrackArtist.is_primary.desc(), Artist.id)
    ).all()
    everyone: dict[int, list[str]] = {}
    primary: dict[int, list[str]] = {}
    for row in rows:
        everyone.setdefault(row.track_id, []).append(row.name)
        if row.is_primary:
            primary.setdefault(row.track_id, []).append(row.name)
    return {track_id: primary.get(track_id) or names for track_id, names in everyone.items()}


def _genres_for(session: Session, track_ids: Sequence[int]) -> dict[int, list[str]]:
    if not track_ids:
        return {}
    rows = session.execute(
        select(TrackGenre.track_id, Genre.name)
        .join(Genre, Genre.id == TrackGenre.genre_id)
        .where(TrackGenre.track_id.in_(track_ids))
        .order_by(TrackGenre.track_id, Genre.name)
    ).all()
    result: dict[int, list[str]] = {}
    for row in rows:
        result.setdefault(row.track_id, []).append(row.name)
    return result


def _hydrate(session: Session, track_ids: Sequence[int]) -> list[TrackRecord]:
    if not track_ids:
        return []
    tracks = {
        track.id: track
        for track in session.execute(select(Track).where(Track.id.in_(track_ids))).scalars()
    }
    ids = [track_id for track_id in track_ids if track_id in tracks]
    artists = _primary_artists(session, ids)
    genres = _genres_for(session, ids)
    links: dict[int, dict[str, dict[str, str | None]]] = {}
    for link in session.execute(
        select(TrackPlatformLink).where(TrackPlatformLink.track_id.in_(ids))
    ).scalars():
        links.setdefault(link.track_id, {})[link.platform] = {
            "id": link.platform_id,
            "url": link.platform_url,
        }

    records: list[TrackRecord] = []
    for track_id in ids:
        track = tracks[track_id]
        records.append(
            TrackRecord(
                id=track.id,
                title=track.title,
                explicit=bool(track.explicit),
                popularity=track.popularity,
                duration=track.duration,
                preview_url=track.preview_url,
                release_date=track.release_date,
                artists=artists.get(track_id, []),
                genres=genres.get(track_id, []),
                platforms=links.get(track_id, {}),
            )
        )
    return records


__all__ = [
    "GenreCandidate",
    "RESOLVABLE_PLATFORMS",
    "ResolutionCandidate",
    "TrackEnrichmentStore",
    "TrackRecord",
    "TrackText",
]
