from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import select

from tracklinks.db import session_scope
from tracklinks.models import (
    Artist,
    Genre,
    Platform,
    Track,
    TrackArtist,
    TrackGenre,
    TrackPlatformLink,
)


def add_track(
    title: str,
    *,
    spotify_id: str | None = None,
    artists: Sequence[str] = (),
    genres: Sequence[str] = (),
    embedding: Sequence[float] | None = None,
    explicit: bool = False,
    popularity: int | None = None,
    links: Iterable[tuple[Platform, str]] = (),
    **columns: Any,
) -> int:
    """Insert a catalog track with its relations and return its id."""

    with session_scope() as session:
        track = Track(
            title=title,
            explicit=explicit,
            popularity=popularity,
            embedding=list(embedding) if embedding is not None else None,
            **columns,
        )
        session.add(track)
        session.flush()

        for index, name in enumerate(artists):
            artist = Artist(name=name)
            session.add(artist)
            session.flush()
            session.add(TrackArtist(track_id=track.id, artist_id=artist.id, is_primary=index == 0))

        for name in genres:
            genre = session.execute(select(Genre).where(Genre.name == name)).scalar_one_or_none()
            if genre is None:
                genre = Genre(name=name)
                session.add(genre)
                session.flush()
            session.add(TrackGenre(track_id=track.id, genre_id=genre.id))

        seeded = list(links)
        if spotify_id is not None:
            seeded.insert(0, (Platform.SPOTIFY, spotify_id))
        for platform, platform_id in seeded:
            session.add(
                TrackPlatformLink(
                    track_id=track.id,
                    platform=platform.value,
                    platform_id=platform_id,
                    platform_url=None,
                )
            )
        return track.id


def platform_rows(track_id: int | None = None) -> list[tuple[int, str, str, str | None]]:
    with session_scope() as session:
        stmt = select(TrackPlatformLink).order_by(TrackPlatformLink.id)
        if track_id is not None:
            stmt = stmt.where(TrackPlatformLink.track_id == track_id)
        return [
            (row.track_id, row.platform, row.platform_id, row.platform_url)
            for row in session.execute(stmt).scalars()
        ]


def genre_names(track_id: int) -> list[str]:
    with session_scope() as session:
        rows = session.execute(
            select(Genre.name)
            .join(TrackGenre, TrackGenre.genre_id == Genre.id)
            .where(TrackGenre.track_id == track_id)
            .order_by(Genre.name)
        )
        return list(rows.scalars())


def songlink_payload(**platforms: tuple[str, str]) -> dict[str, Any]:
    """Build a link-service body from ``key=(entity_unique_id, url)`` pairs."""

    return {
        "entityUniqueId": "SPOTIFY_SONG::seed",
        "linksByPlatform": {
            key: {"entityUniqueId": entity, "url": url} for key, (entity, url) in platforms.items()
        },
    }
