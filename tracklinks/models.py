"""Catalog models touched by the enrichment subsystem."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from tracklinks.db import Base


class Platform(str, Enum):
    """Streaming platforms a track can be resolved on."""

    SPOTIFY = "spotify"
    APPLE_MUSIC = "apple_music"
    YOUTUBE = "youtube"
    AMAZON_MUSIC = "amazon_music"
    TIDAL = "tidal"
    DEEZER = "deezer"


SEED_PLATFORM = Platform.SPOTIFY


class Track(Base):
    __tablename__ = "tracks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(Text, nullable=False)
    album_id = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=True)
    explicit = Column(Boolean, nullable=False, default=False)
    popularity = Column(Integer, nullable=True)
    preview_url = Column(Text, nullable=True)
    release_date = Column(DateTime, nullable=True)
    # None is stored as SQL NULL so "no embedding" queries can use IS NULL.
    embedding = Column(JSON(none_as_null=True), nullable=True)

    # Audio features on a 0-100 scale, tempo in BPM.
    tempo = Column(Integer, nullable=True)
    energy = Column(Integer, nullable=True)
    danceability = Column(Integer, nullable=True)
    valence = Column(Integer, nullable=True)
    acousticness = Column(Integer, nullable=True)
    instrumentalness = Column(Integer, nullable=True)
    liveness = Column(Integer, nullable=True)
    speechiness = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )


class Artist(Base):
    __tablename__ = "artists"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(512), nullable=False)


class Genre(Base):
    __tablename__ = "genres"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)


class TrackArtist(Base):
    __tablename__ = "tracks_to_artists"

    track_id = Column(Integer, ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True)
    artist_id = Column(Integer, ForeignKey("artists.id", ondelete="CASCADE"), primary_key=True)
    is_primary = Column(Boolean, nullable=False, default=False)


class TrackGenre(Base):
    __tablename__ = "tracks_to_genres"

    track_id = Column(Integer, ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True)
    genre_id = Column(Integer, ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True)


class TrackPlatformLink(Base):
    __tablename__ = "track_platform_ids"
    __table_args__ = (
        UniqueConstraint("platform", "platform_id", name="uq_track_platform_ids_platform_id"),
        UniqueConstraint("track_id", "platform", name="uq_track_platform_ids_track_platform"),
        Index("ix_track_platform_ids_track_id", "track_id"),
    )

    id = Column(Integer, primary_key=True)
    track_id = Column(Integer, ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(32), nullable=False)
    platform_id = Column(String(255), nullable=False)
    platform_url = Column(Text, nullable=True)


__all__ = [
    "Artist",
    "Genre",
    "Platform",
    "SEED_PLATFORM",
    "Track",
    "TrackArtist",
    "TrackGenre",
    "TrackPlatformLink",
]
