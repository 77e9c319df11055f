"""Platform identifiers, canonical URLs and link-service key mapping."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final
from urllib.parse import parse_qs, urlparse

from tracklinks.models import Platform

_TRACK_URL_TEMPLATES: Final[Mapping[Platform, str]] = {
    Platform.SPOTIFY: "https://open.spotify.com/track/{id}",
    Platform.APPLE_MUSIC: "https://music.apple.com/us/song/{id}",
    Platform.YOUTUBE: "https://www.youtube.com/watch?v={id}",
    Platform.AMAZON_MUSIC: "https://music.amazon.com/tracks/{id}",
    Platform.TIDAL: "https://tidal.com/browse/track/{id}",
    Platform.DEEZER: "https://www.deezer.com/track/{id}",
}

# Keys of ``linksByPlatform`` in link-service responses. Earlier keys win when
# two keys map to the same platform.
SERVICE_PLATFORM_KEYS: Final[tuple[tuple[str, Platform], ...]] = (
    ("spotify", Platform.SPOTIFY),
    ("appleMusic", Platform.APPLE_MUSIC),
    ("youtube", Platform.YOUTUBE),
    ("youtubeMusic", Platform.YOUTUBE),
    ("amazonMusic", Platform.AMAZON_MUSIC),
    ("tidal", Platform.TIDAL),
    ("deezer", Platform.DEEZER),
)

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-.]+$")
_TRACK_SEGMENT = re.compile(r"/tracks?/([^/?#]+)")
_TRAILING_NUMBER = re.compile(r"/(\d+)(?:[/?#]|$)")


@dataclass(slots=True, frozen=True)
class PlatformLink:
    track_id: int
    platform: Platform
    platform_id: str
    platform_url: str | None = None


def normalise_platform_id(platform: Platform, raw: str | None) -> str | None:
    """Strip URI prefixes (``spotify:track:abc``) and reject unusable ids."""

    if raw is None:
        return None
    candidate = str(raw).strip()
    if not candidate:
        return None
    if ":" in candidate:
        candidate = candidate.rsplit(":", 1)[-1]
    if not _ID_PATTERN.match(candidate):
        return None
    return candidate


def track_url(platform: Platform, platform_id: str) -> str:
    return _TRACK_URL_TEMPLATES[platform].format(id=platform_id)


def id_from_entity_unique_id(entity_unique_id: str | None) -> str | None:
    """``"YOUTUBE_VIDEO::abc"`` -> ``"abc"``."""

    if not entity_unique_id:
        return None
    value = str(entity_unique_id).split("::")[-1].strip()
    return value or None


def id_from_url(platform: Platform, url: str | None) -> str | None:
    """Best-effort extraction of the platform id from a platform track URL."""

    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        return None

    if platform is Platform.YOUTUBE:
        values = parse_qs(parsed.query).get("v")
        return values[0] if values else None
    if platform is Platform.APPLE_MUSIC:
        values = parse_qs(parsed.query).get("i")
        if values:
            return values[0]
        match = _TRAILING_NUMBER.search(parsed.path + "/")
        return match.group(1) if match else None
    if platform is Platform.AMAZON_MUSIC:
        values = parse_qs(parsed.query).get("trackAsin")
        if values:
            return values[0]
    if platform in {Platform.AMAZON_MUSIC, Platform.TIDAL, Platform.DEEZER, Platform.SPOTIFY}:
        match = _TRACK_SEGMENT.search(parsed.path)
        return match.group(1) if match else None
    return None


__all__ = [
    "PlatformLink",
    "SERVICE_PLATFORM_KEYS",
    "id_from_entity_unique_id",
    "id_from_url",
    "normalise_platform_id",
    "track_url",
]
