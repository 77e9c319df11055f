"""Keyword based genre tagging for tracks without authoritative genre data."""

from __future__ import annotations

import random
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

GENRE_KEYWORDS: Final[Mapping[str, tuple[str, ...]]] = {
    # Electronic
    "edm": ("electronic", "dance"),
    "dance": ("dance", "electronic"),
    "house": ("house", "electronic"),
    "techno": ("techno", "electronic"),
    "trance": ("trance", "electronic"),
    "dubstep": ("dubstep", "electronic"),
    "drum": ("drum and bass", "electronic"),
    "bass": ("bass", "electronic"),
    "electronic": ("electronic",),
    "electro": ("electronic",),
    "remix": ("electronic", "remix"),
    "dj": ("electronic", "dance"),
    # Hip hop
    "rap": ("hip hop", "rap"),
    "hip hop": ("hip hop",),
    "trap": ("trap", "hip hop"),
    "gangsta": ("hip hop",),
    "r&b": ("r&b",),
    "rhythm": ("r&b",),
    # Rock
    "rock": ("rock",),
    "metal": ("metal", "rock"),
    "punk": ("punk", "rock"),
    "grunge": ("grunge", "rock"),
    "alternative": ("alternative", "rock"),
    "indie": ("indie",),
    "guitar": ("rock",),
    # Pop
    "pop": ("pop",),
    "ballad": ("pop",),
    # Latin
    "latin": ("latin",),
    "reggaeton": ("reggaeton", "latin"),
    "salsa": ("latin", "salsa"),
    "bachata": ("latin", "bachata"),
    "cumbia": ("latin",),
    # Caribbean
    "reggae": ("reggae",),
    "dancehall": ("dancehall", "reggae"),
    "ska": ("ska",),
    # Folk and country
    "folk": ("folk",),
    "country": ("country",),
    "acoustic": ("acoustic",),
    # Moods
    "chill": ("chill",),
    "lofi": ("lofi",),
    "ambient": ("ambient",),
    "instrumental": ("instrumental",),
    # Classical
    "classical": ("classical",),
    "orchestra": ("classical",),
    "symphony": ("classical",),
    "piano": ("classical", "instrumental"),
    "violin": ("classical", "instrumental"),
    # Jazz and blues
    "jazz": ("jazz",),
    "blues": ("blues",),
    "soul": ("soul",),
    "funk": ("funk",),
    # Global
    "world": ("world",),
    "afro": ("afrobeat",),
    "afrobeat": ("afrobeat",),
    "k-pop": ("k-pop", "pop"),
    "j-pop": ("j-pop", "pop"),
    # Eras
    "80s": ("80s",),
    "90s": ("90s",),
    "2000s": ("2000s",),
}

POPULAR_GENRES: Final[tuple[str, ...]] = ("pop", "electronic", "hip hop", "rock", "r&b", "latin")

_TOKEN_SPLIT = re.compile(r"[\s\-_()\[\].,]+")


@dataclass(slots=True, frozen=True)
class AudioFeatures:
    """Audio features on a 0-1 scale with tempo in BPM."""

    danceability: float
    energy: float
    tempo: float
    valence: float
    acousticness: float
    instrumentalness: float

    @classmethod
    def from_track_columns(cls, track: object) -> "AudioFeatures | None":
        """Build features from catalog columns stored on a 0-100 scale."""

        names = ("danceability", "energy", "valence", "acousticness", "instrumentalness")
        values = {name: getattr(track, name, None) for name in names}
        tempo = getattr(track, "tempo", None)
        if tempo is None or any(value is None for value in values.values()):
            return None
        return cls(tempo=float(tempo), **{k: float(v) / 100.0 for k, v in values.items()})


class GenreInferenceEngine:
    """Pure title to genres mapping.

    When no keyword matches, one to three genres from :data:`POPULAR_GENRES`
    are returned. The sample is seeded from the normalised title so the same
    title always yields the same genres.
    """

    def __init__(
        self,
        keywords: Mapping[str, tuple[str, ...]] = GENRE_KEYWORDS,
        popular: tuple[str, ...] = POPULAR_GENRES,
    ) -> None:
        self._keywords = keywords
        self._popular = popular
        # Keywords the tokenizer would split apart are matched as substrings.
        self._compound = tuple(keyword for keyword in keywords if _TOKEN_SPLIT.search(keyword))

    def infer(self, title: str | None) -> list[str]:
        normalised = (title or "").lower().strip()
        genres = self.match_keywords(normalised)
        if genres:
            return genres
        return self._fallback(normalised)

    def match_keywords(self, normalised_title: str) -> list[str]:
        found: dict[str, None] = {}
        for token in _TOKEN_SPLIT.split(normalised_title):
            for genre in self._keywords.get(token.strip(), ()):
                found.setdefault(genre)
        for keyword in self._compound:
            if keyword in normalised_title:
                for genre in self._keywords[keyword]:
                    found.setdefault(genre)
        return list(found)

    def classify_features(self, features: AudioFeatures) -> list[str]:
        """Derive genres from audio features; empty when nothing stands out."""

        found: dict[str, None] = {}

        def add(*genres: str) -> None:
            for genre in genres:
                found.setdefault(genre)

        if features.danceability > 0.7 and features.energy > 0.6:
            add("dance", "electronic")
        if features.danceability > 0.6 and 85 < features.tempo < 115:
            add("hip hop")
        if features.energy > 0.7 and features.danceability < 0.6:
            add("rock")
        if (
            features.valence > 0.5
            and features.danceability > 0.5
            and 0.4 < features.energy < 0.8
        ):
            add("pop")
        if features.acousticness > 0.7:
            add("acoustic", "folk")
        if features.instrumentalness > 0.5:
            add("instrumental")
            if features.acousticness > 0.4:
                add("classical")
        return list(found)

    def _fallback(self, normalised_title: str) -> list[str]:
        rng = random.Random(normalised_title)
        count = rng.randint(1, min(3, len(self._popular)))
        picked: dict[str, None] = {}
        for _ in range(count):
            picked.setdefault(rng.choice(self._popular))
        return list(picked)


__all__ = [
    "AudioFeatures",
    "GENRE_KEYWORDS",
    "GenreInferenceEngine",
    "POPULAR_GENRES",
]
