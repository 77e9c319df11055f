"""Embedding provider client backed by the OpenAI embeddings endpoint."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from time import perf_counter
from typing import Any

import openai
from openai import AsyncOpenAI

from tracklinks.config import EmbeddingConfig
from tracklinks.errors import ProviderError
from tracklinks.logging import get_logger
from tracklinks.logging_events import elapsed_ms, log_event

logger = get_logger(__name__)

PROVIDER_NAME = "openai"


def render_track_text(
    title: str,
    artists: Iterable[str] = (),
    genres: Iterable[str] = (),
) -> str:
    """Canonical text used to embed a track.

    The same inputs always render the same string so rankings stay stable for
    a given model version.
    """

    artist_names = [name.strip() for name in artists if name and name.strip()]
    genre_names = [name.strip() for name in genres if name and name.strip()]
    text = f"Track: {title.strip()}\nArtist: {', '.join(artist_names)}\n"
    if genre_names:
        text += f"Genres: {', '.join(genre_names)}\n"
    return text


class EmbeddingClient:
    """Turn text into a fixed-length vector.

    Any failure is raised as :class:`ProviderError`; the client never returns
    an empty or zero vector in place of a real embedding.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        timeout_ms: int = 15_000,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.timeout_ms = timeout_ms
        self._api_key = api_key
        self._client = client

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "EmbeddingClient":
        return cls(api_key=config.api_key, model=config.model, timeout_ms=config.timeout_ms)

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ProviderError(PROVIDER_NAME, "Embedding provider API key is not configured")
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                timeout=self.timeout_ms / 1000,
                max_retries=0,
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ProviderError(PROVIDER_NAME, "Cannot embed empty text")

        client = self._get_client()
        started = perf_counter()
        try:
            response = await client.embeddings.create(model=self.model, input=text)
        except openai.OpenAIError as exc:
            self._log(started, status="error", error=exc.__class__.__name__)
            raise ProviderError(PROVIDER_NAME, f"Embedding request failed: {exc}", cause=exc) from exc

        vector = self._extract_vector(response)
        self._log(started, status="ok", dimensions=len(vector))
        return vector

    @staticmethod
    def _extract_vector(response: Any) -> list[float]:
        data = getattr(response, "data", None)
        if not data:
            raise ProviderError(PROVIDER_NAME, "Embedding response contained no data")
        raw: Sequence[Any] | None = getattr(data[0], "embedding", None)
        if not raw:
            raise ProviderError(PROVIDER_NAME, "Embedding response contained an empty vector")
        try:
            vector = [float(value) for value in raw]
        except (TypeError, ValueError) as exc:
            raise ProviderError(PROVIDER_NAME, "Embedding vector is not numeric", cause=exc) from exc
        if not any(vector):
            raise ProviderError(PROVIDER_NAME, "Embedding provider returned a zero vector")
        return vector

    def _log(self, started: float, *, status: str, **meta: Any) -> None:
        log_event(
            logger,
            "api.dependency",
            level="info" if status == "ok" else "warning",
            component="embedding_client",
            dependency=PROVIDER_NAME,
            operation="embed",
            status=status,
            duration_ms=elapsed_ms(started),
            meta={"model": self.model, **meta},
        )


__all__ = ["EmbeddingClient", "PROVIDER_NAME", "render_track_text"]
