"""Async client for the song-link resolution service."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from time import perf_counter
from typing import Any

import httpx

from tracklinks.config import LinkResolverConfig
from tracklinks.errors import (
    CandidateValidationError,
    ExternalServiceError,
    PermanentExternalError,
    TransientExternalError,
    parse_retry_after,
)
from tracklinks.integrations.platforms import (
    SERVICE_PLATFORM_KEYS,
    PlatformLink,
    id_from_entity_unique_id,
    id_from_url,
    normalise_platform_id,
    track_url,
)
from tracklinks.logging import get_logger
from tracklinks.logging_events import elapsed_ms, log_event
from tracklinks.models import Platform

logger = get_logger(__name__)

SERVICE_NAME = "songlink"

_KNOWN_KEYS = {key for key, _ in SERVICE_PLATFORM_KEYS}


@dataclass(slots=True, frozen=True)
class LinkResolution:
    """Links found for one track.

    ``unknown_platforms`` lists service keys outside :class:`Platform`; they are
    reported so callers can see them but are never persisted.
    """

    track_id: int
    links: tuple[PlatformLink, ...]
    unknown_platforms: tuple[str, ...] = ()


@dataclass(slots=True)
class PlatformLinkResolver:
    """Resolve a track across platforms with a single lookup per call.

    The resolver never sleeps or retries. Rate limits surface as
    :class:`TransientExternalError` carrying ``retry_after_ms`` so the batch
    worker owns the backoff policy.
    """

    base_url: str
    api_key: str | None = None
    user_country: str = "US"
    timeout_ms: int = 10_000
    transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_config(
        cls,
        config: LinkResolverConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "PlatformLinkResolver":
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            user_country=config.user_country,
            timeout_ms=config.timeout_ms,
            transport=transport,
        )

    async def resolve(
        self,
        track_id: int,
        seed_platform: Platform,
        seed_platform_id: str,
    ) -> LinkResolution:
        seed_id = normalise_platform_id(seed_platform, seed_platform_id)
        if seed_id is None:
            raise CandidateValidationError(
                track_id, f"Track {track_id} has an unusable {seed_platform.value} id"
            )

        params: dict[str, Any] = {
            "url": track_url(seed_platform, seed_id),
            "userCountry": self.user_country,
            "songIfSingle": "true",
        }
        if self.api_key:
            params["key"] = self.api_key

        started = perf_counter()
        try:
            payload = await self._request(params)
        except ExternalServiceError as exc:
            self._log(track_id, started, error=exc)
            raise
        resolution = self.parse_response(track_id, payload)
        self._log(track_id, started, links=len(resolution.links))
        if resolution.unknown_platforms:
            logger.debug(
                "Ignoring unsupported platforms for track %s: %s",
                track_id,
                ", ".join(resolution.unknown_platforms),
            )
        return resolution

    @staticmethod
    def parse_response(track_id: int, payload: Any) -> LinkResolution:
        """Turn a link-service payload into platform links for ``track_id``."""

        if not isinstance(payload, Mapping):
            raise PermanentExternalError(SERVICE_NAME, "link service returned unexpected payload")
        links_by_platform = payload.get("linksByPlatform") or {}
        if not isinstance(links_by_platform, Mapping):
            raise PermanentExternalError(SERVICE_NAME, "linksByPlatform is not an object")

        found: dict[Platform, PlatformLink] = {}
        for key, platform in SERVICE_PLATFORM_KEYS:
            if platform in found:
                continue
            entry = links_by_platform.get(key)
            if not isinstance(entry, Mapping):
                continue
            url = entry.get("url") if isinstance(entry.get("url"), str) else None
            raw_id = id_from_entity_unique_id(entry.get("entityUniqueId")) or id_from_url(
                platform, url
            )
            platform_id = normalise_platform_id(platform, raw_id)
            if platform_id is None:
                continue
            found[platform] = PlatformLink(
                track_id=track_id,
                platform=platform,
                platform_id=platform_id,
                platform_url=url,
            )

        unknown = tuple(sorted(str(key) for key in links_by_platform if key not in _KNOWN_KEYS))
        ordered = tuple(found[platform] for platform in Platform if platform in found)
        return LinkResolution(track_id=track_id, links=ordered, unknown_platforms=unknown)

    async def _request(self, params: Mapping[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url.rstrip("/"),
                timeout=self._build_timeout(self.timeout_ms),
                headers={"Accept": "application/json"},
                transport=self.transport,
            ) as client:
                response = await client.get("/links", params=params)
        except httpx.TimeoutException as exc:
            raise TransientExternalError(
                SERVICE_NAME, f"link service timed out after {self.timeout_ms}ms", cause=exc
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientExternalError(
                SERVICE_NAME, f"link service request failed: {exc}", cause=exc
            ) from exc

        status_code = response.status_code
        if status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise TransientExternalError(
                SERVICE_NAME,
                "link service rate limited the request",
                status_code=status_code,
                retry_after_ms=parse_retry_after(response.headers.get("Retry-After")),
            )
        if 500 <= status_code < 600:
            raise TransientExternalError(
                SERVICE_NAME,
                "link service returned a server error",
                status_code=status_code,
                retry_after_ms=parse_retry_after(response.headers.get("Retry-After")),
            )
        if not 200 <= status_code < 300:
            raise PermanentExternalError(
                SERVICE_NAME,
                f"link service rejected the request ({status_code})",
                status_code=status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise PermanentExternalError(
                SERVICE_NAME, "link service returned invalid JSON", status_code=status_code, cause=exc
            ) from exc

    @staticmethod
    def _build_timeout(timeout_ms: int) -> httpx.Timeout:
        timeout_seconds = max(timeout_ms, 100) / 1000
        return httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 5.0))

    def _log(
        self,
        track_id: int,
        started: float,
        *,
        links: int | None = None,
        error: ExternalServiceError | None = None,
    ) -> None:
        meta: dict[str, object] = {"track_id": track_id}
        if links is not None:
            meta["links"] = links
        if error is not None:
            meta["error"] = error.__class__.__name__
            if error.status_code is not None:
                meta["status_code"] = error.status_code
            retry_after = getattr(error, "retry_after_ms", None)
            if retry_after is not None:
                meta["retry_after_ms"] = retry_after
        log_event(
            logger,
            "api.dependency",
            component="link_resolver",
            dependency=SERVICE_NAME,
            operation="resolve",
            status="ok" if error is None else "error",
            duration_ms=elapsed_ms(started),
            meta=meta,
        )


__all__ = ["LinkResolution", "PlatformLinkResolver", "SERVICE_NAME"]
