"""Application configuration for tracklinks.

Values are resolved from the process environment layered over an optional
``.env`` file. Every section is a frozen dataclass so services can be handed an
explicit configuration object instead of reading ambient state themselves.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tracklinks.logging import get_logger
from tracklinks.logging_events import log_event

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./tracklinks.db"
DEFAULT_APP_PORT = 8080
DEFAULT_SONGLINK_BASE_URL = "https://api.song.link/v1-alpha.1"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

_runtime_env: dict[str, str] | None = None


def _parse_env_line(line: str) -> tuple[str, str] | None:
    text = line.strip()
    if text.startswith("export "):
        text = text[len("export "):].lstrip()
    if not text or text.startswith("#") or "=" not in text:
        return None
    key, value = (part.strip() for part in text.split("=", 1))
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        value = value[1:-1]
    return (key, value) if key else None


def load_runtime_env(
    *,
    env_file: str | os.PathLike[str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Read ``env_file`` (default ``./.env``) and overlay ``base_env`` (default ``os.environ``)."""

    merged: dict[str, str] = {}
    path = Path(env_file if env_file is not None else ".env")
    if path.is_file():
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            lines = []
        merged.update(pair for pair in map(_parse_env_line, lines) if pair is not None)
    merged.update(
        (key, str(value))
        for key, value in (os.environ if base_env is None else base_env).items()
        if value is not None
    )
    return merged


def get_runtime_env() -> Mapping[str, str]:
    global _runtime_env
    if _runtime_env is None:
        _runtime_env = load_runtime_env()
    return _runtime_env


def override_runtime_env(runtime_env: Mapping[str, str] | None) -> None:
    """Pin the runtime environment to ``runtime_env``; ``None`` re-reads it on next use."""

    global _runtime_env
    _runtime_env = dict(runtime_env) if runtime_env is not None else None


def get_env(name: str, default: str | None = None) -> str | None:
    return get_runtime_env().get(name, default)


@dataclass(slots=True, frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_APP_PORT


@dataclass(slots=True, frozen=True)
class DatabaseConfig:
    url: str


@dataclass(slots=True, frozen=True)
class LoggingConfig:
    level: str
    log_file: str | None


@dataclass(slots=True, frozen=True)
class LinkResolverConfig:
    """Connection settings for the song-link resolution service."""

    base_url: str
    api_key: str | None
    user_country: str
    timeout_ms: int


@dataclass(slots=True, frozen=True)
class EmbeddingConfig:
    api_key: str | None
    model: str
    timeout_ms: int


@dataclass(slots=True, frozen=True)
class ResolutionConfig:
    """Pacing and retry policy for batch platform resolution.

    ``track_delay_ms`` is a proactive throttle applied after every track,
    independent of any rate-limit signal from the link service.
    """

    batch_size: int = 5
    track_delay_ms: int = 2_000
    max_retries: int = 3
    backoff_base_ms: int = 1_000
    backoff_max_ms: int = 30_000
    max_candidates: int = 1_000


@dataclass(slots=True, frozen=True)
class SearchConfig:
    candidate_cap: int = 500
    default_limit: int = 24
    max_limit: int = 100


@dataclass(slots=True, frozen=True)
class EmbeddingIndexConfig:
    batch_size: int = 20


@dataclass(slots=True, frozen=True)
class AppConfig:
    server: ServerConfig
    database: DatabaseConfig
    logging: LoggingConfig
    link_resolver: LinkResolverConfig
    embedding: EmbeddingConfig
    resolution: ResolutionConfig
    search: SearchConfig
    embedding_index: EmbeddingIndexConfig


def _env_value(env: Mapping[str, Any], key: str) -> str | None:
    text = str(env.get(key) or "").strip()
    return text or None


def _bounded_int(
    env: Mapping[str, Any],
    key: str,
    *,
    default: int,
    minimum: int,
    maximum: int,
) -> int:
    """Parse ``key`` as an int clamped to ``[minimum, maximum]``; malformed values use ``default``."""

    raw = _env_value(env, key)
    value = default
    if raw is not None:
        try:
            value = int(raw)
        except ValueError:
            log_event(
                logger,
                "config.invalid",
                level="warning",
                component="config",
                key=key,
                status="ignored",
                meta={"value": raw, "default": default},
            )
    return min(maximum, max(minimum, value))


def load_config(runtime_env: Mapping[str, Any] | None = None) -> AppConfig:
    """Build the application configuration from the runtime environment."""

    env = runtime_env if runtime_env is not None else get_runtime_env()

    server = ServerConfig(
        host=_env_value(env, "APP_HOST") or "0.0.0.0",
        port=_bounded_int(env, "APP_PORT", default=DEFAULT_APP_PORT, minimum=1, maximum=65_535),
    )
    database = DatabaseConfig(url=_env_value(env, "DATABASE_URL") or DEFAULT_DATABASE_URL)
    logging_config = LoggingConfig(
        level=(_env_value(env, "LOG_LEVEL") or "INFO").upper(),
        log_file=_env_value(env, "LOG_FILE"),
    )
    link_resolver = LinkResolverConfig(
        base_url=(_env_value(env, "SONGLINK_BASE_URL") or DEFAULT_SONGLINK_BASE_URL).rstrip("/"),
        api_key=_env_value(env, "SONGLINK_API_KEY"),
        user_country=(_env_value(env, "SONGLINK_USER_COUNTRY") or "US").upper(),
        timeout_ms=_bounded_int(
            env, "SONGLINK_TIMEOUT_MS", default=10_000, minimum=100, maximum=120_000
        ),
    )
    embedding = EmbeddingConfig(
        api_key=_env_value(env, "OPENAI_API_KEY"),
        model=_env_value(env, "EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
        timeout_ms=_bounded_int(
            env, "EMBEDDING_TIMEOUT_MS", default=15_000, minimum=100, maximum=120_000
        ),
    )
    resolution = ResolutionConfig(
        batch_size=_bounded_int(env, "RESOLUTION_BATCH_SIZE", default=5, minimum=1, maximum=100),
        track_delay_ms=_bounded_int(
            env, "RESOLUTION_TRACK_DELAY_MS", default=2_000, minimum=0, maximum=60_000
        ),
        max_retries=_bounded_int(env, "RESOLUTION_MAX_RETRIES", default=3, minimum=0, maximum=10),
        backoff_base_ms=_bounded_int(
            env, "RESOLUTION_BACKOFF_BASE_MS", default=1_000, minimum=1, maximum=60_000
        ),
        backoff_max_ms=_bounded_int(
            env, "RESOLUTION_BACKOFF_MAX_MS", default=30_000, minimum=1, maximum=600_000
        ),
        max_candidates=_bounded_int(
            env, "RESOLUTION_MAX_CANDIDATES", default=1_000, minimum=1, maximum=100_000
        ),
    )
    search = SearchConfig(
        candidate_cap=_bounded_int(
            env, "SEARCH_CANDIDATE_CAP", default=500, minimum=1, maximum=50_000
        ),
        default_limit=_bounded_int(env, "SEARCH_DEFAULT_LIMIT", default=24, minimum=1, maximum=500),
        max_limit=_bounded_int(env, "SEARCH_MAX_LIMIT", default=100, minimum=1, maximum=500),
    )
    embedding_index = EmbeddingIndexConfig(
        batch_size=_bounded_int(env, "EMBEDDING_BATCH_SIZE", default=20, minimum=1, maximum=500),
    )
    return AppConfig(
        server=server,
        database=database,
        logging=logging_config,
        link_resolver=link_resolver,
        embedding=embedding,
        resolution=resolution,
        search=search,
        embedding_index=embedding_index,
    )


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "EmbeddingConfig",
    "EmbeddingIndexConfig",
    "LinkResolverConfig",
    "LoggingConfig",
    "ResolutionConfig",
    "SearchConfig",
    "ServerConfig",
    "get_env",
    "get_runtime_env",
    "load_config",
    "load_runtime_env",
    "override_runtime_env",
]
