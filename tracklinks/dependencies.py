"""Service wiring and FastAPI dependency providers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import httpx
from fastapi import Request

from tracklinks.config import AppConfig, load_config
from tracklinks.errors import DependencyError
from tracklinks.integrations.embedding_client import EmbeddingClient
from tracklinks.integrations.link_resolver import PlatformLinkResolver
from tracklinks.services.embedding_indexer import EmbeddingIndexer
from tracklinks.services.enrichment_store import TrackEnrichmentStore
from tracklinks.services.genre_backfill import GenreBackfill
from tracklinks.services.genre_inference import GenreInferenceEngine
from tracklinks.services.resolution_manager import ResolutionTaskManager
from tracklinks.services.search_service import SemanticSearchService
from tracklinks.services.similarity_index import SimilarityIndex
from tracklinks.services.task_registry import TaskRegistry


@lru_cache
def get_app_config() -> AppConfig:
    return load_config()


@dataclass(slots=True)
class EnrichmentServices:
    store: TrackEnrichmentStore
    resolver: PlatformLinkResolver
    embedder: EmbeddingClient
    resolution: ResolutionTaskManager
    search: SemanticSearchService
    indexer: EmbeddingIndexer
    genres: GenreBackfill


def build_services(
    config: AppConfig,
    *,
    store: TrackEnrichmentStore | None = None,
    resolver: PlatformLinkResolver | None = None,
    embedder: EmbeddingClient | None = None,
    registry: TaskRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EnrichmentServices:
    """Construct every enrichment service with credentials passed in explicitly."""

    store = store or TrackEnrichmentStore()
    resolver = resolver or PlatformLinkResolver.from_config(config.link_resolver, transport=transport)
    embedder = embedder or EmbeddingClient.from_config(config.embedding)
    return EnrichmentServices(
        store=store,
        resolver=resolver,
        embedder=embedder,
        resolution=ResolutionTaskManager(
            resolver,
            store,
            config=config.resolution,
            registry=registry,
        ),
        search=SemanticSearchService(
            embedder,
            store,
            index=SimilarityIndex(config.search.candidate_cap),
            config=config.search,
        ),
        indexer=EmbeddingIndexer(embedder, store, config=config.embedding_index),
        genres=GenreBackfill(store, GenreInferenceEngine()),
    )


def get_services(request: Request) -> EnrichmentServices:
    services = getattr(request.app.state, "enrichment", None)
    if not isinstance(services, EnrichmentServices):
        raise DependencyError("Enrichment services are not initialised.")
    return services


def get_resolution_manager(request: Request) -> ResolutionTaskManager:
    return get_services(request).resolution


def get_search_service(request: Request) -> SemanticSearchService:
    return get_services(request).search


def get_enrichment_store(request: Request) -> TrackEnrichmentStore:
    return get_services(request).store


def get_embedding_indexer(request: Request) -> EmbeddingIndexer:
    return get_services(request).indexer


def get_genre_backfill(request: Request) -> GenreBackfill:
    return get_services(request).genres


__all__ = [
    "EnrichmentServices",
    "build_services",
    "get_app_config",
    "get_embedding_indexer",
    "get_enrichment_store",
    "get_genre_backfill",
    "get_resolution_manager",
    "get_search_service",
    "get_services",
]
