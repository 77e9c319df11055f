"""Enrichment services: resolution jobs, genre tagging, indexing and search."""

from tracklinks.services.embedding_indexer import EmbeddingIndexer
from tracklinks.services.enrichment_store import TrackEnrichmentStore
from tracklinks.services.genre_backfill import GenreBackfill
from tracklinks.services.genre_inference import GenreInferenceEngine
from tracklinks.services.resolution_manager import ResolutionTaskManager
from tracklinks.services.search_service import SemanticSearchService
from tracklinks.services.similarity_index import SimilarityIndex, cosine_similarity
from tracklinks.services.task_registry import (
    InMemoryTaskRegistry,
    ResolutionTask,
    ResolutionTaskStatus,
)

__all__ = [
    "EmbeddingIndexer",
    "GenreBackfill",
    "GenreInferenceEngine",
    "InMemoryTaskRegistry",
    "ResolutionTask",
    "ResolutionTaskManager",
    "ResolutionTaskStatus",
    "SemanticSearchService",
    "SimilarityIndex",
    "TrackEnrichmentStore",
    "cosine_similarity",
]
