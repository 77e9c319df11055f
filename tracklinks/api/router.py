"""HTTP surface for platform resolution, search and indexing."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from tracklinks.dependencies import (
    get_embedding_indexer,
    get_enrichment_store,
    get_genre_backfill,
    get_resolution_manager,
    get_search_service,
)
from tracklinks.errors import NotFoundError
from tracklinks.schemas import (
    EmbeddingRunRequest,
    EmbeddingRunResponse,
    EmbeddingStatisticsResponse,
    GenreRunRequest,
    GenreRunResponse,
    PlatformStatisticsResponse,
    ResolutionTaskListResponse,
    ResolutionTaskResponse,
    SearchResponse,
    StopTaskResponse,
    track_response,
)
from tracklinks.services.embedding_indexer import EmbeddingIndexer
from tracklinks.services.enrichment_store import TrackEnrichmentStore
from tracklinks.services.genre_backfill import GenreBackfill
from tracklinks.services.resolution_manager import ResolutionTaskManager
from tracklinks.services.search_service import SemanticSearchService

router = APIRouter(prefix="/enrichment", tags=["Enrichment"])


@router.post(
    "/resolution/tasks",
    response_model=ResolutionTaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_resolution_batch(
    manager: ResolutionTaskManager = Depends(get_resolution_manager),
) -> JSONResponse:
    task = await manager.submit()
    response = ResolutionTaskResponse.from_task(task)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=response.model_dump(mode="json", by_alias=True),
    )


@router.get("/resolution/tasks", response_model=ResolutionTaskListResponse)
async def list_resolution_tasks(
    manager: ResolutionTaskManager = Depends(get_resolution_manager),
) -> ResolutionTaskListResponse:
    return ResolutionTaskListResponse(
        items=[ResolutionTaskResponse.from_task(task) for task in manager.list_tasks()]
    )


@router.get("/resolution/tasks/{task_id}", response_model=ResolutionTaskResponse)
async def get_task_status(
    task_id: str,
    manager: ResolutionTaskManager = Depends(get_resolution_manager),
) -> ResolutionTaskResponse:
    task = manager.status(task_id)
    if task is None:
        raise NotFoundError("Resolution task not found.")
    return ResolutionTaskResponse.from_task(task)


@router.post("/resolution/tasks/{task_id}/stop", response_model=StopTaskResponse)
async def stop_task(
    task_id: str,
    manager: ResolutionTaskManager = Depends(get_resolution_manager),
) -> StopTaskResponse:
    before = manager.status(task_id)
    if before is None:
        raise NotFoundError("Resolution task not found.")
    task = manager.request_stop(task_id) or before
    return StopTaskResponse(
        task_id=task.id,
        status=task.status.value,
        stopped=before.status.active,
    )


@router.get("/search", response_model=SearchResponse)
async def search_tracks(
    q: str = Query(..., min_length=1, max_length=500),
    limit: int | None = Query(None, ge=1, le=500),
    exclude_explicit: bool = Query(False),
    service: SemanticSearchService = Depends(get_search_service),
) -> SearchResponse:
    records = await service.search(q, limit, exclude_explicit)
    return SearchResponse(query=q, items=[track_response(record) for record in records])


@router.get("/statistics", response_model=PlatformStatisticsResponse)
async def platform_statistics(
    store: TrackEnrichmentStore = Depends(get_enrichment_store),
) -> PlatformStatisticsResponse:
    return PlatformStatisticsResponse.model_validate(await store.statistics())


@router.post("/embeddings/run", response_model=EmbeddingRunResponse)
async def run_embedding_index(
    payload: EmbeddingRunRequest | None = None,
    indexer: EmbeddingIndexer = Depends(get_embedding_indexer),
) -> EmbeddingRunResponse:
    result = await indexer.run(payload.limit if payload else None)
    return EmbeddingRunResponse(**result.to_dict())


@router.get("/embeddings/statistics", response_model=EmbeddingStatisticsResponse)
async def embedding_statistics(
    store: TrackEnrichmentStore = Depends(get_enrichment_store),
) -> EmbeddingStatisticsResponse:
    return EmbeddingStatisticsResponse.model_validate(await store.embedding_statistics())


@router.post("/genres/run", response_model=GenreRunResponse)
async def run_genre_backfill(
    payload: GenreRunRequest | None = None,
    backfill: GenreBackfill = Depends(get_genre_backfill),
) -> GenreRunResponse:
    result = await backfill.run(payload.limit if payload else GenreRunRequest().limit)
    return GenreRunResponse(**result.to_dict())


__all__ = ["router"]
