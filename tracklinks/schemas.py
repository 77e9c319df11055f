"""Pydantic response models for the enrichment API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tracklinks.services.task_registry import ResolutionTask


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskProgress(_CamelModel):
    total: int = 0
    processed: int = 0
    failed: int = 0


class ResolutionTaskResponse(_CamelModel):
    task_id: str
    status: str
    progress: TaskProgress
    message: str | None = None
    created_at: datetime | None = None
    last_updated: datetime | None = None

    @classmethod
    def from_task(cls, task: ResolutionTask) -> "ResolutionTaskResponse":
        return cls(
            task_id=task.id,
            status=task.status.value,
            progress=TaskProgress(total=task.total, processed=task.processed, failed=task.failed),
            message=task.message,
            created_at=task.created_at,
            last_updated=task.last_updated,
        )


class ResolutionTaskListResponse(_CamelModel):
    items: list[ResolutionTaskResponse] = Field(default_factory=list)


class StopTaskResponse(_CamelModel):
    ok: bool = True
    task_id: str
    status: str
    stopped: bool


class PlatformRef(BaseModel):
    id: str
    url: str | None = None


class TrackResponse(_CamelModel):
    id: int
    title: str
    explicit: bool = False
    popularity: int | None = None
    duration: int | None = None
    preview_url: str | None = None
    release_date: datetime | None = None
    artists: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    platforms: dict[str, PlatformRef] = Field(default_factory=dict)
    score: float | None = None


class SearchResponse(_CamelModel):
    query: str
    items: list[TrackResponse] = Field(default_factory=list)


class PlatformStatisticsResponse(_CamelModel):
    total_tracks: int
    platforms: dict[str, int]
    tracks_with_seed: int
    tracks_needing_resolution: int
    last_updated: datetime


class EmbeddingStatisticsResponse(_CamelModel):
    total: int
    with_embeddings: int
    without_embeddings: int
    percent_complete: float


class EmbeddingRunRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=500)


class EmbeddingRunResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int


class GenreRunRequest(BaseModel):
    limit: int = Field(default=200, ge=1, le=5_000)


class GenreRunResponse(BaseModel):
    processed: int
    tagged: int
    associations: int


def track_response(record: Any) -> TrackResponse:
    return TrackResponse(
        id=record.id,
        title=record.title,
        explicit=record.explicit,
        popularity=record.popularity,
        duration=record.duration,
        preview_url=record.preview_url,
        release_date=record.release_date,
        artists=list(record.artists),
        genres=list(record.genres),
        platforms={key: PlatformRef(**value) for key, value in record.platforms.items()},
        score=record.score,
    )


__all__ = [
    "EmbeddingRunRequest",
    "EmbeddingRunResponse",
    "EmbeddingStatisticsResponse",
    "GenreRunRequest",
    "GenreRunResponse",
    "PlatformStatisticsResponse",
    "ResolutionTaskListResponse",
    "ResolutionTaskResponse",
    "SearchResponse",
    "StopTaskResponse",
    "TaskProgress",
    "TrackResponse",
    "track_response",
]
