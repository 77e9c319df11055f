"""Lifecycle of batch platform-resolution jobs."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from tracklinks.config import ResolutionConfig
from tracklinks.errors import (
    CandidateValidationError,
    CatalogUnavailableError,
    ConcurrencyConflict,
    ExternalServiceError,
)
from tracklinks.integrations.link_resolver import PlatformLinkResolver
from tracklinks.logging import get_logger
from tracklinks.logging_events import log_event
from tracklinks.services.enrichment_store import ResolutionCandidate, TrackEnrichmentStore
from tracklinks.services.task_registry import (
    InMemoryTaskRegistry,
    ResolutionTask,
    ResolutionTaskStatus,
    TaskRegistry,
)
from tracklinks.utils.retry import backoff_delay_ms
from tracklinks.utils.scheduler import StopSignal

logger = get_logger(__name__)

CandidateSelector = Callable[[], Awaitable[Sequence[ResolutionCandidate]]]

NO_CANDIDATES_MESSAGE = "No tracks found needing platform resolution"


class TrackOutcome(str, Enum):
    RESOLVED = "resolved"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class ResolutionTaskManager:
    """Single-flight batch resolution with cooperative stop.

    At most one task owns the worker at a time; a submit while one is active
    returns the existing task. Per-track failures are counted and never abort
    the batch. Only a catalog outage ends a task early as ``failed``.
    """

    def __init__(
        self,
        resolver: PlatformLinkResolver,
        store: TrackEnrichmentStore,
        *,
        config: ResolutionConfig | None = None,
        registry: TaskRegistry | None = None,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._config = config or ResolutionConfig()
        self._registry: TaskRegistry = registry or InMemoryTaskRegistry()
        self._lock = asyncio.Lock()
        self._signals: dict[str, StopSignal] = {}
        self._workers: set[asyncio.Task[None]] = set()

    # Public API ---------------------------------------------------------

    async def submit(self, candidate_selector: CandidateSelector | None = None) -> ResolutionTask:
        """Start a batch, or return the batch that is already running."""

        try:
            task = await self._reserve()
        except ConcurrencyConflict as conflict:
            log_event(
                logger,
                "resolution.task",
                component="resolution_manager",
                task_id=conflict.existing.id,
                status="deduplicated",
            )
            return conflict.existing

        selector = candidate_selector or self._default_selector
        try:
            candidates = list(await selector())
            task = self._update(task.id, total=len(candidates))
            if task.status is ResolutionTaskStatus.STOPPING:
                return self._finish_stopped(task.id) or task
            if not candidates:
                return self._finish(task.id, ResolutionTaskStatus.COMPLETED, NO_CANDIDATES_MESSAGE)

            signal = StopSignal()
            self._signals[task.id] = signal
            worker = asyncio.create_task(self._run(task.id, candidates, signal))
        except BaseException as exc:
            # Cancellation included: a reserved task must never be left queued without a worker.
            self._abandon(task.id, exc)
            raise
        self._workers.add(worker)
        worker.add_done_callback(self._workers.discard)

        log_event(
            logger,
            "resolution.task",
            component="resolution_manager",
            task_id=task.id,
            status="queued",
            total=task.total,
        )
        return task

    def request_stop(self, task_id: str) -> ResolutionTask | None:
        """Ask a queued or processing task to stop; a no-op for any other state."""

        task = self._registry.get(task_id)
        if task is None:
            return None
        if not task.status.active:
            return task

        task = self._update(task_id, status=ResolutionTaskStatus.STOPPING, message="Stop requested")
        signal = self._signals.get(task_id)
        if signal is not None:
            signal.set()
        log_event(
            logger,
            "resolution.task",
            component="resolution_manager",
            task_id=task_id,
            status="stopping",
            processed=task.processed,
            total=task.total,
        )
        return task

    def status(self, task_id: str) -> ResolutionTask | None:
        return self._registry.get(task_id)

    def list_tasks(self) -> list[ResolutionTask]:
        return self._registry.all()

    async def wait(self, task_id: str) -> ResolutionTask | None:
        """Wait for the worker of ``task_id`` to finish; used by shutdown and tests."""

        while True:
            task = self._registry.get(task_id)
            if task is None or task.status.terminal:
                return task
            pending = list(self._workers)
            if not pending:
                return task
            await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

    async def shutdown(self) -> None:
        for task_id in list(self._signals):
            self.request_stop(task_id)
        workers = list(self._workers)
        for worker in workers:
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    # Worker -------------------------------------------------------------

    async def _default_selector(self) -> Sequence[ResolutionCandidate]:
        return await self._store.unresolved_tracks(self._config.max_candidates)

    async def _reserve(self) -> ResolutionTask:
        async with self._lock:
            existing = self._registry.active()
            if existing is not None:
                raise ConcurrencyConflict(existing)
            task = ResolutionTask.new()
            self._registry.add(task)
            return task

    async def _run(
        self,
        task_id: str,
        candidates: Sequence[ResolutionCandidate],
        signal: StopSignal,
    ) -> None:
        try:
            await self._process(task_id, candidates, signal)
        except CatalogUnavailableError as exc:
            logger.error("Resolution task %s aborted: %s", task_id, exc)
            self._finish(task_id, ResolutionTaskStatus.FAILED, f"Catalog store unavailable: {exc}")
        except Exception as exc:  # pragma: no cover - unexpected failure
            logger.exception("Resolution task %s crashed", task_id)
            self._finish(task_id, ResolutionTaskStatus.FAILED, f"Unexpected error: {exc}")
        finally:
            self._signals.pop(task_id, None)

    async def _process(
        self,
        task_id: str,
        candidates: Sequence[ResolutionCandidate],
        signal: StopSignal,
    ) -> None:
        current = self._registry.get(task_id)
        if current is None:
            return
        if current.status is ResolutionTaskStatus.QUEUED:
            self._update(task_id, status=ResolutionTaskStatus.PROCESSING)

        batch_size = max(1, self._config.batch_size)
        last = len(candidates) - 1
        for start in range(0, len(candidates), batch_size):
            batch = candidates[start : start + batch_size]
            for offset, candidate in enumerate(batch):
                if self._stop_requested(task_id):
                    self._finish_stopped(task_id)
                    return

                outcome = await self._process_track(task_id, candidate, signal)
                if outcome is TrackOutcome.INTERRUPTED:
                    self._finish_stopped(task_id)
                    return
                self._record(task_id, outcome)

                if start + offset < last:
                    await signal.sleep(self._config.track_delay_ms)

            task = self._registry.get(task_id)
            if task is not None:
                log_event(
                    logger,
                    "resolution.batch",
                    component="resolution_manager",
                    task_id=task_id,
                    batch=start // batch_size + 1,
                    processed=task.processed,
                    failed=task.failed,
                    total=task.total,
                )

        if self._stop_requested(task_id):
            self._finish_stopped(task_id)
            return
        self._finish_completed(task_id)

    async def _process_track(
        self,
        task_id: str,
        candidate: ResolutionCandidate,
        signal: StopSignal,
    ) -> TrackOutcome:
        attempt = 0
        while True:
            try:
                resolution = await self._resolver.resolve(
                    candidate.track_id,
                    candidate.seed_platform,
                    candidate.seed_platform_id,
                )
            except ExternalServiceError as exc:
                if not exc.retryable or attempt >= self._config.max_retries:
                    self._log_track(task_id, candidate, "failed", attempts=attempt + 1, error=exc)
                    return TrackOutcome.FAILED
                delay = backoff_delay_ms(
                    attempt,
                    base_ms=self._config.backoff_base_ms,
                    max_ms=self._config.backoff_max_ms,
                    retry_after_ms=exc.retry_after_ms,
                )
                attempt += 1
                self._log_track(
                    task_id, candidate, "retrying", attempts=attempt, error=exc, delay_ms=delay
                )
                if await signal.sleep(delay):
                    return TrackOutcome.INTERRUPTED
                continue
            except CandidateValidationError as exc:
                self._log_track(task_id, candidate, "failed", attempts=attempt + 1, error=exc)
                return TrackOutcome.FAILED

            inserted = await self._store.upsert_platform_links(candidate.track_id, resolution.links)
            self._log_track(
                task_id,
                candidate,
                "resolved",
                attempts=attempt + 1,
                links=len(resolution.links),
                inserted=inserted,
            )
            return TrackOutcome.RESOLVED

    # State helpers ------------------------------------------------------

    def _update(self, task_id: str, **changes: Any) -> ResolutionTask:
        task = self._registry.get(task_id)
        if task is None:
            raise KeyError(task_id)
        for name, value in changes.items():
            setattr(task, name, value)
        task.last_updated = datetime.utcnow()
        self._registry.save(task)
        return task

    def _abandon(self, task_id: str, exc: BaseException) -> None:
        self._signals.pop(task_id, None)
        task = self._registry.get(task_id)
        if task is None or task.status.terminal:
            return
        reason = str(exc) or exc.__class__.__name__
        self._finish(task_id, ResolutionTaskStatus.FAILED, f"Candidate selection failed: {reason}")

    def _stop_requested(self, task_id: str) -> bool:
        task = self._registry.get(task_id)
        return task is None or task.status is ResolutionTaskStatus.STOPPING

    def _record(self, task_id: str, outcome: TrackOutcome) -> None:
        task = self._registry.get(task_id)
        if task is None:
            return
        if outcome is TrackOutcome.RESOLVED:
            self._update(task_id, processed=task.processed + 1)
        elif outcome is TrackOutcome.FAILED:
            self._update(task_id, failed=task.failed + 1)

    def _finish(self, task_id: str, status: ResolutionTaskStatus, message: str) -> ResolutionTask:
        task = self._update(task_id, status=status, message=message)
        log_event(
            logger,
            "resolution.task",
            level="warning" if status is ResolutionTaskStatus.FAILED else "info",
            component="resolution_manager",
            task_id=task_id,
            status=status.value,
            processed=task.processed,
            failed=task.failed,
            total=task.total,
            detail=message,
        )
        return task

    def _finish_stopped(self, task_id: str) -> ResolutionTask | None:
        task = self._registry.get(task_id)
        if task is None:
            return None
        handled = task.processed + task.failed
        return self._finish(
            task_id,
            ResolutionTaskStatus.STOPPED,
            f"Task stopped after processing {handled} of {task.total} tracks",
        )

    def _finish_completed(self, task_id: str) -> None:
        task = self._registry.get(task_id)
        if task is None:
            return
        if task.total > 0 and task.processed == 0 and task.failed >= task.total:
            self._finish(
                task_id,
                ResolutionTaskStatus.FAILED,
                f"All {task.total} tracks failed to resolve",
            )
            return
        handled = task.processed + task.failed
        self._finish(
            task_id,
            ResolutionTaskStatus.COMPLETED,
            f"Completed processing {handled} tracks ({task.failed} failed)",
        )

    def _log_track(
        self,
        task_id: str,
        candidate: ResolutionCandidate,
        status: str,
        *,
        attempts: int,
        error: Exception | None = None,
        **meta: Any,
    ) -> None:
        if error is not None:
            meta["error"] = error.__class__.__name__
            meta["detail"] = str(error)
        log_event(
            logger,
            "resolution.track",
            level="warning" if status == "failed" else "info",
            component="resolution_manager",
            task_id=task_id,
            track_id=candidate.track_id,
            status=status,
            attempts=attempts,
            meta=meta,
        )


__all__ = [
    "CandidateSelector",
    "NO_CANDIDATES_MESSAGE",
    "ResolutionTaskManager",
    "TrackOutcome",
]
