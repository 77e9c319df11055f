from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import pytest

from tests.helpers import add_track, platform_rows, songlink_payload
from tracklinks.config import ResolutionConfig
from tracklinks.errors import (
    CatalogUnavailableError,
    PermanentExternalError,
    TransientExternalError,
)
from tracklinks.integrations.link_resolver import LinkResolution, PlatformLinkResolver
from tracklinks.integrations.platforms import PlatformLink
from tracklinks.models import Platform
from tracklinks.services.enrichment_store import TrackEnrichmentStore
from tracklinks.services.resolution_manager import NO_CANDIDATES_MESSAGE, ResolutionTaskManager
from tracklinks.services.task_registry import ResolutionTaskStatus


@dataclass
class StubResolver:
    """Returns a Deezer link per track unless an error is queued for it."""

    errors: dict[int, list[Exception]] = field(default_factory=dict)
    calls: list[int] = field(default_factory=list)
    on_call: Callable[[int], Any] | None = None
    gate: asyncio.Event | None = None

    async def resolve(
        self, track_id: int, seed_platform: Platform, seed_platform_id: str
    ) -> LinkResolution:
        self.calls.append(track_id)
        if self.on_call is not None:
            self.on_call(track_id)
        if self.gate is not None:
            await self.gate.wait()
        queued = self.errors.get(track_id)
        if queued:
            raise queued.pop(0)
        link = PlatformLink(track_id, Platform.DEEZER, f"dz{track_id}", None)
        return LinkResolution(track_id=track_id, links=(link,))


def _config(**overrides: Any) -> ResolutionConfig:
    values = {
        "batch_size": 2,
        "track_delay_ms": 0,
        "max_retries": 3,
        "backoff_base_ms": 1,
        "backoff_max_ms": 5,
    }
    values.update(overrides)
    return ResolutionConfig(**values)


def _manager(resolver: StubResolver, **overrides: Any) -> ResolutionTaskManager:
    return ResolutionTaskManager(resolver, TrackEnrichmentStore(), config=_config(**overrides))


@pytest.mark.asyncio
async def test_batch_counts_permanent_failures_and_completes() -> None:
    ids = [add_track(f"Track {n}", spotify_id=f"sp{n}") for n in range(3)]
    resolver = StubResolver(
        errors={ids[1]: [PermanentExternalError("songlink", "not found", status_code=404)]}
    )
    manager = _manager(resolver)

    task = await manager.submit()
    assert task.total == 3
    final = await manager.wait(task.id)

    assert final.status is ResolutionTaskStatus.COMPLETED
    assert final.processed == 2
    assert final.failed == 1
    assert final.message == "Completed processing 3 tracks (1 failed)"
    assert resolver.calls == ids
    deezer = sorted(row[0] for row in platform_rows() if row[1] == "deezer")
    assert deezer == [ids[0], ids[2]]


@pytest.mark.asyncio
async def test_transient_errors_retry_with_backoff_and_retry_hint(monkeypatch) -> None:
    track_id = add_track("Busy", spotify_id="sp")
    resolver = StubResolver(
        errors={
            track_id: [
                TransientExternalError("songlink", "rate limited", status_code=429, retry_after_ms=4),
                TransientExternalError("songlink", "server error", status_code=503),
            ]
        }
    )
    manager = _manager(resolver)
    delays: list[float] = []
    real_sleep = asyncio.sleep

    async def _fake_sleep(delay: float, *args: Any, **kwargs: Any) -> None:
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("asyncio.sleep", _fake_sleep)

    task = await manager.submit()
    final = await manager.wait(task.id)

    assert final.status is ResolutionTaskStatus.COMPLETED
    assert final.processed == 1
    assert resolver.calls == [track_id, track_id, track_id]
    backoffs = [delay for delay in delays if delay > 0]
    assert backoffs == [0.004, 0.002]


@pytest.mark.asyncio
async def test_exhausted_retries_fail_only_that_track() -> None:
    flaky = add_track("Flaky", spotify_id="f")
    fine = add_track("Fine", spotify_id="g")
    resolver = StubResolver(
        errors={flaky: [TransientExternalError("songlink", "down", status_code=503)] * 3}
    )
    manager = _manager(resolver, max_retries=2)

    task = await manager.submit()
    final = await manager.wait(task.id)

    assert resolver.calls.count(flaky) == 3
    assert final.status is ResolutionTaskStatus.COMPLETED
    assert (final.processed, final.failed) == (1, 1)
    assert fine in resolver.calls


@pytest.mark.asyncio
async def test_all_tracks_failing_marks_task_failed() -> None:
    ids = [add_track(f"T{n}", spotify_id=f"s{n}") for n in range(2)]
    resolver = StubResolver(
        errors={track_id: [PermanentExternalError("songlink", "gone", status_code=404)] for track_id in ids}
    )
    manager = _manager(resolver)

    task = await manager.submit()
    final = await manager.wait(task.id)

    assert final.status is ResolutionTaskStatus.FAILED
    assert final.failed == 2
    assert final.message == "All 2 tracks failed to resolve"


@pytest.mark.asyncio
async def test_stop_after_first_track_yields_partial_stopped_task() -> None:
    ids = [add_track(f"Track {n}", spotify_id=f"sp{n}") for n in range(10)]
    resolver = StubResolver()
    manager = _manager(resolver, track_delay_ms=50)
    task_ids: list[str] = []

    def _stop_after_first(track_id: int) -> None:
        if track_id == ids[0]:
            manager.request_stop(task_ids[0])

    resolver.on_call = _stop_after_first

    task = await manager.submit()
    task_ids.append(task.id)
    final = await manager.wait(task.id)

    assert final.status is ResolutionTaskStatus.STOPPED
    assert 1 <= final.processed < 10
    assert final.message == f"Task stopped after processing {final.processed} of 10 tracks"
    assert resolver.calls == [ids[0]]
    assert len([row for row in platform_rows() if row[1] == "deezer"]) == final.processed


@pytest.mark.asyncio
async def test_stop_interrupts_backoff_wait() -> None:
    track_id = add_track("Slow", spotify_id="sp")
    resolver = StubResolver(
        errors={track_id: [TransientExternalError("songlink", "busy", retry_after_ms=60_000)]}
    )
    manager = _manager(resolver, backoff_max_ms=60_000)

    task = await manager.submit()
    await asyncio.sleep(0.05)
    manager.request_stop(task.id)
    final = await asyncio.wait_for(manager.wait(task.id), timeout=2)

    assert final.status is ResolutionTaskStatus.STOPPED
    assert final.processed == 0


@pytest.mark.asyncio
async def test_concurrent_submit_returns_the_same_task() -> None:
    for n in range(3):
        add_track(f"T{n}", spotify_id=f"s{n}")
    gate = asyncio.Event()
    manager = _manager(StubResolver(gate=gate))

    first, second = await asyncio.gather(manager.submit(), manager.submit())
    third = await manager.submit()

    assert first.id == second.id == third.id
    assert len(manager.list_tasks()) == 1

    gate.set()
    final = await manager.wait(first.id)
    assert final.status is ResolutionTaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_request_stop_is_noop_on_finished_task() -> None:
    add_track("Only", spotify_id="s")
    manager = _manager(StubResolver())

    task = await manager.submit()
    final = await manager.wait(task.id)
    after = manager.request_stop(task.id)

    assert final.status is ResolutionTaskStatus.COMPLETED
    assert after is not None
    assert after.status is ResolutionTaskStatus.COMPLETED
    assert manager.request_stop("missing") is None


@pytest.mark.asyncio
async def test_no_candidates_completes_immediately() -> None:
    add_track("Unseeded")
    manager = _manager(StubResolver())

    task = await manager.submit()

    assert task.status is ResolutionTaskStatus.COMPLETED
    assert task.total == 0
    assert task.message == NO_CANDIDATES_MESSAGE

    again = await manager.submit()
    assert again.id != task.id


@pytest.mark.asyncio
async def test_catalog_outage_during_selection_fails_task_and_propagates() -> None:
    manager = _manager(StubResolver())

    async def _broken_selector():
        raise CatalogUnavailableError("unresolved_tracks")

    with pytest.raises(CatalogUnavailableError):
        await manager.submit(_broken_selector)

    [task] = manager.list_tasks()
    assert task.status is ResolutionTaskStatus.FAILED
    assert "Candidate selection failed" in task.message


@pytest.mark.asyncio
async def test_catalog_outage_mid_batch_fails_task(monkeypatch) -> None:
    add_track("A", spotify_id="a")
    manager = _manager(StubResolver())

    async def _broken_upsert(track_id, links):
        raise CatalogUnavailableError("upsert_platform_links")

    monkeypatch.setattr(manager._store, "upsert_platform_links", _broken_upsert)

    task = await manager.submit()
    final = await manager.wait(task.id)

    assert final.status is ResolutionTaskStatus.FAILED
    assert final.message.startswith("Catalog store unavailable")


@pytest.mark.asyncio
async def test_progress_counters_never_decrease() -> None:
    for n in range(4):
        add_track(f"T{n}", spotify_id=f"s{n}")
    manager = _manager(StubResolver(), track_delay_ms=5)
    observed: list[tuple[int, int]] = []

    task = await manager.submit()
    while True:
        snapshot = manager.status(task.id)
        observed.append((snapshot.processed, snapshot.failed))
        if snapshot.status.terminal:
            break
        await asyncio.sleep(0.001)

    assert observed == sorted(observed)
    assert observed[-1] == (4, 0)


@pytest.mark.asyncio
async def test_link_service_404_is_counted_with_the_default_selector() -> None:
    ids = [add_track(f"Track {n}", spotify_id=seed) for n, seed in enumerate(["one", "gone", "two"])]
    add_track("Already resolved", spotify_id="done", links=[(Platform.DEEZER, "dz-done")])
    add_track("Unseeded")
    seen: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seed = request.url.params["url"].rsplit("/", 1)[-1]
        seen.append(seed)
        if seed == "gone":
            return httpx.Response(404, json={"statusCode": 404})
        return httpx.Response(
            200,
            json=songlink_payload(
                deezer=(f"DEEZER_SONG::dz-{seed}", f"https://www.deezer.com/track/dz-{seed}"),
            ),
        )

    resolver = PlatformLinkResolver(
        base_url="http://songlink.test/v1",
        api_key=None,
        user_country="US",
        timeout_ms=2_000,
        transport=httpx.MockTransport(handler),
    )
    manager = ResolutionTaskManager(resolver, TrackEnrichmentStore(), config=_config())

    task = await manager.submit()
    final = await manager.wait(task.id)

    assert seen == ["one", "gone", "two"]
    assert final.status is ResolutionTaskStatus.COMPLETED
    assert (final.total, final.processed, final.failed) == (3, 2, 1)
    assert [row[2] for row in platform_rows(ids[0])] == ["one", "dz-one"]
    assert [row[2] for row in platform_rows(ids[1])] == ["gone"]

    stats = await TrackEnrichmentStore().statistics()
    assert stats["tracksNeedingResolution"] == 1


@pytest.mark.asyncio
async def test_unexpected_selector_error_fails_the_reserved_task() -> None:
    add_track("A", spotify_id="a")
    manager = _manager(StubResolver())

    async def _broken_selector():
        raise ValueError("bad row")

    with pytest.raises(ValueError):
        await manager.submit(_broken_selector)

    [task] = manager.list_tasks()
    assert task.status is ResolutionTaskStatus.FAILED
    assert task.message == "Candidate selection failed: bad row"

    retry = await manager.submit()
    assert retry.id != task.id
    assert (await manager.wait(retry.id)).status is ResolutionTaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancelled_submit_does_not_leave_a_queued_task() -> None:
    manager = _manager(StubResolver())
    selecting = asyncio.Event()

    async def _slow_selector():
        selecting.set()
        await asyncio.Event().wait()
        return []

    pending = asyncio.create_task(manager.submit(_slow_selector))
    await selecting.wait()
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    [task] = manager.list_tasks()
    assert task.status is ResolutionTaskStatus.FAILED
    assert task.status.terminal


@pytest.mark.asyncio
async def test_stop_while_selecting_ends_stopped_even_without_candidates() -> None:
    manager = _manager(StubResolver())
    selecting = asyncio.Event()
    release = asyncio.Event()

    async def _gated_selector():
        selecting.set()
        await release.wait()
        return []

    pending = asyncio.create_task(manager.submit(_gated_selector))
    await selecting.wait()
    [queued] = manager.list_tasks()
    assert queued.status is ResolutionTaskStatus.QUEUED
    manager.request_stop(queued.id)
    release.set()

    task = await pending
    assert task.status is ResolutionTaskStatus.STOPPED
    assert manager.status(queued.id).status is ResolutionTaskStatus.STOPPED


@pytest.mark.asyncio
async def test_no_inter_track_delay_after_the_last_track() -> None:
    add_track("Only", spotify_id="s")
    manager = _manager(StubResolver(), track_delay_ms=60_000)

    task = await manager.submit()
    final = await asyncio.wait_for(manager.wait(task.id), timeout=2)

    assert final.status is ResolutionTaskStatus.COMPLETED
    assert final.processed == 1
