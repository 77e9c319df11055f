from __future__ import annotations

import os
import time
from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from tests.helpers import add_track, songlink_payload
from tracklinks.config import load_config
from tracklinks.dependencies import build_services
from tracklinks.errors import CatalogUnavailableError
from tracklinks.main import API_BASE_PATH, create_app
from tracklinks.services.search_service import SemanticSearchService

BASE = f"{API_BASE_PATH}/enrichment"


class StaticEmbedder:
    async def embed(self, text: str) -> list[float]:
        return [1.0, 0.0] if "dance" in text.lower() else [0.0, 1.0]


def _songlink_handler(request: httpx.Request) -> httpx.Response:
    seed = request.url.params["url"].rsplit("/", 1)[-1]
    if seed == "missing":
        return httpx.Response(404)
    return httpx.Response(
        200,
        json=songlink_payload(
            deezer=(f"DEEZER_SONG::dz-{seed}", f"https://www.deezer.com/track/dz-{seed}"),
        ),
    )


@pytest.fixture
def client() -> Iterator[TestClient]:
    config = load_config(
        {
            "DATABASE_URL": os.environ["DATABASE_URL"],
            "SONGLINK_BASE_URL": "http://songlink.test",
            "RESOLUTION_TRACK_DELAY_MS": "0",
        }
    )

    def _factory(active_config):
        return build_services(
            active_config,
            embedder=StaticEmbedder(),
            transport=httpx.MockTransport(_songlink_handler),
        )

    app = create_app(config, services_factory=_factory)
    with TestClient(app) as test_client:
        yield test_client


def _wait_for_terminal(client: TestClient, task_id: str) -> dict:
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        body = client.get(f"{BASE}/resolution/tasks/{task_id}").json()
        if body["status"] in {"completed", "failed", "stopped"}:
            return body
        time.sleep(0.01)
    raise AssertionError("task did not finish")


def test_submit_and_poll_resolution_task(client: TestClient) -> None:
    add_track("One", spotify_id="one")
    add_track("Two", spotify_id="two")
    add_track("Three", spotify_id="missing")

    response = client.post(f"{BASE}/resolution/tasks")

    assert response.status_code == 202
    body = response.json()
    assert body["taskId"]
    assert body["progress"]["total"] == 3

    final = _wait_for_terminal(client, body["taskId"])
    assert final["status"] == "completed"
    assert final["progress"] == {"total": 3, "processed": 2, "failed": 1}

    listing = client.get(f"{BASE}/resolution/tasks").json()
    assert [item["taskId"] for item in listing["items"]] == [body["taskId"]]

    stats = client.get(f"{BASE}/statistics").json()
    assert stats["totalTracks"] == 3
    assert stats["platforms"]["deezer"] == 2
    assert stats["tracksNeedingResolution"] == 1


def test_submit_without_candidates_reports_completed(client: TestClient) -> None:
    response = client.post(f"{BASE}/resolution/tasks")

    assert response.status_code == 202
    assert response.json()["status"] == "completed"
    assert response.json()["message"] == "No tracks found needing platform resolution"


def test_unknown_task_returns_not_found_envelope(client: TestClient) -> None:
    response = client.get(f"{BASE}/resolution/tasks/nope")

    assert response.status_code == 404
    assert response.json() == {
        "ok": False,
        "error": {"code": "NOT_FOUND", "message": "Resolution task not found."},
    }
    assert response.headers["X-Debug-Id"]
    assert client.post(f"{BASE}/resolution/tasks/nope/stop").status_code == 404


def test_stop_on_finished_task_is_acknowledged_noop(client: TestClient) -> None:
    task_id = client.post(f"{BASE}/resolution/tasks").json()["taskId"]

    response = client.post(f"{BASE}/resolution/tasks/{task_id}/stop")

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "taskId": task_id,
        "status": "completed",
        "stopped": False,
    }


def test_search_returns_hydrated_tracks(client: TestClient) -> None:
    dance = add_track("Dance Floor", artists=["DJ"], embedding=[1.0, 0.0], popularity=5)
    add_track("Quiet", embedding=[0.0, 1.0], popularity=80)

    response = client.get(f"{BASE}/search", params={"q": "dance all night", "limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["query"] == "dance all night"
    assert [item["id"] for item in body["items"]] == [dance]
    assert body["items"][0]["artists"] == ["DJ"]
    assert body["items"][0]["score"] == pytest.approx(1.0)


def test_search_requires_query(client: TestClient) -> None:
    response = client.get(f"{BASE}/search")

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_catalog_outage_maps_to_dependency_error(client: TestClient, monkeypatch) -> None:
    async def _broken(self, *args, **kwargs):
        raise CatalogUnavailableError("embedding_candidates")

    monkeypatch.setattr(SemanticSearchService, "search", _broken)

    response = client.get(f"{BASE}/search", params={"q": "anything at all"})

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "DEPENDENCY_ERROR"
    assert response.json()["error"]["meta"] == {"operation": "embedding_candidates"}


def test_embedding_and_genre_jobs(client: TestClient) -> None:
    add_track("Summer House Anthem", popularity=3)
    add_track("Dance Track", popularity=7)

    run = client.post(f"{BASE}/embeddings/run", json={"limit": 10})
    assert run.status_code == 200
    assert run.json() == {"processed": 2, "succeeded": 2, "failed": 0}

    stats = client.get(f"{BASE}/embeddings/statistics").json()
    assert stats == {
        "total": 2,
        "withEmbeddings": 2,
        "withoutEmbeddings": 0,
        "percentComplete": 100.0,
    }

    genres = client.post(f"{BASE}/genres/run")
    assert genres.status_code == 200
    assert genres.json() == {"processed": 2, "tagged": 2, "associations": 4}
