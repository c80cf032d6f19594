import pytest
from fastapi.testclient import TestClient

from storyworker import config
from storyworker.main import app
from storyworker.generation import routes
from storyworker.generation.story import StoryService

from conftest import completed

TOKEN = "worker-token"
HOOK_SECRET = "hook-secret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class CannedClaude:
    def __init__(self, text):
        self.text = text

    def complete(self, system_prompt, user_prompt, max_tokens=1024):
        return self.text


@pytest.fixture
def client(monkeypatch, store, factory, orchestrator, receiver):
    monkeypatch.setattr(config, "WORKER_API_TOKEN", TOKEN)
    monkeypatch.setattr(config, "WEBHOOK_SECRET", HOOK_SECRET)
    monkeypatch.setattr(config, "WEBHOOK_ONLY", False)
    app.dependency_overrides[routes.get_store] = lambda: store
    app.dependency_overrides[routes.get_factory] = lambda: factory
    app.dependency_overrides[routes.get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[routes.get_receiver] = lambda: receiver
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health_is_public(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_is_public(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "counters" in response.json()


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": TOKEN}])
def test_bearer_token_required(client, headers):
    response = client.post(
        "/generations",
        json={"entity_type": "shot", "entity_id": "shot-1", "kind": "image"},
        headers=headers,
    )

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_generate_waits_for_result(client, image_adapter):
    image_adapter.script(completed("https://cdn/x.png"))

    response = client.post(
        "/generations",
        json={"entity_type": "shot", "entity_id": "shot-1", "kind": "image"},
        headers=AUTH,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["generation"]["status"] == "completed"
    assert body["generation"]["result_ref"] == "https://cdn/x.png"


def test_generate_precondition_failure(client):
    response = client.post(
        "/generations",
        json={"entity_type": "shot", "entity_id": "shot-2", "kind": "image"},
        headers=AUTH,
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["error_code"] == "precondition_failed"


def test_generate_unknown_entity(client):
    response = client.post(
        "/generations",
        json={"entity_type": "shot", "entity_id": "nope", "kind": "image"},
        headers=AUTH,
    )

    assert response.status_code == 404


def test_generate_rejects_bad_body(client):
    response = client.post(
        "/generations",
        json={"entity_type": "storyline", "entity_id": "x", "kind": "image"},
        headers=AUTH,
    )

    assert response.status_code == 422


def test_generate_without_wait_webhook_only(client, monkeypatch, image_adapter):
    monkeypatch.setattr(config, "WEBHOOK_ONLY", True)

    response = client.post(
        "/generations",
        json={"entity_type": "shot", "entity_id": "shot-1", "kind": "image", "wait": False},
        headers=AUTH,
    )

    assert response.status_code == 202
    assert response.json()["generation"]["status"] == "submitted"
    assert image_adapter.polled == []


def test_generate_without_wait_polls_in_background(client, image_adapter):
    image_adapter.script(completed("https://cdn/bg.png"))

    response = client.post(
        "/generations",
        json={"entity_type": "shot", "entity_id": "shot-1", "kind": "image", "wait": False},
        headers=AUTH,
    )
    generation_id = response.json()["generation"]["generation_id"]

    assert response.status_code == 202
    job = client.get(f"/generations/{generation_id}", headers=AUTH).json()
    assert job["generation"]["status"] == "completed"
    assert len(job["media_assets"]) == 1


def test_get_generation_not_found(client):
    response = client.get("/generations/missing", headers=AUTH)

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "generation missing not found", "error_code": "not_found"}


def test_get_entity(client):
    response = client.get("/entities/shot/shot-1", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["entity"]["visual_prompt"] == "red bicycle on a beach"


def test_webhook_requires_token(client):
    response = client.post("/webhooks/luma?token=wrong", json={"request_id": "req-1", "state": "completed"})

    assert response.status_code == 401


def test_webhook_applies_completion(client, monkeypatch, store):
    monkeypatch.setattr(config, "WEBHOOK_ONLY", True)
    start = client.post(
        "/generations",
        json={"entity_type": "shot", "entity_id": "shot-1", "kind": "image", "wait": False},
        headers=AUTH,
    ).json()
    hook = {
        "request_id": start["generation"]["external_request_id"],
        "state": "completed",
        "result_url": "https://cdn/hook.png",
    }

    first = client.post(f"/webhooks/luma?token={HOOK_SECRET}", json=hook)
    second = client.post(f"/webhooks/luma?token={HOOK_SECRET}", json=hook)

    assert first.status_code == 200
    assert first.json()["applied"] is True
    assert second.status_code == 200
    assert second.json()["applied"] is False
    assert store.get_row("shots", "shot-1")["image_url"] == "https://cdn/hook.png"
    assert len(store.rows("media_assets")) == 1


def test_webhook_unknown_job(client):
    response = client.post(
        f"/webhooks/luma?token={HOOK_SECRET}",
        json={"request_id": "ghost", "state": "completed", "result_url": "https://cdn/x.png"},
    )

    assert response.status_code == 404
    assert response.json()["error_code"] == "unknown_job"


def test_webhook_invalid_json(client):
    response = client.post(
        f"/webhooks/luma?token={HOOK_SECRET}",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_webhook"


def test_storylines_route(client, store):
    text = '{"storylines": [{"title": "Tide"}, {"title": "Ember"}, {"title": "Drift"}]}'
    app.dependency_overrides[routes.get_story_service] = lambda: StoryService(store, CannedClaude(text))

    response = client.post("/projects/proj-1/storylines", headers=AUTH)

    assert response.status_code == 200
    assert [s["title"] for s in response.json()["storylines"]] == ["Tide", "Ember", "Drift"]


def test_story_parse_error_is_502(client, store):
    app.dependency_overrides[routes.get_story_service] = lambda: StoryService(store, CannedClaude("no json here"))

    response = client.post("/scenes/scene-1/shots", headers=AUTH)

    assert response.status_code == 502
    assert response.json()["error_code"] == "story_parse_error"
