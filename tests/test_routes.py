import time

import pytest
from fastapi.testclient import TestClient

from storyreel import metrics
from storyreel.credits import CreditPurchaseService, SimulatedPaymentProcessor
from storyreel.dependencies import get_artifact_store, get_generation_service, get_ledger, get_purchase_service
from storyreel.main import app
from storyreel.pipeline.models import CharacterDetails
from storyreel.pipeline.orchestrator import GenerationService


async def scene_image(inp, token):
    return "https://img/" + inp.prompt.replace(" ", "-") + ".png"


@pytest.fixture
def service(ledger, artifact_store, fake_stage):
    return GenerationService(ledger, artifact_store, {
        "character_template": fake_stage("character_template", CharacterDetails(main_character="A heron")),
        "story_script": fake_stage("story_script", [
            {"text": "The heron waits.", "image_prompt": "heron at dawn"},
            {"text": "The heron strikes.", "image_prompt": "heron fishing"},
        ]),
        "image": fake_stage("image", side_effect=scene_image),
    })


@pytest.fixture
def client(ledger, artifact_store, service):
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_artifact_store] = lambda: artifact_store
    app.dependency_overrides[get_generation_service] = lambda: service
    app.dependency_overrides[get_purchase_service] = lambda: CreditPurchaseService(
        ledger, SimulatedPaymentProcessor(delay_seconds=0)
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def wait_for_terminal(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/pipeline/jobs/{job_id}").json()
        if job["status"] in ("partial", "complete", "failed"):
            return job
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "fal" in response.json()["vendors"]


def test_metrics_report_recent_stage_failure_rate(client):
    metrics.inc_counter("stages.succeeded.image", 3)
    metrics.inc_counter("stages.failed.LimitReached")
    metrics.inc_counter("ledger.denied.image")

    snapshot = client.get("/metrics").json()

    assert snapshot["stage_failure_rate_5m"] == 25.0
    assert snapshot["counters"]["stages.succeeded.image"] == 3
    assert "timeseries" not in snapshot


# ── Usage ────────────────────────────────────────────────────────────────────

def test_usage_defaults(client):
    response = client.get("/usage/new-user")

    assert response.json() == {"remainingImages": 100, "remainingVideos": 20}


def test_usage_admission(client):
    response = client.post("/usage/user-1/videos")

    body = response.json()
    assert body["admitted"] is True
    assert body["kind"] == "video"
    assert body["remaining"]["remainingVideos"] == 19


def test_cached_counts_appear_after_first_decision(client):
    assert client.get("/usage/user-2/cached").status_code == 404

    client.post("/usage/user-2/images")
    response = client.get("/usage/user-2/cached")

    assert response.status_code == 200
    assert response.json()["remainingImages"] == 99


# ── Admin ────────────────────────────────────────────────────────────────────

def test_admin_requires_secret(client, monkeypatch):
    monkeypatch.setenv("ADMIN_SHARED_SECRET", "s3cret")
    body = {"image_limit": 50, "video_limit": 10}

    assert client.put("/admin/limits/user-1", json=body).status_code == 401
    assert client.put("/admin/limits/user-1", json=body, headers={"X-Admin-Secret": "nope"}).status_code == 401

    response = client.put("/admin/limits/user-1", json=body, headers={"X-Admin-Secret": "s3cret"})
    assert response.status_code == 200
    assert response.json() == {"remainingImages": 50, "remainingVideos": 10}


def test_admin_rejects_non_positive_limits(client):
    response = client.put("/admin/limits/user-1", json={"image_limit": 0, "video_limit": 10})

    assert response.status_code == 422


# ── Pipeline ─────────────────────────────────────────────────────────────────

def test_unknown_job_is_404(client):
    assert client.get("/pipeline/jobs/does-not-exist").status_code == 404
    assert client.post("/pipeline/jobs/does-not-exist/cancel").status_code == 404


def test_story_job_runs_in_background(client):
    response = client.post("/pipeline/story", json={
        "identity_id": "user-1",
        "prompt": "a heron hunting",
        "num_scenes": 2,
        "is_public": True,
    })

    assert response.status_code == 202
    job = wait_for_terminal(client, response.json()["job_id"])
    assert job["status"] == "complete"
    assert job["progress_pct"] == 100
    assert [s["image_url"] for s in job["scenes"]] == [
        "https://img/heron-at-dawn.png",
        "https://img/heron-fishing.png",
    ]

    gallery = client.get("/gallery").json()
    assert len(gallery) == 2
    assert client.get("/usage/user-1").json()["remainingImages"] == 98


def test_retrigger_of_succeeded_scene_is_400(client):
    job_id = client.post("/pipeline/story", json={"identity_id": "user-1", "prompt": "a heron", "num_scenes": 1}).json()["job_id"]
    wait_for_terminal(client, job_id)

    response = client.post(f"/pipeline/story/{job_id}/scenes/0/image")

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidInput"


def test_story_request_validation(client):
    response = client.post("/pipeline/story", json={"identity_id": "user-1", "prompt": "x", "num_scenes": 0})

    assert response.status_code == 422


# ── Credits ──────────────────────────────────────────────────────────────────

def test_credit_packages(client):
    packages = client.get("/credits/packages").json()

    assert {p["id"] for p in packages} == {"images", "videos", "combo"}


def test_anonymous_purchase_is_rejected(client):
    response = client.post("/credits/purchase", json={
        "identity": {"id": "anon-1", "is_anonymous": True},
        "package_id": "combo",
    })

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidInput"


def test_purchase_grants_credits(client):
    response = client.post("/credits/purchase", json={"identity": {"id": "user-9"}, "package_id": "videos"})

    assert response.status_code == 200
    assert client.get("/usage/user-9").json() == {"remainingImages": 100, "remainingVideos": 120}
