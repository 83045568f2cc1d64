"""Tests des routes HTTP (soumission, suivi de job, opérateur, santé, enveloppes d'erreur)."""

from __future__ import annotations

import base64

from physim.domain.entities import JobStatus
from physim.domain.errors import USER_MESSAGES
from physim.infra.generation.base import GenerationResult

from tests.fakes import ADMIN_TOKEN, bad_request, timeout, valid_manifest

ADMIN = {"X-Admin-Token": ADMIN_TOKEN}


def test_submit_text_returns_manifest(client) -> None:
    resp = client.post("/v1/simulations", json={"text": "a ball thrown up"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ready"
    assert body["hit"] is False
    assert body["manifest"]["physics_type"] == "projectile"
    assert "job_id" not in body
    assert resp.headers.get("X-Request-ID")

    again = client.post("/v1/simulations", json={"text": "a ball thrown up"})
    assert again.json()["hit"] is True


def test_submit_image_base64(client, generator) -> None:
    generator.script = [GenerationResult(manifest=valid_manifest(), confidence=0.3)]
    image = base64.b64encode(b"\x89PNG bytes").decode()
    resp = client.post("/v1/simulations", json={"image_base64": image})
    assert resp.status_code == 200
    assert resp.json()["status"] == "clarification"
    assert resp.json()["confidence"] == 0.3


def test_input_error_envelope(client) -> None:
    resp = client.post(
        "/v1/simulations", json={"text": "x", "image_base64": "aGVsbG8="}, headers={"X-Trace-ID": "t-1"}
    )
    assert resp.status_code == 400
    assert resp.json() == {
        "code": "INPUT_ERROR",
        "message": USER_MESSAGES["input"],
        "trace_id": "t-1",
    }


def test_invalid_base64_is_input_error(client) -> None:
    resp = client.post("/v1/simulations", json={"image_base64": "not base64!!"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INPUT_ERROR"


def test_upstream_rejection_maps_to_422(client, generator) -> None:
    generator.script = [bad_request()]
    resp = client.post("/v1/simulations", json={"text": "a ball"})
    assert resp.status_code == 422
    assert resp.json()["code"] == "UPSTREAM_REJECTED"


def test_long_text_is_accepted_as_job_and_polled(client, jobs) -> None:
    resp = client.post("/v1/simulations", json={"text": "x" * 2500})
    assert resp.status_code == 202
    job_id = resp.json()["job_id"]
    assert client.get(f"/v1/jobs/{job_id}").json() == {"job_id": job_id, "status": "pending"}

    jobs.process(job_id)
    body = client.get(f"/v1/jobs/{job_id}").json()
    assert body["status"] == JobStatus.READY.value
    assert body["manifest"]["version"] == "1.0"


def test_ambiguous_large_image_job_asks_for_clarification(client, jobs, generator) -> None:
    """Une image volumineuse part en job; confiance faible: pas de manifeste, une précision."""
    generator.script = [GenerationResult(manifest=valid_manifest(), confidence=0.3)]
    image = base64.b64encode(b"\x89PNG" + b"\0" * (1024 * 1024 + 100_000)).decode()
    resp = client.post("/v1/simulations", json={"image_base64": image})
    assert resp.status_code == 202
    job_id = resp.json()["job_id"]

    jobs.process(job_id)
    body = client.get(f"/v1/jobs/{job_id}").json()
    assert body == {
        "job_id": job_id,
        "status": "ready",
        "confidence": 0.3,
        "clarification": USER_MESSAGES["clarification"],
    }


def test_unknown_job_is_404(client) -> None:
    resp = client.get("/v1/jobs/nope")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"
    assert resp.json()["message"] == USER_MESSAGES["job_not_found"]


def test_unknown_route_uses_envelope(client) -> None:
    resp = client.get("/v1/unknown")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


def test_admin_routes_require_token(client) -> None:
    assert client.get("/v1/admin/dead-letters").status_code == 401
    wrong = client.get("/v1/admin/dead-letters", headers={"X-Admin-Token": "nope"})
    assert wrong.status_code == 401
    assert client.get("/v1/admin/dead-letters", headers=ADMIN).json() == {"items": [], "count": 0}


def test_admin_lists_and_requeues_dead_letters(client, jobs, generator) -> None:
    generator.script = [bad_request()]
    resp = client.post("/v1/simulations", json={"text": "y" * 2500})
    job_id = resp.json()["job_id"]
    jobs.process(job_id)

    listed = client.get("/v1/admin/dead-letters", headers=ADMIN).json()
    assert listed["count"] == 1
    assert listed["items"][0]["job_id"] == job_id
    assert listed["items"][0]["reason"] == "upstream_error"
    assert "request" not in listed["items"][0]

    requeued = client.post(f"/v1/admin/dead-letters/{job_id}/requeue", headers=ADMIN)
    assert requeued.status_code == 202
    assert requeued.json()["status"] == "pending"
    assert client.post(f"/v1/admin/dead-letters/{job_id}/requeue", headers=ADMIN).status_code == 404


def test_health_reports_breaker_state(client, breaker) -> None:
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["storage"] == "memory"
    for _ in range(5):
        breaker.record_failure()
    assert client.get("/health").json()["status"] == "degraded"


def test_breaker_open_returns_featured_fallback(client, breaker, generator) -> None:
    generator.default = timeout()
    for _ in range(5):
        breaker.record_failure()
    resp = client.post("/v1/simulations", json={"text": "orbit of the moon"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "fallback"
    assert len(body["featured"]) == 3
    assert generator.calls == []


def test_metrics_endpoint(client) -> None:
    client.post("/v1/simulations", json={"text": "a ball"})
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
