"""Integration tests for FastAPI API endpoints using TestClient.

The app is assembled with the real ``build_components`` wiring (memory
stores, no backoff, no rate limiting) around a scripted vision client.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from src.api.routes import router as api_router
from src.config.settings import Settings
from src.interfaces.vision_client import IVisionInferenceClient
from src.main import build_components
from src.models.analysis import StageName
from src.utils.errors import InferenceError
from tests.conftest import (
    IMAGE_URL,
    MARKS_PHOTO,
    FakeVisionClient,
    evidence_aware_script,
    stage_script,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _create_test_app(
    vision_client: IVisionInferenceClient | None = None,
) -> tuple[FastAPI, dict[str, Any]]:
    settings = Settings(
        _env_file=None,
        openai_api_key="",
        anthropic_api_key="",
        analysis_db_path="",
        session_db_path="",
        stage_backoff_base_seconds=0.0,
        stage_backoff_max_seconds=0.0,
        evaluation_requests_per_minute=0.0,
    )
    components = build_components(
        settings,
        {},
        http_client=MagicMock(),
        vision_client=vision_client or FakeVisionClient(),
    )

    app = FastAPI()
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router)
    for key, value in components.items():
        setattr(app.state, key, value)
    return app, components


def _client(vision_client: IVisionInferenceClient | None = None) -> TestClient:
    app, _ = _create_test_app(vision_client)
    return TestClient(app)


def _analyze(client: TestClient) -> dict[str, Any]:
    resp = client.post("/api/v1/analyses", json={"images": [IMAGE_URL]})
    assert resp.status_code == 200
    return resp.json()


def _parse_sse(body: str) -> list[tuple[str, dict[str, Any]]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health_reports_vision_provider(self) -> None:
        resp = _client().get("/api/v1/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["providers"]["vision_provider"] == "fake-vision"


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


class TestAnalyses:
    def test_analyze_then_fetch(self) -> None:
        client = _client()
        data = _analyze(client)

        outcome = data["outcome"]
        assert outcome["name"] == "Georgian Sterling Silver Teapot"
        assert outcome["domain"] == "silver"
        assert data["interactive_recommended"] is True
        assert data["escalation"]["should_offer"] is True

        fetched = client.get(f"/api/v1/analyses/{outcome['analysis_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["outcome"] == outcome

        history = client.get(f"/api/v1/analyses/{outcome['analysis_id']}/confidence").json()
        assert [e["reason"] for e in history["history"]] == [
            "stage:triage",
            "stage:evidence",
            "stage:identification",
            "stage:synthesis",
        ]

    def test_confident_outcome_not_recommended_for_interaction(self) -> None:
        client = _client(FakeVisionClient(stage_script(confidence=0.88)))
        assert _analyze(client)["interactive_recommended"] is False

    def test_invalid_image_reference(self) -> None:
        resp = _client().post("/api/v1/analyses", json={"images": ["ftp://example.com/a.jpg"]})

        assert resp.status_code == 400
        assert resp.json()["error"] == "ValidationError"
        assert "http(s) URL" in resp.json()["detail"]

    def test_schema_validation(self) -> None:
        client = _client()
        assert client.post("/api/v1/analyses", json={"images": []}).status_code == 422
        resp = client.post("/api/v1/analyses", json={"images": [IMAGE_URL], "asking_price": -5})
        assert resp.status_code == 422

    def test_unknown_analysis(self) -> None:
        resp = _client().get("/api/v1/analyses/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFoundError"

    def test_provider_failure_is_bad_gateway(self) -> None:
        client = _client(FakeVisionClient({StageName.TRIAGE: InferenceError("down")}))
        resp = client.post("/api/v1/analyses", json={"images": [IMAGE_URL]})

        assert resp.status_code == 502
        assert resp.json()["error"] == "ExternalServiceError"


class TestStreaming:
    def test_stream_ends_with_saved_outcome(self) -> None:
        client = _client()
        with client.stream("POST", "/api/v1/analyses/stream", json={"images": [IMAGE_URL]}) as r:
            assert r.status_code == 200
            assert r.headers["content-type"].startswith("text/event-stream")
            body = "".join(r.iter_text())

        events = _parse_sse(body)
        kinds = [kind for kind, _ in events]
        assert kinds.count("stage:start") == 4
        assert kinds[-1] == "complete"
        progress = [data["progress"] for _, data in events]
        assert progress == sorted(progress)

        analysis_id = events[-1][1]["data"]["analysis_id"]
        assert client.get(f"/api/v1/analyses/{analysis_id}").status_code == 200

    def test_stream_reports_failure(self) -> None:
        client = _client(FakeVisionClient({StageName.TRIAGE: InferenceError("down")}))
        with client.stream("POST", "/api/v1/analyses/stream", json={"images": [IMAGE_URL]}) as r:
            body = "".join(r.iter_text())

        events = _parse_sse(body)
        assert events[-1][0] == "error"
        assert [kind for kind, _ in events].count("error") == 1

    def test_stream_reports_failed_save(self) -> None:
        app, components = _create_test_app()
        components["analysis_store"].save = AsyncMock(side_effect=RuntimeError("disk full"))
        client = TestClient(app)
        with client.stream("POST", "/api/v1/analyses/stream", json={"images": [IMAGE_URL]}) as r:
            body = "".join(r.iter_text())

        events = _parse_sse(body)
        kinds = [kind for kind, _ in events]
        assert kinds[-1] == "error"
        assert "complete" not in kinds
        assert events[-1][1]["message"] == "disk full"
        assert events[-1][1]["data"]["error_type"] == "RuntimeError"


# ---------------------------------------------------------------------------
# Interactive sessions
# ---------------------------------------------------------------------------


class TestSessions:
    def test_full_session_flow(self) -> None:
        client = _client(FakeVisionClient(evidence_aware_script(0.72, 0.86)))
        analysis_id = _analyze(client)["outcome"]["analysis_id"]

        started = client.post("/api/v1/sessions", json={"analysis_id": analysis_id})
        assert started.status_code == 201
        session_id = started.json()["session"]["session_id"]
        assert started.json()["next_need"]["id"] == "marks-photo"

        answered = client.post(
            f"/api/v1/sessions/{session_id}/responses",
            json={"need_id": "marks-photo", "type": "photo", "content": MARKS_PHOTO},
        )
        assert answered.status_code == 200
        assert answered.json()["next_need"]["id"] != "marks-photo"

        result = client.post(f"/api/v1/sessions/{session_id}/reanalyze", json={"conclude": True})
        assert result.status_code == 200
        data = result.json()
        assert data["confidence_delta"] > 0
        assert data["outcome"]["supersedes"] == analysis_id
        assert data["session"]["status"] == "complete"
        assert data["session"]["rounds"] == 1

        snapshot = client.get(f"/api/v1/sessions/{session_id}").json()["session"]
        assert [r["overall_confidence"] for r in snapshot["confidence_history"]][0] == 0.72

    def test_session_errors(self) -> None:
        client = _client()
        analysis_id = _analyze(client)["outcome"]["analysis_id"]
        session_id = client.post(
            "/api/v1/sessions", json={"analysis_id": analysis_id}
        ).json()["session"]["session_id"]

        assert client.get("/api/v1/sessions/vera-missing").status_code == 404

        nothing_new = client.post(f"/api/v1/sessions/{session_id}/reanalyze", json={})
        assert nothing_new.status_code == 400

        wrong_kind = client.post(
            f"/api/v1/sessions/{session_id}/responses",
            json={"need_id": "marks-photo", "type": "text", "content": "a lion"},
        )
        assert wrong_kind.status_code == 400
        assert "photo" in wrong_kind.json()["detail"]

        abandoned = client.post(f"/api/v1/sessions/{session_id}/abandon")
        assert abandoned.json()["session"]["status"] == "abandoned"

        late = client.post(
            f"/api/v1/sessions/{session_id}/responses",
            json={"need_id": "marks-photo", "type": "photo", "content": MARKS_PHOTO},
        )
        assert late.status_code == 409
        assert late.json()["error"] == "SessionStateError"

    def test_confident_analysis_requires_deep_review(self) -> None:
        client = _client(FakeVisionClient(stage_script(confidence=0.88)))
        analysis_id = _analyze(client)["outcome"]["analysis_id"]

        refused = client.post("/api/v1/sessions", json={"analysis_id": analysis_id})
        assert refused.status_code == 400

        accepted = client.post(
            "/api/v1/sessions", json={"analysis_id": analysis_id, "deep_review": True}
        )
        assert accepted.status_code == 201

    def test_quick_questions(self) -> None:
        client = _client()
        resp = client.get("/api/v1/sessions/quick-questions/silver")
        assert resp.status_code == 200
        assert "What hallmarks can you identify?" in resp.json()["questions"]

        assert client.get("/api/v1/sessions/quick-questions/spaceships").status_code == 400


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class TestEvaluations:
    def test_single_item(self) -> None:
        client = _client()
        resp = client.post("/api/v1/evaluations/items/silv-003")

        assert resp.status_code == 200
        assert resp.json()["item_id"] == "silv-003"
        assert client.post("/api/v1/evaluations/items/nope").status_code == 404

    def test_smoke_run(self) -> None:
        resp = _client().post("/api/v1/evaluations/smoke")

        assert resp.status_code == 200
        data = resp.json()
        assert data["report"]["mode"] == "smoke"
        assert len(data["report"]["results"]) == 5
        assert "VINTAGEVISION EVALUATION REPORT" in data["text"]
