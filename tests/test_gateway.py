"""
Tests for the HTTP gateway.
"""

import json
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient

from adapters.prompts import PLANNING_PROMPT
from common.config import Config
from gateway.http_gateway import PREVIEW_CSP, create_gateway_app
from persistence.project_store import InMemoryProjectStore

PROJECT = {
    "overview": "Florist",
    "files": {
        "index.html": '<html><script src="app.js"></script></html>',
        "app.js": "alert(1)",
    },
}


def _upstream_sse(text: str) -> bytes:
    return (
        f"data: {json.dumps({'choices': [{'delta': {'content': text}}]})}\n\n" "data: [DONE]\n\n"
    ).encode("utf-8")


def _frames(body: str) -> List[str]:
    return [line[len("data: "):] for line in body.split("\n") if line.startswith("data: ")]


class Upstream:
    """Mock provider endpoint with a configurable response."""

    def __init__(self) -> None:
        self.status = 200
        self.body = _upstream_sse(json.dumps(PROJECT))
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, content=self.body)


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def test_config() -> Config:
    """Create a test configuration."""
    return Config()


@pytest.fixture
def client(test_config: Config, upstream: Upstream, monkeypatch) -> TestClient:
    """Create a test client whose provider traffic goes to the mock upstream."""
    monkeypatch.setenv("GROQ_API_KEY", "test-key")
    app = create_gateway_app(
        test_config, store=InMemoryProjectStore(), transport=httpx.MockTransport(upstream)
    )
    return TestClient(app)


def _build(client: TestClient, account: str = "acct-1", prompt: str = "a florist site"):
    response = client.post("/api/builds", json={"prompt": prompt}, headers={"X-Account-Id": account})
    assert response.status_code == 200
    frames = _frames(response.text)
    assert frames[-1] == "[DONE]"
    return [json.loads(f) for f in frames[:-1]]


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "gemini" in data["providers"]
    assert data["active_builds"] == 0


def test_models_endpoint_lists_catalog(client: TestClient) -> None:
    models = client.get("/api/models").json()
    by_id = {m["id"]: m for m in models}

    assert by_id["gemini"]["premium"] is True
    assert by_id["groq"]["premium"] is False


def test_generate_relays_normalized_stream(client: TestClient, upstream: Upstream) -> None:
    upstream.body = (
        b'data: {"choices":[{"delta":{"content":"<html>"}}]}\n\n'
        b": keep-alive\n\n"
        b'data: {"choices":[{"delta":{"content":"</html>"}}]}\n\n'
        b"data: [DONE]\n\n"
    )

    response = client.post("/api/generate", json={"prompt": "bakery", "mode": "planning"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert _frames(response.text) == ['{"content": "<html>"}', '{"content": "</html>"}', "[DONE]"]
    sent = json.loads(upstream.requests[0].content)
    assert sent["stream"] is True
    assert sent["messages"][0]["content"] == PLANNING_PROMPT


def test_generate_mirrors_upstream_status(client: TestClient, upstream: Upstream) -> None:
    upstream.status = 429
    upstream.body = b'{"error": {"message": "Rate limit reached"}}'

    response = client.post("/api/generate", json={"prompt": "bakery"})

    assert response.status_code == 429
    assert response.json() == {"error": "Groq API error", "details": "Rate limit reached"}


def test_generate_missing_key(client: TestClient, monkeypatch) -> None:
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)

    response = client.post("/api/generate", json={"prompt": "x", "model": "deepseek"})

    assert response.status_code == 500
    assert response.json()["error"] == "DeepSeek API key is not configured"


def test_generate_rejects_blank_prompt_and_unknown_model(client: TestClient) -> None:
    response = client.post("/api/generate", json={"prompt": "   "})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"

    response = client.post("/api/generate", json={"prompt": "x", "model": "nope"})
    assert response.status_code == 400
    assert "nope" in response.json()["error"]


def test_builds_require_account_header(client: TestClient) -> None:
    response = client.post("/api/builds", json={"prompt": "x"})

    assert response.status_code == 401
    assert response.json() == {"error": "Missing X-Account-Id header"}


def test_build_then_list_get_and_preview(client: TestClient) -> None:
    events = _build(client)

    result = events[-1]
    assert result["type"] == "result"
    assert result["state"] == "ready"
    assert '<script type="module">alert(1)</script>' in result["document"]
    assert any(e["type"] == "snapshot" for e in events)

    listed = client.get("/api/projects", headers={"X-Account-Id": "acct-1"}).json()
    assert [p["id"] for p in listed] == [result["record_id"]]
    assert listed[0]["title"] == "Florist"

    record = client.get(
        f"/api/projects/{result['record_id']}", headers={"X-Account-Id": "acct-1"}
    ).json()
    assert record["files"] == PROJECT["files"]
    assert record["prompt"] == "a florist site"

    preview = client.get(
        f"/api/projects/{result['record_id']}/preview", headers={"X-Account-Id": "acct-1"}
    )
    assert preview.status_code == 200
    assert preview.headers["content-security-policy"] == PREVIEW_CSP
    assert "<script type=\"module\">alert(1)</script>" in preview.text


def test_projects_are_scoped_to_account(client: TestClient) -> None:
    record_id = _build(client, account="acct-1")[-1]["record_id"]

    assert client.get("/api/projects", headers={"X-Account-Id": "acct-2"}).json() == []
    response = client.get(f"/api/projects/{record_id}", headers={"X-Account-Id": "acct-2"})
    assert response.status_code == 404
    assert response.json() == {"error": "Project not found"}


def test_unparseable_build_reports_failure(client: TestClient, upstream: Upstream) -> None:
    upstream.body = _upstream_sse("I can't build that.")

    result = _build(client)[-1]

    assert result["state"] == "failed"
    assert result["text"] == "Could not fully parse the result"
    assert result["result"]["files"] == {"raw-response.txt": "I can't build that."}
    assert "record_id" not in result
    assert client.get("/api/projects", headers={"X-Account-Id": "acct-1"}).json() == []


def test_build_upstream_error_before_stream(client: TestClient, upstream: Upstream) -> None:
    upstream.status = 502
    upstream.body = b"bad gateway"

    response = client.post("/api/builds", json={"prompt": "x"}, headers={"X-Account-Id": "a"})

    assert response.status_code == 502
    assert response.json()["details"] == "bad gateway"
    # the account's session accepts a new request afterwards
    upstream.status = 200
    upstream.body = _upstream_sse(json.dumps(PROJECT))
    assert _build(client, account="a")[-1]["state"] == "ready"
