from fastapi.testclient import TestClient

from chat_orchestrator.stream.transport import content_of, decode_sse


def test_api_chat_trace_metrics(monkeypatch, scripted_model) -> None:
    from chat_orchestrator.api import main

    monkeypatch.setattr(main._pipeline, "llm_factory", lambda provider: scripted_model(["Hello from the orchestrator."]))
    client = TestClient(main.app)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    chat_resp = client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "Tell me a joke"}]},
        headers={"Authorization": "Bearer tok-1"},
    )
    assert chat_resp.status_code == 200
    assert chat_resp.headers["content-type"].startswith("text/event-stream")
    decoded = decode_sse(chat_resp.text)
    assert decoded[-1] == "[DONE]"
    assert decoded.count("[DONE]") == 1
    assert content_of(decoded) == "Hello from the orchestrator."

    trace_id = next(
        item["mcpEvent"]["metadata"]["traceId"]
        for item in decoded
        if isinstance(item, dict) and "traceId" in item.get("mcpEvent", {}).get("metadata", {})
    )
    trace_resp = client.get(f"/traces/{trace_id}")
    assert trace_resp.status_code == 200
    assert trace_resp.json()["strategy"] == "agent_runner"

    assert client.get("/traces/does-not-exist").status_code == 404
    assert client.get("/traces").json()["items"]

    metrics_resp = client.get("/metrics")
    assert metrics_resp.status_code == 200
    assert metrics_resp.json()["total_requests"] >= 1


def test_api_reports_malformed_body_inline() -> None:
    from chat_orchestrator.api.main import app

    client = TestClient(app)

    resp = client.post("/chat", content="not json", headers={"Content-Type": "application/json"})

    assert resp.status_code == 200
    decoded = decode_sse(resp.text)
    assert decoded[-1] == "[DONE]"
    assert "I couldn't read that request" in content_of(decoded)
    errors = [item["mcpEvent"] for item in decoded if isinstance(item, dict) and "mcpEvent" in item]
    assert any(event["type"] == "error" for event in errors)


def test_api_lists_commands() -> None:
    from chat_orchestrator.api.main import app

    client = TestClient(app)

    resp = client.get("/commands", params={"category": "financial"})

    assert resp.status_code == 200
    assert "alphavantage-mcp" in [server["id"] for server in resp.json()["servers"]]
    assert resp.json()["text"].startswith("AVAILABLE COMMANDS:")
