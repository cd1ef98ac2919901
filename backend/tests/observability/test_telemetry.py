import asyncio
import json
import pytest

import httpx

from tailor_service.observability.telemetry import TelemetryClient, TelemetryEventType


def _production_client(handler, api_key=None):
    return TelemetryClient(
        url="https://analytics.example.com/",
        website_id="site-123",
        api_key=api_key,
        environment="production",
        transport=httpx.MockTransport(handler),
    )


def test_disabled_in_development():
    client = TelemetryClient(url="https://analytics.example.com", website_id="site", environment="development")
    assert client.enabled is False


def test_disabled_without_url():
    assert TelemetryClient(website_id="site", environment="production").enabled is False


def test_disabled_client_still_mirrors_events():
    client = TelemetryClient()

    sent = asyncio.run(client.send(TelemetryEventType.MODEL_RATE_LIMIT_HIT, {"limit": 5}, "/api/tailor-stream"))

    assert sent is False
    recent = client.recent.snapshot()
    assert recent[0]["name"] == "MODEL_RATE_LIMIT_HIT"
    assert recent[0]["data"] == {"limit": 5}


def test_send_posts_umami_event():
    captured = []

    def handler(request):
        captured.append(request)
        return httpx.Response(200, json={"ok": True})

    client = _production_client(handler, api_key="secret")
    sent = asyncio.run(client.send(TelemetryEventType.RESUME_TAILOR_ERROR, {"error": "boom"}, "/api/tailor-stream"))

    assert sent is True
    request = captured[0]
    assert str(request.url) == "https://analytics.example.com/api/send"
    assert request.headers["x-umami-api-key"] == "secret"
    body = json.loads(request.content)
    assert body["type"] == "event"
    assert body["payload"]["name"] == "resume_tailor_error"
    assert body["payload"]["website"] == "site-123"
    assert json.loads(body["payload"]["data"]) == {"error": "boom"}


def test_send_never_raises():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    client = _production_client(handler)
    assert asyncio.run(client.send(TelemetryEventType.UPSTREAM_GLOBAL_LIMIT_HIT, {})) is False


def test_rejected_event_returns_false():
    client = _production_client(lambda request: httpx.Response(400))
    assert asyncio.run(client.send(TelemetryEventType.UPSTREAM_GLOBAL_LIMIT_HIT, {})) is False


def test_emit_without_running_loop_returns_none():
    assert TelemetryClient().emit(TelemetryEventType.MODEL_RATE_LIMIT_HIT, {}) is None


def test_emit_schedules_background_task():
    client = TelemetryClient()

    async def _go():
        task = client.emit(TelemetryEventType.MODEL_RATE_LIMIT_HIT, {"n": 1})
        assert task is not None
        return await task

    assert asyncio.run(_go()) is False
    assert len(client.recent.snapshot()) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
