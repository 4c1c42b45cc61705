"""Tests for the HTTP telemetry sink."""

import json

import httpx
import pytest

from pagelab.telemetry.events import TelemetryEvent
from pagelab.telemetry.sink import HttpEventSink


def _event(event_type="page_view"):
    return TelemetryEvent(
        event_type=event_type,
        event_data={"path": "/"},
        session_id="s1",
        visitor_id="v1",
        page_url="https://example.com/",
        timestamp=1700000000000,
    )


class TestHttpEventSink:
    async def test_posts_events_envelope(self):
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"success": True, "tracked": 1, "total": 1})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://ingest")
        sink = HttpEventSink(http_client=client)
        await sink.send_batch([_event()])
        await client.aclose()

        assert captured["path"] == "/api/analytics/batch"
        assert captured["body"] == {
            "events": [
                {
                    "eventType": "page_view",
                    "eventData": {"path": "/"},
                    "sessionId": "s1",
                    "visitorId": "v1",
                    "pageUrl": "https://example.com/",
                    "timestamp": 1700000000000,
                }
            ]
        }

    async def test_non_2xx_raises(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(429)), base_url="http://ingest",
        )
        sink = HttpEventSink(http_client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await sink.send_batch([_event()])
        await client.aclose()

    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(201)), base_url="http://ingest",
        )
        sink = HttpEventSink(http_client=client)
        await sink.close()
        assert not client.is_closed
        await client.aclose()

    async def test_owned_client_is_closed(self):
        sink = HttpEventSink("http://ingest/")
        await sink.close()
        assert sink._client.is_closed
