"""Unit tests for the spanscope client library.

These tests verify client behavior without requiring a running server.
HTTP is mocked with respx since the client uses httpx.AsyncClient.

End-to-end ingestion is already covered by:
 - service/tests/integration/test_api_endpoints.py
 - service/tests/integration/test_complete_workflow.py
"""

import asyncio
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from client.spanscope import EventStreamConsumer, SpanContext, SpanscopeClient
from service.src.models import TraceEvent

BASE_URL = "http://spanscope.test"


def posted_events(route):
    """Decode every JSON body sent through a respx route."""
    return [json.loads(call.request.content) for call in route.calls]


def make_event(type="started", id="a", **extra):
    fields = {
        "type": type,
        "id": id,
        "operation": "op",
        "status": "running" if type == "started" else type,
        "timestamp": 1,
    }
    fields.update(extra)
    return TraceEvent(**fields)


class TestSpanscopeClientInit:
    """Test client initialization with various configurations"""

    def test_init_w_explicit_config(self):
        client = SpanscopeClient(base_url="http://custom:9000/", enabled=True)

        assert client.base_url == "http://custom:9000"
        assert client.enabled is True

    def test_init_from_env(self):
        with patch.dict("os.environ", {"SPANSCOPE_URL": "http://env:1234"}):
            client = SpanscopeClient()

        assert client.base_url == "http://env:1234"

    def test_emission_disabled_via_env(self):
        with patch.dict("os.environ", {"SPANSCOPE_ENABLED": "false"}):
            client = SpanscopeClient()

        assert client.enabled is False


class TestSendEvent:
    """Posting single events, and never raising on failure"""

    @pytest.mark.asyncio
    async def test_send_event_posts_camel_case(self, respx_mock):
        route = respx_mock.post(f"{BASE_URL}/api/events").mock(
            return_value=httpx.Response(200, json={"accepted": 1})
        )
        client = SpanscopeClient(base_url=BASE_URL, enabled=True)

        ok = await client.send_event(make_event(parent_id="root", duration_ms=1.5))

        assert ok is True
        body = posted_events(route)[0]
        assert body["parentId"] == "root"
        assert body["durationMs"] == 1.5
        assert route.calls[0].request.headers["Content-Type"] == "application/json"
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_fails_gracefully(self, respx_mock):
        respx_mock.post(f"{BASE_URL}/api/events").mock(return_value=httpx.Response(500))
        client = SpanscopeClient(base_url=BASE_URL, enabled=True)

        assert await client.send_event(make_event()) is False
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_error_fails_gracefully(self, respx_mock):
        respx_mock.post(f"{BASE_URL}/api/events").mock(side_effect=httpx.ConnectError("refused"))
        client = SpanscopeClient(base_url=BASE_URL, enabled=True)

        # Should not raise, rather just return False
        assert await client.send_event(make_event()) is False
        await client.close()

    @pytest.mark.asyncio
    async def test_disabled_client_makes_no_requests(self):
        client = SpanscopeClient(base_url=BASE_URL, enabled=False)
        client._client = MagicMock()

        assert await client.send_event(make_event()) is False
        assert not client._client.post.called


class TestSpanContextManager:
    """span() emits a started event and exactly one terminal event"""

    @pytest.fixture
    def events_route(self, respx_mock):
        return respx_mock.post(f"{BASE_URL}/api/events").mock(
            return_value=httpx.Response(200, json={"accepted": 1})
        )

    @pytest.mark.asyncio
    async def test_completed_span(self, events_route):
        async with SpanscopeClient(base_url=BASE_URL, enabled=True) as client:
            async with client.span("fetch", dispatcher="io", span_id="s1") as span:
                assert span.span_id == "s1"

        started, finished = posted_events(events_route)
        assert (started["type"], started["status"], started["id"]) == ("started", "running", "s1")
        assert started["dispatcher"] == "io"
        assert (finished["type"], finished["status"]) == ("completed", "completed")
        assert finished["durationMs"] >= 0
        assert finished["timestamp"] >= started["timestamp"]

    @pytest.mark.asyncio
    async def test_nested_span_carries_parent(self, events_route):
        async with SpanscopeClient(base_url=BASE_URL, enabled=True) as client:
            async with client.span("request", span_id="parent") as parent:
                async with parent.span("query", span_id="child"):
                    pass

        types_and_ids = [(e["type"], e["id"], e["parentId"]) for e in posted_events(events_route)]
        assert types_and_ids == [
            ("started", "parent", None),
            ("started", "child", "parent"),
            ("completed", "child", "parent"),
            ("completed", "parent", None),
        ]

    @pytest.mark.asyncio
    async def test_exception_reports_failed(self, events_route):
        async with SpanscopeClient(base_url=BASE_URL, enabled=True) as client:
            with pytest.raises(ValueError):
                async with client.span("boom"):
                    raise ValueError("Purposefully meant to fail here.")

        assert posted_events(events_route)[-1]["type"] == "failed"

    @pytest.mark.asyncio
    async def test_set_failed_without_exception(self, events_route):
        async with SpanscopeClient(base_url=BASE_URL, enabled=True) as client:
            async with client.span("soft-fail") as span:
                span.set_failed()

        assert posted_events(events_route)[-1]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_cancellation_reports_cancelled(self, events_route):
        entered = asyncio.Event()

        async with SpanscopeClient(base_url=BASE_URL, enabled=True) as client:
            async def work():
                async with client.span("slow"):
                    entered.set()
                    await asyncio.sleep(10)

            task = asyncio.create_task(work())
            await entered.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert [e["type"] for e in posted_events(events_route)] == ["started", "cancelled"]

    def test_span_context_delegates_to_client(self):
        mock_client = MagicMock()
        span = SpanContext(mock_client, "s1", "op", parent_id="p")

        span.span("child", dispatcher="io")

        mock_client.span.assert_called_once_with("child", parent_id="s1", dispatcher="io")


class TestEventStreamConsumer:
    """SSE consumption with mocked stream bodies"""

    def sse_body(self, *payloads):
        return "".join(f"data: {p}\n\n" for p in payloads).encode()

    @pytest.mark.asyncio
    async def test_forwards_decoded_events(self, respx_mock):
        frames = [make_event("started", "a").to_wire(), make_event("completed", "a").to_wire()]
        respx_mock.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(200, content=self.sse_body(*frames)))
        received = []

        async with EventStreamConsumer(f"{BASE_URL}/events", received.append) as consumer:
            forwarded = await consumer.run()

        assert forwarded == 2
        assert [(e.type, e.id) for e in received] == [("started", "a"), ("completed", "a")]

    @pytest.mark.asyncio
    async def test_skips_undecodable_frames(self, respx_mock):
        body = self.sse_body("not json", '{"type": "started"}', make_event(id="ok").to_wire())
        respx_mock.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(200, content=body))
        received = []

        async with EventStreamConsumer(f"{BASE_URL}/events", received.append) as consumer:
            forwarded = await consumer.run()

        assert forwarded == 1
        assert received[0].id == "ok"

    @pytest.mark.asyncio
    async def test_max_events_stops_early(self, respx_mock):
        body = self.sse_body(*(make_event(id=f"s{i}").to_wire() for i in range(5)))
        respx_mock.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(200, content=body))
        received = []

        async with EventStreamConsumer(f"{BASE_URL}/events", received.append) as consumer:
            forwarded = await consumer.run(max_events=2)

        assert forwarded == 2
        assert [e.id for e in received] == ["s0", "s1"]

    @pytest.mark.asyncio
    async def test_http_error_reported(self, respx_mock):
        respx_mock.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(503))
        errors = []

        async with EventStreamConsumer(f"{BASE_URL}/events", lambda e: None, on_error=errors.append) as consumer:
            forwarded = await consumer.run()

        assert forwarded == 0
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_feeds_a_session(self, respx_mock):
        """Consumer callback plugs straight into a TraceSession."""
        from service.src.session import TraceSession

        frames = [
            make_event("started", "root", timestamp=1000).to_wire(),
            make_event("started", "leaf", parent_id="root", timestamp=2000).to_wire(),
            make_event("completed", "leaf", duration_ms=4.0, timestamp=3000).to_wire(),
        ]
        respx_mock.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(200, content=self.sse_body(*frames)))
        session = TraceSession()

        async with EventStreamConsumer(f"{BASE_URL}/events", session.on_event) as consumer:
            await consumer.run()

        assert [n.id for n in session.children_of("root")] == ["leaf"]
        assert session.counts().completed == 1
