"""
Lightweight span event client for the spanscope service

Design Principles:
- Non-Intrusive: Never block the instrumented application
- Graceful degradation: Failures are logged as warning, not raised
- Easy to use: Context managers emit the started and terminal events of a span
- Transport-agnostic consumer: the SSE reader hands decoded events to any callback
"""

import os
import time
import uuid
import asyncio
import logging
from typing import Optional, Callable, Any, Dict
from contextlib import asynccontextmanager
import httpx
from dotenv import load_dotenv, find_dotenv
from pydantic import ValidationError

from service.src.models import TraceEvent
from service.src.sse import SSEDecoder

load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)


class SpanContext:
    """Context object for one span's lifecycle.

    Attributes
    ----------
        span_id: str
            Unique identifier for the span
        operation: str
            Operation name the span reports
        parent_id: Optional[str]
            Identifier of the enclosing span (for nested spans)
    """

    def __init__(
        self,
        client: "SpanscopeClient",
        span_id: str,
        operation: str,
        parent_id: Optional[str] = None,
        dispatcher: str = "",
    ):
        self._client = client
        self.span_id = span_id
        self.operation = operation
        self.parent_id = parent_id
        self.dispatcher = dispatcher
        self._failed = False

    def set_failed(self) -> None:
        """Report this span as failed even if no exception escapes it."""
        self._failed = True

    def span(self, operation: str, **kwargs):
        """Create a nested child span under this span.

        Examples
        --------
            ```python
            async with client.span("handle-request") as parent:
                async with parent.span("load-user") as child:
                    user = await load_user()
            ```
        """
        return self._client.span(operation, parent_id=self.span_id, **kwargs)


class SpanscopeClient:
    """Async client that emits span lifecycle events to the service.

    All failures are logged as warnings and do not raise exceptions, ensuring
    that tracing issues never break the instrumented application.

    Configuration
    -------------
    (via environment variables or constructor)
    - SPANSCOPE_URL: Base URL of the service (default: http://localhost:8080).
    - SPANSCOPE_ENABLED: Set to "false" to disable event emission (default: True).

    Examples
    --------
    ```python
    async with SpanscopeClient() as client:
        async with client.span("fetch-data", dispatcher="io") as span:
            await fetch()
    ```
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: float = 2.0,
    ):
        """Initialize the client.

        Parameters
        ----------
        base_url: Optional[str]
            Base URL of the service. (default: from SPANSCOPE_URL env var)
        enabled: Optional[bool]
            Force emission on or off. (default: from SPANSCOPE_ENABLED env var)
        timeout: float
            Timeout in seconds for each request (default: 2.0).
        """
        self.base_url = (
            base_url or os.getenv("SPANSCOPE_URL", "http://localhost:8080")
        ).rstrip("/")

        if enabled is None:
            enabled = os.getenv("SPANSCOPE_ENABLED", "true").lower() == "true"
        self.enabled = enabled

        self._client = httpx.AsyncClient(timeout=timeout)

        if self.enabled:
            logger.info(f"SpanscopeClient initialized: {self.base_url}")
        else:
            logger.info("SpanscopeClient initialized but event emission is disabled.")

    async def send_event(self, event: TraceEvent) -> bool:
        """Post one event to the service.

        Returns
        -------
        bool
            True if the service accepted the event, False otherwise.
        """
        if not self.enabled:
            return False

        try:
            response = await self._client.post(
                f"{self.base_url}/api/events",
                content=event.to_wire(),
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            logger.debug(f"Sent {event.type} event for span {event.id}")
            return True

        except Exception as e:
            logger.warning(f"Failed to send {event.type} event for span {event.id}: {e}")
            return False

    @asynccontextmanager
    async def span(
        self,
        operation: str,
        parent_id: Optional[str] = None,
        dispatcher: str = "",
        span_id: Optional[str] = None,
        source_file: str = "",
        line_number: int = 0,
        is_unstructured: bool = False,
    ):
        """Context manager tracing one unit of work.

        Emits a ``started`` event on entry and, on exit, ``completed``,
        ``failed`` (an exception escaped or ``set_failed`` was called) or
        ``cancelled`` (the task was cancelled), with the measured duration.

        Yields
        ------
        SpanContext
            Handle used to open nested spans or mark the span failed.
        """
        span_id = span_id or uuid.uuid4().hex
        common: Dict[str, Any] = {
            "id": span_id,
            "parent_id": parent_id,
            "operation": operation,
            "dispatcher": dispatcher,
            "source_file": source_file,
            "line_number": line_number,
            "is_unstructured": is_unstructured,
        }

        started_ns = time.monotonic_ns()
        await self.send_event(TraceEvent(
            type="started", status="running", timestamp=started_ns, **common,
        ))

        context = SpanContext(self, span_id, operation, parent_id, dispatcher)
        outcome = "completed"

        try:
            yield context  # the step where the actual operation is executed

        except asyncio.CancelledError:
            outcome = "cancelled"
            raise

        except Exception:
            outcome = "failed"
            raise

        finally:
            if outcome == "completed" and context._failed:
                outcome = "failed"
            ended_ns = time.monotonic_ns()
            await self.send_event(TraceEvent(
                type=outcome,
                status=outcome,
                duration_ms=(ended_ns - started_ns) / 1_000_000.0,
                timestamp=ended_ns,
                **common,
            ))

    async def close(self) -> None:
        """Close the HTTP client; call it when done with the client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class EventStreamConsumer:
    """Reads the service's ``/events`` SSE stream and forwards decoded events.

    Undecodable frames are logged and skipped; they never reach ``on_event``.

    Examples
    --------
    ```python
    session = TraceSession()
    consumer = EventStreamConsumer("http://localhost:8080/events", session.on_event)
    await consumer.run()
    ```
    """

    def __init__(
        self,
        url: str,
        on_event: Callable[[TraceEvent], None],
        on_error: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = None,
    ):
        self.url = url
        self.on_event = on_event
        self.on_error = on_error
        # SSE streams stay open indefinitely; no read timeout by default
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))

    def handle_payload(self, payload: str) -> bool:
        """Decode one frame payload and forward it; returns False if rejected."""
        try:
            event = TraceEvent.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Skipping undecodable event frame: {e.error_count()} errors")
            return False

        self.on_event(event)
        return True

    async def run(self, max_events: Optional[int] = None) -> int:
        """Consume the stream until it ends, or until ``max_events`` are forwarded.

        Returns
        -------
        int
            Number of events forwarded to ``on_event``.
        """
        forwarded = 0
        decoder = SSEDecoder()
        try:
            async with self._client.stream("GET", self.url) as response:
                response.raise_for_status()
                logger.info(f"Connected to event stream: {self.url}")

                async for line in response.aiter_lines():
                    payload = decoder.feed(line)
                    if payload is None or not self.handle_payload(payload):
                        continue
                    forwarded += 1
                    if max_events is not None and forwarded >= max_events:
                        return forwarded

            # stream closed mid-frame
            payload = decoder.flush()
            if payload is not None and self.handle_payload(payload):
                forwarded += 1

        except (httpx.RequestError, httpx.HTTPStatusError) as e:
            logger.warning(f"Event stream error: {e}")
            if self.on_error:
                self.on_error(str(e))

        return forwarded

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
