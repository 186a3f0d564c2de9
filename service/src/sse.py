"""Server-Sent Events framing and subscriber fan-out"""

import asyncio
import logging
from typing import AsyncIterator, Iterable, Iterator, List, Optional, Set

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"


def format_sse(payload: str) -> str:
    """Wrap one JSON payload as an SSE frame: ``data: <json>\\n\\n``."""
    return f"data: {payload}\n\n"


class SSEDecoder:
    """Incremental line-by-line decoder for SSE ``data`` payloads.

    Multi-line ``data:`` fields are joined with newlines, per the SSE format.
    Comment lines (``:``) and other fields (``event:``, ``id:``) are ignored.
    """

    def __init__(self):
        self._buffer: List[str] = []

    def feed(self, raw: str) -> Optional[str]:
        """Consume one line; returns a payload when it completes a frame."""
        line = raw.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(DATA_PREFIX):
            value = line[len(DATA_PREFIX):]
            self._buffer.append(value[1:] if value.startswith(" ") else value)
        return None

    def flush(self) -> Optional[str]:
        if not self._buffer:
            return None
        payload = "\n".join(self._buffer)
        self._buffer = []
        return payload


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """Yield the data payload of each frame from a stream of text lines."""
    decoder = SSEDecoder()
    for line in lines:
        payload = decoder.feed(line)
        if payload is not None:
            yield payload
    payload = decoder.flush()
    if payload is not None:
        yield payload


class EventBroadcaster:
    """Relays serialized events to every connected SSE subscriber.

    Each subscriber owns a bounded queue. A subscriber that falls behind far
    enough to fill its queue is disconnected rather than slowing everyone else.
    """

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        logger.info(f"SSE subscriber connected ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.discard(queue)
            logger.info(f"SSE subscriber disconnected ({len(self._subscribers)} total)")

    def publish(self, payload: str) -> int:
        """Queue ``payload`` for all subscribers; returns how many received it."""
        frame = format_sse(payload)
        delivered = 0
        dead: List[asyncio.Queue] = []

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(frame)
                delivered += 1
            except asyncio.QueueFull:
                dead.append(queue)

        for queue in dead:
            logger.warning("Dropping SSE subscriber whose queue is full")
            self.unsubscribe(queue)

        return delivered

    def close(self) -> None:
        """Signal every open stream to finish."""
        for queue in list(self._subscribers):
            self.unsubscribe(queue)
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass  # stream ends on its next read, it is no longer subscribed

    async def stream(
        self,
        queue: Optional[asyncio.Queue] = None,
        max_frames: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Yield frames for one subscriber until it is dropped or cancelled."""
        if queue is None:
            queue = self.subscribe()
        sent = 0
        try:
            while max_frames is None or sent < max_frames:
                frame = await queue.get()
                if frame is None or queue not in self._subscribers:
                    break
                yield frame
                sent += 1
        finally:
            self.unsubscribe(queue)
