"""spanscope client - emit span lifecycle events and consume the event stream"""

from .client import (
    SpanscopeClient,
    SpanContext,
    EventStreamConsumer,
)

__all__ = [
    "SpanscopeClient",
    "SpanContext",
    "EventStreamConsumer",
]

__version__ = "0.1.0"
