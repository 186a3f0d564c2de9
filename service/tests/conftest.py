"""Shared pytest fixtures for service tests."""

import pytest

from service.src.models import TraceEvent
from service.src.session import TraceSession


def make_event(
    type: str,
    id: str,
    parent_id=None,
    operation: str = "op",
    status=None,
    duration_ms: float = 0.0,
    timestamp: int = 0,
    **extra,
) -> TraceEvent:
    """Build a TraceEvent; status defaults to 'running' for starts, else the type."""
    if status is None:
        status = "running" if type == "started" else type
    return TraceEvent(
        type=type,
        id=id,
        parent_id=parent_id,
        operation=operation,
        status=status,
        duration_ms=duration_ms,
        timestamp=timestamp,
        **extra,
    )


@pytest.fixture
def event_factory():
    """Factory fixture for TraceEvent objects"""
    return make_event


@pytest.fixture
def session():
    """Fresh session per test, no orphan adoption"""
    return TraceSession()


@pytest.fixture
def parent_child_events():
    """Root with one child, both completed."""
    return [
        make_event("started", "a", None, "root", timestamp=1000),
        make_event("started", "b", "a", "child", timestamp=1500),
        make_event("completed", "b", "a", "child", duration_ms=50, timestamp=2000),
        make_event("completed", "a", None, "root", duration_ms=1000, timestamp=3000),
    ]


@pytest.fixture
def sample_wire_event():
    """Sample wire payload (camelCase keys) for testing"""
    return {
        "type": "started",
        "id": "span-1",
        "parentId": None,
        "operation": "api-gateway",
        "status": "running",
        "dispatcher": "Dispatchers.Default",
        "timestamp": 1_000_000_000,
        "sourceFile": "Gateway.kt",
        "lineNumber": 42,
        "isUnstructured": False,
    }
