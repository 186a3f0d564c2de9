"""Span trace aggregation service"""

import os
import logging
from datetime import datetime, UTC
from typing import List, Optional, Dict, Any, Union

from dotenv import load_dotenv, find_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from .layout import canvas_size, NODE_WIDTH, NODE_HEIGHT
from .models import (
    LatencyStats, Node, StatsResponse, TimelineEntry, TraceEvent,
)
from .session import TraceSession
from .sse import EventBroadcaster
from .timeline import max_time, time_step

load_dotenv(find_dotenv(usecwd=True), override=False)

# configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title = "spanscope",
    description = "Live span tree aggregation with latency statistics and tree layout",
    version = "1.0.0",
)


CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:*,http://127.0.0.1:*")  # Dev default

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Orphan adoption is opt-in: by default a span whose parent arrives late stays a root
ADOPT_ORPHANS = os.getenv("SPANSCOPE_ADOPT_ORPHANS", "false").lower() == "true"
SSE_QUEUE_SIZE = int(os.getenv("SSE_QUEUE_SIZE", "1000"))

# single session per process; reset via /api/reset
session = TraceSession(adopt_orphans=ADOPT_ORPHANS)
broadcaster = EventBroadcaster(queue_size=SSE_QUEUE_SIZE)


#=====================
# INGESTION Endpoints
#=====================

@app.post("/api/events", response_model=Dict[str, int])
async def ingest_events(events: Union[TraceEvent, List[TraceEvent]]):
    """Apply one event or a batch, in order, and relay them to SSE subscribers.
    Payloads that fail validation are rejected with 422 before reaching the session.
    """
    try:
        batch = events if isinstance(events, list) else [events]
        accepted = session.apply_all(batch)

        for event in batch:
            broadcaster.publish(event.to_wire())

        logger.debug(f"Accepted {accepted} events")
        return {"accepted": accepted}

    except Exception as e:
        logger.error(f"Error ingesting events: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/events")
async def stream_events(request: Request):
    """Server-Sent Events stream of every accepted event, as `data: <json>` frames."""
    queue = broadcaster.subscribe()

    async def frames():
        async for frame in broadcaster.stream(queue):
            if await request.is_disconnected():
                break
            yield frame

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@app.post("/api/reset", response_model=Dict[str, str])
async def reset_session():
    """Start a fresh session: clears nodes, stats, timeline and the clock origin."""
    session.reset()
    return {"status": "reset"}

#=====================
# TREE Endpoints
#=====================

@app.get("/api/tree", response_model=Dict[str, Any])
async def get_tree():
    """Sorted root ids plus every node, taken from one consistent snapshot."""
    try:
        snapshot = session.snapshot()
        return {
            "roots": [node.id for node in snapshot.roots()],
            "nodes": list(snapshot.nodes.values()),
            "node_count": len(snapshot.nodes),
        }

    except Exception as e:
        logger.error(f"Error getting tree: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/nodes/{node_id}", response_model=Node)
async def get_node(node_id: str):
    node = session.get(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Span {node_id} not found")
    return node


@app.get("/api/nodes/{node_id}/children", response_model=List[Node])
async def get_children(node_id: str):
    """Children of a span, sorted by start offset."""
    snapshot = session.snapshot()
    if snapshot.get(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Span {node_id} not found")
    return sorted(snapshot.children_of(node_id), key=lambda n: n.sort_key())

#=====================
# STATS Endpoints
#=====================

@app.get("/api/stats", response_model=StatsResponse)
async def get_stats(
    operation: Optional[str] = Query(None, description="Restrict latency to one operation"),
):
    """Counters and latency percentiles; latency covers all operations unless filtered."""
    try:
        snapshot = session.snapshot()
        return StatsResponse(
            counts=snapshot.stats.counts(),
            latency=snapshot.stats.latency(operation),
            operation=operation,
            operations=snapshot.stats.operations(),
        )

    except Exception as e:
        logger.error(f"Error getting stats: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/stats/operations", response_model=Dict[str, LatencyStats])
async def get_operation_stats():
    """Per-operation latency for every operation with a completed span."""
    return session.operation_stats()

#=====================
# VIEW Endpoints
#=====================

@app.get("/api/layout", response_model=Dict[str, Any])
async def get_layout():
    """Tree layout coordinates for the current snapshot."""
    try:
        result = session.layout()
        return {
            "positions": [
                {"id": p.node.id, "x": p.x, "y": p.y, "level": p.level}
                for p in result.positions
            ],
            "connections": [
                {**c.model_dump(), "mid_x": c.mid_x} for c in result.connections
            ],
            "node_width": NODE_WIDTH,
            "node_height": NODE_HEIGHT,
            "canvas": canvas_size(result),
        }

    except Exception as e:
        logger.error(f"Error computing layout: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/timeline", response_model=List[TimelineEntry])
async def get_timeline(
    limit: int = Query(500, ge=1, le=10000),
):
    """Most recent accepted events with their session time offsets."""
    return session.timeline()[-limit:]


@app.get("/api/gantt", response_model=Dict[str, Any])
async def get_gantt(
    scale: float = Query(1.0, gt=0, le=100, description="Pixels per millisecond"),
):
    """Gantt bars in depth-first tree order."""
    snapshot = session.snapshot()
    rows = snapshot.gantt_rows(scale)
    return {
        "rows": [
            {
                "id": row.node.id,
                "operation": row.node.operation,
                "status": row.node.status.value,
                "depth": row.depth,
                "left": row.left,
                "width": row.width,
            }
            for row in rows
        ],
        "max_time_ms": max_time(snapshot.nodes),
        "time_step_ms": time_step(scale),
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "spanscope",
        "version": "1.0.0",
        "spans": len(session),
        "subscribers": broadcaster.subscriber_count,
        "timestamp": datetime.now(UTC).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("SPANSCOPE_PORT", "8080"))
    logger.info(f"Starting spanscope on port {port} (adopt_orphans={ADOPT_ORPHANS})")
    uvicorn.run(app, host="0.0.0.0", port=port)
