"""
Metrics API endpoint for ingest observability.

Provides:
- Summary of ingest counters (malformed, failed, skipped, applied)
- Recent metric events with optional filtering
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from stockservice.core.metrics import metrics

router = APIRouter()


class IngestSummary(BaseModel):
    """Summary of ingest metrics over a time period."""
    period_hours: int
    total_events: int
    by_event: dict
    counters: dict
    malformed_messages: int
    failed_messages: int
    snapshots_applied: int
    positions_skipped: int


class MetricEventResponse(BaseModel):
    timestamp: str
    category: str
    event_type: str
    symbol: Optional[str]
    stream: Optional[str]
    value: float
    metadata: dict


@router.get("/ingest", response_model=IngestSummary)
async def get_ingest_summary(
    hours: int = Query(default=24, ge=1, le=168, description="Hours of history to include")
) -> IngestSummary:
    """
    Aggregated ingest metrics.

    `counters` are lifetime totals for this process; `by_event` only covers
    the requested window of buffered events.
    """
    return IngestSummary(**metrics.get_summary(hours=hours))


@router.get("/events", response_model=List[MetricEventResponse])
async def get_recent_events(
    event_type: Optional[str] = Query(default=None, description="Filter by event type"),
    symbol: Optional[str] = Query(default=None, description="Filter by symbol"),
    limit: int = Query(default=100, ge=1, le=1000, description="Max events to return"),
    hours: int = Query(default=24, ge=1, le=168, description="Hours of history"),
) -> List[MetricEventResponse]:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)

    events = []
    for event in reversed(metrics.get_buffer()):  # Most recent first
        if event.timestamp < cutoff:
            continue
        if event_type and event.event_type != event_type:
            continue
        if symbol and event.symbol != symbol.upper():
            continue
        events.append(MetricEventResponse(**event.to_dict()))
        if len(events) >= limit:
            break

    return events
