"""
Metrics emission system for observability.

Provides structured metrics for the ingest pipeline:
- Malformed or oversized bus messages (poison messages)
- Ignored event types
- Skipped snapshot rows and failed stock upserts
- Applied snapshots and failed message deliveries

Metrics are emitted to:
1. Python logging (immediate visibility)
2. Redis stream (real-time consumers, dashboard)
3. In-memory buffer and counters (API aggregation)
"""
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """Structured metric event."""
    timestamp: datetime
    category: str          # "ingest"
    event_type: str        # "malformed_message", "snapshot_applied", etc.
    symbol: Optional[str]
    stream: Optional[str]
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "symbol": self.symbol,
            "stream": self.stream,
            "value": self.value,
            "metadata": self.metadata
        }


class MetricsEmitter:
    """
    Emit structured metrics to multiple destinations.

    Counters are never reset by the buffer trimming; they only grow for
    the lifetime of the process.
    """

    CATEGORY_INGEST = "ingest"

    def __init__(self, redis_client=None, buffer_size: int = 1000):
        """
        Initialize metrics emitter.

        Args:
            redis_client: Optional async Redis client for stream publishing
            buffer_size: Max events to keep in memory buffer
        """
        self.redis = redis_client
        self.buffer_size = buffer_size
        self._buffer: List[MetricEvent] = []
        self._counters: Counter = Counter()

    def set_redis(self, redis_client) -> None:
        """Set Redis client (for lazy initialization)."""
        self.redis = redis_client

    def _record(
        self,
        category: str,
        event_type: str,
        value: float,
        symbol: Optional[str],
        stream: Optional[str],
        metadata: Optional[dict],
    ) -> MetricEvent:
        event = MetricEvent(
            timestamp=datetime.now(timezone.utc),
            category=category,
            event_type=event_type,
            symbol=symbol,
            stream=stream,
            value=value,
            metadata=metadata or {}
        )

        meta_str = f" {metadata}" if metadata else ""
        logger.info(
            f"METRIC [{category}/{event_type}] "
            f"stream={stream} symbol={symbol} value={value}{meta_str}"
        )

        self._counters[f"{category}/{event_type}"] += 1
        self._buffer.append(event)
        if len(self._buffer) > self.buffer_size:
            self._buffer = self._buffer[-self.buffer_size:]
        return event

    async def emit_async(
        self,
        category: str,
        event_type: str,
        value: float = 1.0,
        symbol: str = None,
        stream: str = None,
        metadata: dict = None
    ) -> MetricEvent:
        """
        Emit a metric event.

        Args:
            category: Event category
            event_type: Specific event type within category
            value: Numeric value (1.0 for occurrences, actual value for numeric)
            symbol: Optional instrument symbol
            stream: Stream the triggering message came from
            metadata: Additional context as key-value pairs

        Returns:
            The emitted MetricEvent
        """
        event = self._record(category, event_type, value, symbol, stream, metadata)

        if self.redis:
            try:
                await self.redis.xadd("metrics", {
                    "data": json.dumps(event.to_dict(), default=str)
                })
            except Exception as e:
                logger.warning(f"Failed to publish metric to Redis: {e}")

        return event

    # =========================================================================
    # Convenience methods for ingest metrics
    # =========================================================================

    async def malformed_message(self, stream: str, message_id: str, error: str) -> MetricEvent:
        """Record a message that could not be decoded."""
        return await self.emit_async(
            self.CATEGORY_INGEST, "malformed_message",
            stream=stream,
            metadata={"message_id": message_id, "error": error[:500]}
        )

    async def event_ignored(self, stream: str, event_type: str) -> MetricEvent:
        return await self.emit_async(
            self.CATEGORY_INGEST, "event_ignored",
            stream=stream,
            metadata={"event_type": event_type}
        )

    async def position_skipped(self, symbol: str, reason: str) -> MetricEvent:
        return await self.emit_async(
            self.CATEGORY_INGEST, "position_skipped",
            symbol=symbol,
            metadata={"reason": reason}
        )

    async def stock_upsert_failed(self, symbol: str, event_type: str, error: str) -> MetricEvent:
        return await self.emit_async(
            self.CATEGORY_INGEST, "stock_upsert_failed",
            symbol=symbol,
            metadata={"event_type": event_type, "error": error[:500]}
        )

    async def snapshot_applied(self, count: int, skipped: int) -> MetricEvent:
        return await self.emit_async(
            self.CATEGORY_INGEST, "snapshot_applied", float(count),
            metadata={"positions": count, "skipped": skipped}
        )

    async def message_failed(self, stream: str, message_id: str, error: str) -> MetricEvent:
        """Record a delivery left unacknowledged for redelivery."""
        return await self.emit_async(
            self.CATEGORY_INGEST, "message_failed",
            stream=stream,
            metadata={"message_id": message_id, "error": error[:500]}
        )

    # =========================================================================
    # Aggregation methods
    # =========================================================================

    def count(self, category: str, event_type: str) -> int:
        """Total occurrences of an event since process start."""
        return self._counters[f"{category}/{event_type}"]

    def get_buffer(self) -> List[MetricEvent]:
        """Get buffered events (for API)."""
        return list(self._buffer)

    def get_summary(self, hours: int = 24) -> dict:
        """
        Get aggregated summary of recent metrics.

        Args:
            hours: How many hours of buffered events to include

        Returns:
            Dictionary with recent per-event counts and lifetime counters
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent = [e for e in self._buffer if e.timestamp >= cutoff]

        by_event: Dict[str, int] = {}
        for event in recent:
            key = f"{event.category}/{event.event_type}"
            by_event[key] = by_event.get(key, 0) + 1

        return {
            "period_hours": hours,
            "total_events": len(recent),
            "by_event": by_event,
            "counters": dict(self._counters),
            "malformed_messages": self._counters["ingest/malformed_message"],
            "failed_messages": self._counters["ingest/message_failed"],
            "snapshots_applied": self._counters["ingest/snapshot_applied"],
            "positions_skipped": self._counters["ingest/position_skipped"],
        }

    def reset(self) -> None:
        """Clear buffer and counters."""
        self._buffer = []
        self._counters = Counter()


# Global singleton instance
metrics = MetricsEmitter()
