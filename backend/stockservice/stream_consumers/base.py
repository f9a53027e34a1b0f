from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Union
import asyncio
import logging
import time
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError
from stockservice.core.config import settings
from stockservice.core.metrics import metrics
from stockservice.core.redis import StreamNames
from stockservice.models.base import utcnow
from stockservice.stream_consumers.events import MalformedEventError

logger = logging.getLogger(__name__)


def _text(value: Union[bytes, str]) -> str:
    """Stream ids and field names arrive as bytes from a raw client."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ConsumerStopping(Exception):
    """Stop was requested after decoding but before the store was written."""


class BaseStreamConsumer(ABC):
    """
    Base class for Redis Stream consumers.

    Delivery is at-least-once: a message is acknowledged only after
    `process_message` returns. Failed messages stay in the group's pending
    list and are re-read, in order, before any new message.
    """

    # Bus client design constants. Redis reads are sized in entries, so
    # MIN_BATCH_BYTES has no XREADGROUP counterpart; MAX_BATCH_BYTES caps a
    # single payload.
    MIN_BATCH_BYTES = 10_000
    MAX_BATCH_BYTES = 10_000_000
    MAX_WAIT_MS = 1000
    COMMIT_INTERVAL = 1.0
    BATCH_COUNT = 10

    CLAIM_MIN_IDLE_MS = 60_000
    MAX_BACKOFF = 30.0

    START_EARLIEST = "0"
    START_LATEST = "$"

    def __init__(
        self,
        stream_name: str,
        consumer_group: str,
        start_id: str = START_LATEST,
        consumer_name: Optional[str] = None,
        redis: Optional[Redis] = None,
        stop_event: Optional[asyncio.Event] = None,
        redis_url: Optional[str] = None,
    ):
        self.redis_url = redis_url or settings.REDIS_URL
        self.stream_name = stream_name
        self.consumer_group = consumer_group
        self.start_id = start_id
        self.consumer_name = consumer_name or f"{consumer_group}-{settings.CONSUMER_NAME}"
        self.redis = redis
        self.stop_event = stop_event or asyncio.Event()
        self._ack_queue: List[str] = []
        self._last_flush = time.monotonic()
        self._has_pending = True
        self._owns_metrics = False

    async def start(self) -> None:
        """Start consuming from the stream; returns once stop is requested."""
        if self.redis is None:
            # Raw bytes: payloads are decoded per message in _handle
            self.redis = Redis.from_url(self.redis_url, decode_responses=False)

        # Connect metrics emitter to Redis unless a host already did
        if metrics.redis is None:
            metrics.set_redis(self.redis)
            self._owns_metrics = True

        try:
            await self._ensure_group()
            await self._claim_orphaned()
            logger.info(f"Consumer {self.consumer_name} starting on {self.stream_name}")
            await self._consume_loop()
        finally:
            await self._flush_acks()
            await self._close()
        logger.info(f"Consumer {self.consumer_name} on {self.stream_name} stopped")

    async def stop(self) -> None:
        """Request a graceful stop; the loop exits at its next read."""
        self.stop_event.set()

    def ensure_running(self) -> None:
        """Call between decoding and writing; aborts the message on stop."""
        if self.stop_event.is_set():
            raise ConsumerStopping()

    async def _ensure_group(self) -> None:
        # An existing group keeps its committed position; start_id only
        # applies the first time the group joins the stream.
        try:
            await self.redis.xgroup_create(
                self.stream_name, self.consumer_group, id=self.start_id, mkstream=True
            )
            logger.info(
                f"Created consumer group {self.consumer_group} on {self.stream_name} "
                f"(start={self.start_id})"
            )
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.info(f"Consumer group {self.consumer_group} already exists")

    async def _claim_orphaned(self) -> None:
        """Take over entries left pending by a previous instance of this group."""
        start_id = "0-0"
        try:
            while True:
                result = await self.redis.xautoclaim(
                    self.stream_name,
                    self.consumer_group,
                    self.consumer_name,
                    min_idle_time=self.CLAIM_MIN_IDLE_MS,
                    start_id=start_id,
                    count=100,
                )
                next_id, claimed = _text(result[0]), result[1]
                if claimed:
                    logger.warning(
                        f"Claimed {len(claimed)} orphaned messages on {self.stream_name}"
                    )
                if next_id == "0-0" or next_id == start_id:
                    break
                start_id = next_id
        except ResponseError as e:
            logger.warning(f"Could not claim orphaned messages on {self.stream_name}: {e}")

    async def _consume_loop(self) -> None:
        """Main consumption loop."""
        backoff = 0.0

        while not self.stop_event.is_set():
            # '0' re-reads this consumer's unacknowledged entries; '>' reads new ones
            read_id = "0" if self._has_pending else ">"
            if read_id == "0":
                # Acks must land before the pending list is re-read
                await self._flush_acks()
            try:
                response = await self.redis.xreadgroup(
                    self.consumer_group,
                    self.consumer_name,
                    {self.stream_name: read_id},
                    count=self.BATCH_COUNT,
                    block=None if read_id == "0" else self.MAX_WAIT_MS,
                )
            except (RedisError, OSError) as e:
                backoff = self._next_backoff(backoff)
                logger.error(f"Error reading {self.stream_name}: {e}; retrying in {backoff:.0f}s")
                await self._wait(backoff)
                continue
            except Exception:
                backoff = self._next_backoff(backoff)
                logger.exception(
                    f"Unexpected error reading {self.stream_name}; retrying in {backoff:.0f}s"
                )
                await self._wait(backoff)
                continue

            entries = [
                (_text(message_id), {_text(k): v for k, v in (fields or {}).items()})
                for _, stream_messages in (response or [])
                for message_id, fields in stream_messages
            ]
            if not entries:
                self._has_pending = False
                await self._flush_acks()
                continue

            try:
                failed = await self._process_batch(entries)
            except ConsumerStopping:
                break

            if failed:
                self._has_pending = True
                backoff = self._next_backoff(backoff)
                await self._wait(backoff)
            else:
                backoff = 0.0
                await self._maybe_flush_acks()

    async def _process_batch(self, entries) -> bool:
        """Process entries in order; returns True if one was left for redelivery."""
        for message_id, fields in entries:
            if self.stop_event.is_set():
                raise ConsumerStopping()
            if not await self._handle(message_id, fields):
                return True
        return False

    async def _handle(self, message_id: str, fields: Dict[str, Any]) -> bool:
        raw = fields.get("payload")
        try:
            payload = self._decode_payload(raw)
            await self.process_message(message_id, payload)
        except MalformedEventError as e:
            # Poison message: record it and move on so the group is not blocked
            logger.error(f"Malformed message {message_id} on {self.stream_name}: {e}")
            await metrics.malformed_message(self.stream_name, message_id, str(e))
            await self._send_to_dlq(message_id, raw, str(e))
        except ConsumerStopping:
            logger.info(
                f"Stop requested before {message_id} was applied; leaving it pending"
            )
            raise
        except Exception as e:
            logger.exception(
                f"Failed to process {message_id} on {self.stream_name}; "
                f"leaving it for redelivery"
            )
            await metrics.message_failed(self.stream_name, message_id, str(e))
            return False

        self._ack_queue.append(message_id)
        return True

    def _decode_payload(self, raw: Union[bytes, str, None]) -> str:
        if raw is None:
            raise MalformedEventError("message has no payload field")
        data = raw if isinstance(raw, bytes) else raw.encode("utf-8")
        if len(data) > self.MAX_BATCH_BYTES:
            raise MalformedEventError(f"payload exceeds {self.MAX_BATCH_BYTES} bytes")
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEventError(f"payload is not valid UTF-8: {e}") from e

    async def _send_to_dlq(
        self, message_id: str, payload: Union[bytes, str, None], error: str
    ) -> None:
        """Send failed message to dead letter queue."""
        dlq_stream = StreamNames.dead_letter(self.stream_name)
        try:
            await self.redis.xadd(dlq_stream, {
                "original_id": message_id,
                "error": error[:1000],
                "timestamp": utcnow().isoformat(),
                "payload": payload if payload is not None else "",  # Original bytes, undecoded
            })
            logger.error(f"Sent {message_id} to DLQ: {dlq_stream}")
        except (RedisError, OSError) as e:
            logger.error(f"Could not write {message_id} to {dlq_stream}: {e}")

    async def _maybe_flush_acks(self) -> None:
        if time.monotonic() - self._last_flush >= self.COMMIT_INTERVAL:
            await self._flush_acks()

    async def _flush_acks(self) -> None:
        """Commit processed message ids to the consumer group."""
        self._last_flush = time.monotonic()
        if not self._ack_queue or self.redis is None:
            return
        ids = list(self._ack_queue)
        try:
            await self.redis.xack(self.stream_name, self.consumer_group, *ids)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to ack {len(ids)} messages on {self.stream_name}: {e}")
            return
        del self._ack_queue[:len(ids)]

    def _next_backoff(self, current: float) -> float:
        return min(max(current * 2, 1.0), self.MAX_BACKOFF)

    async def _wait(self, seconds: float) -> None:
        """Sleep that returns early when stop is requested."""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _close(self) -> None:
        if self.redis is None:
            return
        if self._owns_metrics and metrics.redis is self.redis:
            metrics.set_redis(None)
            self._owns_metrics = False
        try:
            await self.redis.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis connection for {self.stream_name}: {e}")

    @abstractmethod
    async def process_message(self, message_id: str, payload: str) -> None:
        """Process a single message. Must be implemented by subclass."""
        pass
