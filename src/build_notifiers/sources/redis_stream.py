"""Redis Streams event source for build events.

Build events are stored as stream entries with a single ``build`` field
holding the build JSON. Notifier replicas share a consumer group, so each
entry is handled by one replica and stays pending until acknowledged. Entries
left pending (a crash, or a delivery that exhausted its retries) are read
again on startup and then periodically.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from build_notifiers.models import Build
from build_notifiers.sources.base import Delivery
from build_notifiers.sources.codec import EventDecodeError, decode_build, encode_build

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_STREAM_NAME = "builds"
DEFAULT_GROUP_NAME = "build-notifiers"
DEFAULT_MAX_LEN = 100_000
DEFAULT_BLOCK_MS = 1000
DEFAULT_COUNT = 10
DEFAULT_PENDING_CHECK_INTERVAL = 60.0

BUILD_FIELD = "build"


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _deserialize_entry(data: dict[bytes | str, bytes | str]) -> Build:
    """Decode the build held by a stream entry.

    Raises:
        EventDecodeError: If the entry has no valid build payload.
    """
    fields = {_decode(k): v for k, v in data.items()}
    payload = fields.get(BUILD_FIELD)
    if payload is None:
        raise EventDecodeError(f"stream entry has no {BUILD_FIELD!r} field")
    return decode_build(payload)


class RedisStreamSource:
    """Event source reading a Redis Stream through a consumer group.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        source = RedisStreamSource(redis, consumer_name="notifier-1")
        await source.start()

        for delivery in await source.receive():
            ...
            await source.ack(delivery)
        ```
    """

    def __init__(
        self,
        redis: Redis,
        stream_name: str = DEFAULT_STREAM_NAME,
        group_name: str = DEFAULT_GROUP_NAME,
        consumer_name: str = "notifier-1",
        *,
        count: int = DEFAULT_COUNT,
        block_ms: int = DEFAULT_BLOCK_MS,
        max_len: int = DEFAULT_MAX_LEN,
        pending_check_interval: float = DEFAULT_PENDING_CHECK_INTERVAL,
        owns_client: bool = False,
    ) -> None:
        """Initialize the source.

        Args:
            redis: Redis async client.
            stream_name: Name of the Redis Stream.
            group_name: Consumer group shared by notifier replicas.
            consumer_name: Name of this replica within the group.
            count: Maximum entries per read.
            block_ms: Milliseconds to block waiting for new entries.
            max_len: Approximate stream length kept by publish().
            pending_check_interval: Seconds between re-reads of pending entries.
            owns_client: Close the Redis client in close().
        """
        self._redis = redis
        self._stream_name = stream_name
        self._group_name = group_name
        self._consumer_name = consumer_name
        self._count = count
        self._block_ms = block_ms
        self._max_len = max_len
        self._pending_check_interval = pending_check_interval
        self._owns_client = owns_client
        self._next_pending_check = 0.0

    @property
    def stream_name(self) -> str:
        """Return the stream name."""
        return self._stream_name

    async def start(self) -> None:
        """Create the consumer group if it does not exist yet."""
        try:
            await self._redis.xgroup_create(
                self._stream_name, self._group_name, id="0", mkstream=True
            )
            logger.info(
                "Created consumer group '%s' on stream '%s'",
                self._group_name,
                self._stream_name,
            )
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.debug("Consumer group '%s' already exists", self._group_name)

    async def publish(self, build: Build) -> str:
        """Append a build event to the stream.

        Returns:
            The entry ID assigned by Redis.
        """
        entry_id = await self._redis.xadd(
            self._stream_name,
            {BUILD_FIELD: encode_build(build)},
            maxlen=self._max_len,
            approximate=True,
        )
        return _decode(entry_id)

    async def receive(self) -> list[Delivery]:
        now = time.monotonic()
        if now >= self._next_pending_check:
            self._next_pending_check = now + self._pending_check_interval
            pending = await self._read(start_id="0", redelivered=True)
            if pending:
                logger.info("Re-reading %d pending build events", len(pending))
                return pending

        return await self._read(start_id=">", redelivered=False, block=self._block_ms)

    async def _read(
        self,
        *,
        start_id: str,
        redelivered: bool,
        block: int | None = None,
    ) -> list[Delivery]:
        kwargs: dict[str, Any] = {"count": self._count}
        if block is not None:
            kwargs["block"] = block

        results = await self._redis.xreadgroup(
            self._group_name,
            self._consumer_name,
            {self._stream_name: start_id},
            **kwargs,
        )

        deliveries: list[Delivery] = []
        if not results:
            return deliveries

        # Results format: [[stream_name, [(entry_id, data), ...]]]
        for _stream_name, entries in results:
            for entry_id, data in entries:
                entry_id_str = _decode(entry_id)

                # Pending entries trimmed from the stream come back without data
                if not data:
                    await self._ack_ids(entry_id_str)
                    continue

                try:
                    build = _deserialize_entry(data)
                except EventDecodeError as e:
                    logger.warning("Dropping undecodable stream entry %s: %s", entry_id_str, e)
                    await self._ack_ids(entry_id_str)
                    continue

                deliveries.append(
                    Delivery(delivery_id=entry_id_str, build=build, redelivered=redelivered)
                )

        return deliveries

    async def _ack_ids(self, *entry_ids: str) -> int:
        result = await self._redis.xack(self._stream_name, self._group_name, *entry_ids)
        return int(result)

    async def ack(self, delivery: Delivery) -> None:
        await self._ack_ids(delivery.delivery_id)

    async def get_stream_length(self) -> int:
        """Get the current length of the stream."""
        result = await self._redis.xlen(self._stream_name)
        return int(result)

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()
