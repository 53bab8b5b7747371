"""Tests for the Redis Streams event source."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ResponseError

from build_notifiers.sources.base import Delivery
from build_notifiers.sources.codec import encode_build
from build_notifiers.sources.redis_stream import BUILD_FIELD, RedisStreamSource
from tests.conftest import make_build

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client."""
    redis = AsyncMock()
    redis.xgroup_create = AsyncMock(return_value=True)
    redis.xadd = AsyncMock(return_value=b"1234567890-0")
    redis.xreadgroup = AsyncMock(return_value=[])
    redis.xack = AsyncMock(return_value=1)
    redis.xlen = AsyncMock(return_value=5)
    redis.aclose = AsyncMock()
    return redis


def _entry(entry_id: bytes, build_id: str) -> tuple[bytes, dict[bytes, bytes]]:
    payload = encode_build(make_build(build_id=build_id)).encode()
    return entry_id, {BUILD_FIELD.encode(): payload}


# ============================================================================
# Tests
# ============================================================================


class TestStart:
    """Tests for consumer group creation."""

    @pytest.mark.asyncio
    async def test_creates_group(self, mock_redis: AsyncMock) -> None:
        """Test the consumer group is created with mkstream."""
        source = RedisStreamSource(mock_redis, "builds", "notifiers", "n1")
        await source.start()

        mock_redis.xgroup_create.assert_awaited_once_with(
            "builds", "notifiers", id="0", mkstream=True
        )

    @pytest.mark.asyncio
    async def test_existing_group(self, mock_redis: AsyncMock) -> None:
        """Test BUSYGROUP errors are ignored."""
        mock_redis.xgroup_create.side_effect = ResponseError(
            "BUSYGROUP Consumer Group name already exists"
        )
        await RedisStreamSource(mock_redis).start()

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, mock_redis: AsyncMock) -> None:
        """Test other Redis errors are raised."""
        mock_redis.xgroup_create.side_effect = ResponseError("WRONGTYPE")

        with pytest.raises(ResponseError):
            await RedisStreamSource(mock_redis).start()


class TestPublish:
    """Tests for publishing builds."""

    @pytest.mark.asyncio
    async def test_publish(self, mock_redis: AsyncMock) -> None:
        """Test a build is appended with a trimmed stream length."""
        source = RedisStreamSource(mock_redis, max_len=500)

        entry_id = await source.publish(make_build())

        assert entry_id == "1234567890-0"
        args, kwargs = mock_redis.xadd.call_args
        assert args[0] == "builds"
        assert BUILD_FIELD in args[1]
        assert kwargs == {"maxlen": 500, "approximate": True}


class TestReceive:
    """Tests for reading builds."""

    @pytest.mark.asyncio
    async def test_reads_pending_first(self, mock_redis: AsyncMock) -> None:
        """Test pending entries are re-read before new ones."""
        mock_redis.xreadgroup.return_value = [[b"builds", [_entry(b"1-0", "b1")]]]
        source = RedisStreamSource(mock_redis, consumer_name="n1")

        deliveries = await source.receive()

        assert [d.delivery_id for d in deliveries] == ["1-0"]
        assert deliveries[0].redelivered is True
        assert mock_redis.xreadgroup.call_args.args[2] == {"builds": "0"}

    @pytest.mark.asyncio
    async def test_reads_new_entries(self, mock_redis: AsyncMock) -> None:
        """Test new entries are read with blocking once nothing is pending."""
        mock_redis.xreadgroup.side_effect = [
            [],
            [[b"builds", [_entry(b"2-0", "b2")]]],
        ]
        source = RedisStreamSource(mock_redis, block_ms=250)

        deliveries = await source.receive()

        assert deliveries[0].build.id == "b2"
        assert deliveries[0].redelivered is False
        args, kwargs = mock_redis.xreadgroup.call_args
        assert args[2] == {"builds": ">"}
        assert kwargs["block"] == 250

    @pytest.mark.asyncio
    async def test_pending_check_interval(self, mock_redis: AsyncMock) -> None:
        """Test pending entries are not re-read on every call."""
        source = RedisStreamSource(mock_redis, pending_check_interval=3600)

        await source.receive()
        await source.receive()

        start_ids = [c.args[2]["builds"] for c in mock_redis.xreadgroup.call_args_list]
        assert start_ids == ["0", ">", ">"]

    @pytest.mark.asyncio
    async def test_drops_bad_entries(self, mock_redis: AsyncMock) -> None:
        """Test trimmed and undecodable entries are acked and skipped."""
        mock_redis.xreadgroup.return_value = [
            [
                b"builds",
                [
                    (b"1-0", {}),
                    (b"2-0", {BUILD_FIELD.encode(): b"{broken"}),
                    (b"3-0", {b"other": b"x"}),
                    _entry(b"4-0", "b4"),
                ],
            ]
        ]
        source = RedisStreamSource(mock_redis, group_name="g")

        deliveries = await source.receive()

        assert [d.delivery_id for d in deliveries] == ["4-0"]
        acked = [c.args[2] for c in mock_redis.xack.call_args_list]
        assert acked == ["1-0", "2-0", "3-0"]

    @pytest.mark.asyncio
    async def test_drops_malformed_build(self, mock_redis: AsyncMock) -> None:
        """Test a build with non-list tags is acked instead of raising."""
        payload = b'{"id": "b1", "status": "SUCCESS", "tags": 5}'
        mock_redis.xreadgroup.side_effect = [
            [[b"builds", [(b"1-0", {BUILD_FIELD.encode(): payload})]]],
            [],
        ]
        source = RedisStreamSource(mock_redis, group_name="g")

        deliveries = await source.receive()

        assert deliveries == []
        mock_redis.xack.assert_awaited_once_with("builds", "g", "1-0")


class TestAckAndClose:
    """Tests for acknowledgement and cleanup."""

    @pytest.mark.asyncio
    async def test_ack(self, mock_redis: AsyncMock) -> None:
        """Test ack acknowledges the entry in the group."""
        source = RedisStreamSource(mock_redis, "builds", "g")
        await source.ack(Delivery("5-0", make_build()))

        mock_redis.xack.assert_awaited_once_with("builds", "g", "5-0")

    @pytest.mark.asyncio
    async def test_stream_length(self, mock_redis: AsyncMock) -> None:
        """Test the stream length is reported."""
        assert await RedisStreamSource(mock_redis).get_stream_length() == 5

    @pytest.mark.asyncio
    async def test_close_shared_client(self, mock_redis: AsyncMock) -> None:
        """Test a shared client is left open."""
        await RedisStreamSource(mock_redis).close()
        mock_redis.aclose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_owned_client(self, mock_redis: AsyncMock) -> None:
        """Test an owned client is closed."""
        await RedisStreamSource(mock_redis, owns_client=True).close()
        mock_redis.aclose.assert_awaited_once()
