"""Sources of build events."""

from build_notifiers.sources.base import Delivery, EventSource
from build_notifiers.sources.codec import (
    EventDecodeError,
    decode_build,
    decode_push_envelope,
    encode_build,
    encode_push_envelope,
)
from build_notifiers.sources.memory import MemoryEventSource
from build_notifiers.sources.redis_stream import RedisStreamSource

__all__ = [
    "Delivery",
    "EventDecodeError",
    "EventSource",
    "MemoryEventSource",
    "RedisStreamSource",
    "decode_build",
    "decode_push_envelope",
    "encode_build",
    "encode_push_envelope",
]
