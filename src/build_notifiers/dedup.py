"""Duplicate notification suppression.

Sources deliver at least once, so the same build status can be handled more
than once. When enabled, a key per (notifier, build, status) is written after
a successful dispatch and checked before the next one.
"""

from __future__ import annotations

import logging
from typing import Any

from build_notifiers.models import Build

logger = logging.getLogger(__name__)


class RedisDeduplicator:
    """Remembers dispatched notifications in Redis for a time window."""

    KEY_PREFIX = "notify:dedup:"

    def __init__(self, redis: Any, *, window_seconds: int = 3600) -> None:
        """Initialize the deduplicator.

        Args:
            redis: Redis client (async).
            window_seconds: How long a dispatched notification suppresses repeats.
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.redis = redis
        self.window_seconds = window_seconds

    def key_for(self, notifier_name: str, build: Build) -> str:
        """Return the Redis key for a notifier/build/status combination."""
        return f"{self.KEY_PREFIX}{notifier_name}:{build.id}:{build.status.value}"

    async def seen(self, notifier_name: str, build: Build) -> bool:
        """Return True if this build status was already dispatched."""
        exists = await self.redis.exists(self.key_for(notifier_name, build))
        if exists:
            logger.debug("Duplicate notification for build %s (%s)", build.id, build.status.value)
        return bool(exists)

    async def mark(self, notifier_name: str, build: Build) -> None:
        """Record that this build status was dispatched."""
        await self.redis.set(self.key_for(notifier_name, build), "1", ex=self.window_seconds)
