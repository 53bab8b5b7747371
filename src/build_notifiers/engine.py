"""Notification engine - drives one notifier over a stream of build events.

The engine owns the notifier lifecycle: set_up() runs exactly once, and
notifications are only sent once it succeeded. Each build is then handed to
the notifier with retry and backoff on delivery errors, and the outcome
decides whether the event is acknowledged to its source:

    DELIVERED, FILTERED, DUPLICATE    acked
    RENDER_FAILED                     acked (redelivery cannot help)
    DELIVERY_FAILED                   not acked, the source redelivers

Example:
    ```python
    engine = NotificationEngine(SlackNotifier(), config, secret_getter)
    await engine.set_up()
    await engine.run(source)
    ```
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter as OutcomeCounter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from build_notifiers.bindings import BindingResolver, DefaultBindingResolver
from build_notifiers.errors import DeliveryError, NotifierStateError, RenderError
from build_notifiers.secrets import RetryingSecretGetter

if TYPE_CHECKING:
    from build_notifiers.config import NotifierConfig
    from build_notifiers.dedup import RedisDeduplicator
    from build_notifiers.models import Build
    from build_notifiers.notifiers.base import Notifier
    from build_notifiers.secrets import SecretGetter
    from build_notifiers.sources.base import Delivery, EventSource

logger = logging.getLogger(__name__)


# Prometheus metrics
NOTIFICATIONS_TOTAL = Counter(
    "build_notifier_notifications_total",
    "Build events handled, by outcome",
    ["notifier", "outcome"],
)

DELIVERY_ATTEMPTS_TOTAL = Counter(
    "build_notifier_delivery_attempts_total",
    "Calls made to the notifier to deliver a build event",
    ["notifier"],
)

NOTIFICATION_LATENCY = Histogram(
    "build_notifier_notification_latency_seconds",
    "Time to handle a build event, including retries",
    ["notifier"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)


class NotifierState(Enum):
    """Lifecycle state of the engine's notifier."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


class DeliveryOutcome(Enum):
    """Result of handling one build event."""

    DELIVERED = "delivered"
    FILTERED = "filtered"
    DUPLICATE = "duplicate"
    RENDER_FAILED = "render_failed"
    DELIVERY_FAILED = "delivery_failed"

    @property
    def should_ack(self) -> bool:
        """Return True if the source should not redeliver the event."""
        return self is not DeliveryOutcome.DELIVERY_FAILED


@dataclass
class DeliveryResult:
    """Result of handling a single build event."""

    build_id: str
    outcome: DeliveryOutcome
    attempts: int = 0
    error: str | None = None
    elapsed_seconds: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def should_ack(self) -> bool:
        """Return True if the source should not redeliver the event."""
        return self.outcome.should_ack


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy for delivery attempts.

    Attributes:
        max_attempts: Total attempts per build, including the first.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound on any single delay, in seconds.
        multiplier: Growth factor between consecutive delays.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay(self, retry_number: int) -> float:
        """Return the delay before retry ``retry_number`` (0-based)."""
        return float(min(self.base_delay * (self.multiplier**retry_number), self.max_delay))


@dataclass
class EngineStats:
    """Counters describing what the engine has handled so far."""

    received: int = 0
    outcomes: OutcomeCounter[str] = field(default_factory=OutcomeCounter)
    last_error: str | None = None
    started_at: float = field(default_factory=time.time)


class NotificationEngine:
    """Host that sets up a notifier and feeds it build events."""

    def __init__(
        self,
        notifier: Notifier,
        config: NotifierConfig,
        secret_getter: SecretGetter,
        *,
        binding_resolver: BindingResolver | None = None,
        retry_policy: RetryPolicy | None = None,
        secret_fetch_attempts: int = 1,
        secret_fetch_timeout: float = 10.0,
        dispatch_timeout: float = 10.0,
        max_concurrency: int = 4,
        deduplicator: RedisDeduplicator | None = None,
        receive_retry_delay: float = 1.0,
    ) -> None:
        """Initialize the engine.

        Args:
            notifier: The delivery channel implementation to drive.
            config: Validated notifier configuration.
            secret_getter: Secret store client used during set-up.
            binding_resolver: Resolver for notification params.
            retry_policy: Backoff policy for delivery errors.
            secret_fetch_attempts: Secret store attempts during set-up.
            secret_fetch_timeout: Deadline for each secret store call.
            dispatch_timeout: Deadline for each delivery attempt.
            max_concurrency: Build events handled at the same time.
            deduplicator: Optional duplicate suppression.
            receive_retry_delay: Pause after the source fails to receive.
        """
        self.notifier = notifier
        self.config = config
        self.binding_resolver = binding_resolver or DefaultBindingResolver()
        self.retry_policy = retry_policy or RetryPolicy()
        self.dispatch_timeout = dispatch_timeout
        self.deduplicator = deduplicator
        self.receive_retry_delay = receive_retry_delay
        self.stats = EngineStats()

        self._secret_getter = RetryingSecretGetter(
            secret_getter,
            max_attempts=secret_fetch_attempts,
            timeout=secret_fetch_timeout,
        )
        self._state = NotifierState.UNINITIALIZED
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> NotifierState:
        """Return the notifier lifecycle state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        """Return True if notifications can be sent."""
        return self._state is NotifierState.READY

    async def set_up(self) -> None:
        """Set up the notifier. May only be called once.

        Raises:
            NotifierStateError: If set-up was already attempted.
            ConfigurationError: If the notifier configuration is invalid.
            SecretAccessError: If a credential could not be fetched.
        """
        if self._state is not NotifierState.UNINITIALIZED:
            raise NotifierStateError(
                f"notifier set-up already attempted (state: {self._state.value})"
            )

        logger.info("Setting up %s notifier %r", self.notifier.name, self.config.name)
        try:
            await self.notifier.set_up(
                self.config, self._secret_getter, self.binding_resolver
            )
        except BaseException as e:
            self._state = NotifierState.FAILED
            self.stats.last_error = str(e)
            logger.error("Notifier set-up failed: %s", e)
            raise

        self._state = NotifierState.READY
        logger.info("Notifier %s is ready", self.notifier.name)

    async def _attempt(self, build: Build) -> bool:
        DELIVERY_ATTEMPTS_TOTAL.labels(notifier=self.notifier.name).inc()
        try:
            return await asyncio.wait_for(
                self.notifier.send_notification(build), timeout=self.dispatch_timeout
            )
        except TimeoutError as e:
            raise DeliveryError(
                f"dispatch timed out after {self.dispatch_timeout}s"
            ) from e

    async def handle(self, build: Build) -> DeliveryResult:
        """Handle one build event with retries.

        Returns:
            The outcome. Only failures of the engine's own lifecycle raise.

        Raises:
            NotifierStateError: If the notifier is not ready.
        """
        if self._state is not NotifierState.READY:
            raise NotifierStateError(
                f"cannot send notifications in state {self._state.value}"
            )

        start = time.monotonic()
        self.stats.received += 1
        result = await self._handle(build)
        result.elapsed_seconds = time.monotonic() - start

        self.stats.outcomes[result.outcome.value] += 1
        if result.error:
            self.stats.last_error = result.error
        NOTIFICATIONS_TOTAL.labels(
            notifier=self.notifier.name, outcome=result.outcome.value
        ).inc()
        NOTIFICATION_LATENCY.labels(notifier=self.notifier.name).observe(
            result.elapsed_seconds
        )
        return result

    async def _is_duplicate(self, build: Build) -> bool:
        if not self.deduplicator:
            return False
        try:
            return await self.deduplicator.seen(self.notifier.name, build)
        except Exception as e:
            logger.warning(
                "Duplicate check failed for build %s, sending anyway: %s", build.id, e
            )
            return False

    async def _mark_delivered(self, build: Build) -> None:
        if not self.deduplicator:
            return
        try:
            await self.deduplicator.mark(self.notifier.name, build)
        except Exception as e:
            logger.warning("Failed to record delivery of build %s: %s", build.id, e)

    async def _handle(self, build: Build) -> DeliveryResult:
        attempts = 0

        try:
            if await self._is_duplicate(build):
                logger.info("Skipping duplicate notification for build %s", build.id)
                return DeliveryResult(build.id, DeliveryOutcome.DUPLICATE)

            while True:
                attempts += 1
                try:
                    dispatched = await self._attempt(build)
                    break
                except DeliveryError as e:
                    if attempts >= self.retry_policy.max_attempts:
                        logger.error(
                            "Delivery for build %s failed after %d attempts: %s",
                            build.id,
                            attempts,
                            e,
                        )
                        return DeliveryResult(
                            build.id, DeliveryOutcome.DELIVERY_FAILED, attempts, str(e)
                        )
                    delay = self.retry_policy.delay(attempts - 1)
                    logger.warning(
                        "Delivery for build %s failed (attempt %d/%d), retrying in %.1fs: %s",
                        build.id,
                        attempts,
                        self.retry_policy.max_attempts,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)

            if not dispatched:
                return DeliveryResult(build.id, DeliveryOutcome.FILTERED, attempts)

            await self._mark_delivered(build)
            logger.info("Delivered notification for build %s (status: %s)", build.id, build.status.value)
            return DeliveryResult(build.id, DeliveryOutcome.DELIVERED, attempts)

        except RenderError as e:
            logger.error("Cannot render notification for build %s: %s", build.id, e)
            return DeliveryResult(build.id, DeliveryOutcome.RENDER_FAILED, attempts, str(e))
        except NotifierStateError:
            raise
        except Exception as e:
            logger.exception("Unexpected error notifying about build %s", build.id)
            return DeliveryResult(
                build.id, DeliveryOutcome.DELIVERY_FAILED, attempts, f"{type(e).__name__}: {e}"
            )

    async def process(self, delivery: Delivery, source: EventSource) -> DeliveryResult:
        """Handle a delivery and acknowledge it when appropriate."""
        async with self._semaphore:
            if delivery.redelivered:
                logger.info("Handling redelivered build %s", delivery.build.id)
            result = await self.handle(delivery.build)

        if result.should_ack:
            try:
                await source.ack(delivery)
            except Exception:
                logger.exception(
                    "Failed to acknowledge delivery %s, it may be redelivered",
                    delivery.delivery_id,
                )
        return result

    async def run_once(self, source: EventSource) -> list[DeliveryResult]:
        """Receive one batch from the source and handle it concurrently."""
        deliveries = await source.receive()
        if not deliveries:
            return []
        return list(await asyncio.gather(*(self.process(d, source) for d in deliveries)))

    async def run(self, source: EventSource) -> None:
        """Handle events from the source until stop() is called.

        Raises:
            NotifierStateError: If the notifier is not ready.
        """
        if self._state is not NotifierState.READY:
            raise NotifierStateError(
                f"cannot run engine in state {self._state.value}, call set_up() first"
            )

        self._stop_event.clear()
        logger.info("Notification engine running")
        while not self._stop_event.is_set():
            try:
                await self.run_once(source)
            except NotifierStateError:
                raise
            except Exception:
                logger.exception(
                    "Failed to receive build events, retrying in %.1fs",
                    self.receive_retry_delay,
                )
                await asyncio.sleep(self.receive_retry_delay)
        logger.info("Notification engine stopped")

    def stop(self) -> None:
        """Ask run() to return after the current batch."""
        self._stop_event.set()

    async def close(self) -> None:
        """Stop the engine and release notifier resources."""
        self.stop()
        await self.notifier.close()
