"""Event source contract."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from build_notifiers.models import Build


@dataclass(frozen=True)
class Delivery:
    """One delivery of a build event from a source.

    Sources deliver at least once: the same build may arrive again, with
    ``redelivered`` set when the source knows it handed the event out before.

    Attributes:
        delivery_id: Source-specific identifier used to acknowledge the event.
        build: The build snapshot.
        redelivered: True if the source delivered this event before.
    """

    delivery_id: str
    build: Build
    redelivered: bool = False


class EventSource(Protocol):
    """Protocol for sources of build events."""

    async def receive(self) -> list[Delivery]:
        """Wait briefly for events and return those available (possibly none)."""
        ...

    async def ack(self, delivery: Delivery) -> None:
        """Acknowledge that a delivery needs no further processing."""
        ...

    async def close(self) -> None:
        """Release resources held by the source."""
        ...
