"""Plugin contract for delivery channel notifiers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from build_notifiers.bindings import BindingResolver
    from build_notifiers.config import NotifierConfig
    from build_notifiers.models import Build
    from build_notifiers.secrets import SecretGetter


class Notifier(Protocol):
    """Protocol every delivery channel implementation satisfies.

    The engine calls set_up() exactly once before any notification. After a
    successful set_up() the notifier's state is read-only, so
    send_notification() may run concurrently and may be repeated for the same
    build.
    """

    name: str

    async def set_up(
        self,
        config: NotifierConfig,
        secret_getter: SecretGetter,
        binding_resolver: BindingResolver,
    ) -> None:
        """Compile the filter and fetch the credentials this notifier needs.

        Raises:
            ConfigurationError: If the filter or delivery config is invalid.
            SecretAccessError: If a credential cannot be fetched.
        """
        ...

    async def send_notification(self, build: Build) -> bool:
        """Notify about a build if it passes the filter.

        Returns:
            True if a notification was dispatched, False if the build was
            filtered out.

        Raises:
            RenderError: If the message cannot be built for this build.
            DeliveryError: If the delivery channel rejected or lost the message.
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
