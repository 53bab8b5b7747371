"""Delivery channel notifiers."""

from __future__ import annotations

from build_notifiers.notifiers.base import Notifier
from build_notifiers.notifiers.http import HTTPNotifier
from build_notifiers.notifiers.slack import SlackMessage, SlackNotifier, render_message
from build_notifiers.notifiers.transport import (
    DryRunTransport,
    HttpxWebhookTransport,
    WebhookTransport,
)

# Notifiers are selected at deploy time by name; there is no plugin loading.
NOTIFIERS: dict[str, type[SlackNotifier] | type[HTTPNotifier]] = {
    SlackNotifier.name: SlackNotifier,
    HTTPNotifier.name: HTTPNotifier,
}


def create_notifier(name: str, transport: WebhookTransport | None = None) -> Notifier:
    """Create a registered notifier by name.

    Raises:
        KeyError: If no notifier is registered under this name.
    """
    try:
        notifier_class = NOTIFIERS[name]
    except KeyError:
        raise KeyError(
            f"unknown notifier {name!r}, expected one of {', '.join(sorted(NOTIFIERS))}"
        ) from None
    return notifier_class(transport)


__all__ = [
    "NOTIFIERS",
    "DryRunTransport",
    "HTTPNotifier",
    "HttpxWebhookTransport",
    "Notifier",
    "SlackMessage",
    "SlackNotifier",
    "WebhookTransport",
    "create_notifier",
    "render_message",
]
