"""Slack notifier - posts build status attachments to an incoming webhook."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from build_notifiers.errors import NotifierStateError
from build_notifiers.filters import EventFilter, make_predicate
from build_notifiers.models import Build, BuildStatus
from build_notifiers.notifiers.transport import HttpxWebhookTransport, WebhookTransport
from build_notifiers.secrets import get_secret_for_field
from build_notifiers.urls import UTMMedium, add_utm_params

if TYPE_CHECKING:
    from build_notifiers.bindings import BindingResolver
    from build_notifiers.config import NotifierConfig
    from build_notifiers.secrets import SecretGetter

logger = logging.getLogger(__name__)

WEBHOOK_URL_FIELD = "webhookUrl"

# Attachment colors
COLOR_GOOD = "good"
COLOR_DANGER = "danger"
COLOR_WARNING = "warning"
COLOR_NEUTRAL = "#bab8b8"

_STATUS_STYLES: dict[BuildStatus, tuple[str, str]] = {
    BuildStatus.SUCCESS: (COLOR_GOOD, "A new build of {trigger} has succeeded! :tocarocket:"),
    BuildStatus.FAILURE: (COLOR_DANGER, "A new build of {trigger} has failed! :tocascream:"),
    BuildStatus.INTERNAL_ERROR: (
        COLOR_DANGER,
        "A new build of {trigger} has had an internal error! :tocascream:",
    ),
    BuildStatus.TIMEOUT: (COLOR_DANGER, "A build of {trigger} has had a timeout! :tocathinking:"),
    BuildStatus.CANCELLED: (COLOR_WARNING, "A build of {trigger} was manually canceled. :no_good:"),
    BuildStatus.EXPIRED: (COLOR_WARNING, "A build of {trigger} has expired. :headstone:"),
    BuildStatus.PENDING: (
        COLOR_NEUTRAL,
        "A build of {trigger} needs to be approved. :vertical_traffic_light:",
    ),
}

_UNEXPECTED_STYLE = (
    COLOR_WARNING,
    "A new build of {trigger} has completed with an unexpected status! :tocathinking:",
)


@dataclass(frozen=True)
class SlackMessage:
    """A rendered Slack webhook message.

    Attributes:
        text: Attachment text.
        color: Attachment color (a Slack keyword or hex code).
        log_url: Annotated link to the build log.
    """

    text: str
    color: str
    log_url: str

    def to_payload(self) -> dict[str, Any]:
        """Build the incoming webhook JSON payload."""
        return {
            "attachments": [
                {
                    "text": self.text,
                    "color": self.color,
                    "actions": [
                        {
                            "text": "View Logs",
                            "type": "button",
                            "url": self.log_url,
                        }
                    ],
                }
            ]
        }


def status_style(status: BuildStatus) -> tuple[str, str]:
    """Return the (color, headline template) pair for a build status."""
    return _STATUS_STYLES.get(status, _UNEXPECTED_STYLE)


def render_message(build: Build) -> SlackMessage:
    """Render the Slack message for a build.

    Missing substitutions render as empty strings.

    Raises:
        URLAnnotationError: If the build's log URL cannot be annotated.
    """
    subs = build.substitutions
    color, headline = status_style(build.status)
    text = (
        headline.format(trigger=subs["TRIGGER_NAME"])
        + f"\nBranch:{subs['BRANCH_NAME']}\nCommit:{subs['COMMIT_SHA']}"
    )
    log_url = add_utm_params(build.log_url, UTMMedium.CHAT)
    return SlackMessage(text=text, color=color, log_url=log_url)


class SlackNotifier:
    """Notifier delivering to a Slack incoming webhook.

    The webhook URL is read from the ``webhookUrl`` delivery field, which must
    reference a declared secret.
    """

    name = "slack"

    def __init__(self, transport: WebhookTransport | None = None) -> None:
        """Initialize the notifier.

        Args:
            transport: Transport used to post messages (defaults to httpx).
        """
        self._transport = transport or HttpxWebhookTransport()
        self._filter: EventFilter | None = None
        self._webhook_url: str | None = None

    @property
    def filter(self) -> EventFilter | None:
        """Return the compiled filter, or None before set-up."""
        return self._filter

    async def set_up(
        self,
        config: NotifierConfig,
        secret_getter: SecretGetter,
        binding_resolver: BindingResolver,
    ) -> None:
        event_filter = make_predicate(config.notification.filter)
        webhook_url = await get_secret_for_field(config, WEBHOOK_URL_FIELD, secret_getter)

        self._filter = event_filter
        self._webhook_url = webhook_url
        logger.info("Slack notifier ready (filter: %s)", event_filter.source)

    async def send_notification(self, build: Build) -> bool:
        if self._filter is None or self._webhook_url is None:
            raise NotifierStateError("Slack notifier has not been set up")

        if not self._filter.apply(build):
            logger.debug("Build %s (status: %s) filtered out", build.id, build.status.value)
            return False

        logger.info("Sending Slack webhook for build %s (status: %s)", build.id, build.status.value)
        message = render_message(build)
        await self._transport.post(self._webhook_url, message.to_payload())
        return True

    async def close(self) -> None:
        await self._transport.close()
