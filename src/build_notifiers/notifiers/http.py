"""HTTP notifier - posts the build as JSON to an arbitrary endpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from build_notifiers.errors import FieldMissingError, NotifierStateError
from build_notifiers.filters import EventFilter, make_predicate
from build_notifiers.notifiers.transport import HttpxWebhookTransport, WebhookTransport
from build_notifiers.secrets import get_secret_for_field, secret_ref_of
from build_notifiers.urls import UTMMedium, add_utm_params

if TYPE_CHECKING:
    from build_notifiers.bindings import BindingResolver
    from build_notifiers.config import NotifierConfig
    from build_notifiers.models import Build
    from build_notifiers.secrets import SecretGetter

logger = logging.getLogger(__name__)

URL_FIELD = "url"


class HTTPNotifier:
    """Notifier posting ``{"build": ..., "params": ...}`` to a URL.

    The ``url`` delivery field is either a plain URL or a secret reference.
    Notification params are resolved against each build with the binding
    resolver handed to set_up().
    """

    name = "http"

    def __init__(self, transport: WebhookTransport | None = None) -> None:
        self._transport = transport or HttpxWebhookTransport()
        self._filter: EventFilter | None = None
        self._url: str | None = None
        self._params: dict[str, str] = {}
        self._resolver: BindingResolver | None = None

    async def set_up(
        self,
        config: NotifierConfig,
        secret_getter: SecretGetter,
        binding_resolver: BindingResolver,
    ) -> None:
        notification = config.notification
        event_filter = make_predicate(notification.filter)
        binding_resolver.validate(notification.params)

        raw_url = notification.delivery.get(URL_FIELD)
        if secret_ref_of(raw_url) is not None:
            url = await get_secret_for_field(config, URL_FIELD, secret_getter)
        elif isinstance(raw_url, str) and raw_url.startswith(("http://", "https://")):
            url = raw_url
        else:
            raise FieldMissingError(
                f"delivery field {URL_FIELD!r} must be an http(s) URL or a secret reference"
            )

        self._filter = event_filter
        self._url = url
        self._params = dict(notification.params)
        self._resolver = binding_resolver
        logger.info("HTTP notifier ready (filter: %s)", event_filter.source)

    def build_payload(self, build: Build) -> dict[str, Any]:
        """Build the JSON body posted for a build.

        Raises:
            NotifierStateError: If called before set-up.
            URLAnnotationError: If the build has a log URL that cannot be annotated.
        """
        if self._resolver is None:
            raise NotifierStateError("HTTP notifier has not been set up")

        body = build.to_dict()
        if build.log_url:
            body["logUrl"] = add_utm_params(build.log_url, UTMMedium.HTTP)
        return {
            "build": body,
            "params": self._resolver.resolve(self._params, build),
        }

    async def send_notification(self, build: Build) -> bool:
        if self._filter is None or self._url is None:
            raise NotifierStateError("HTTP notifier has not been set up")

        if not self._filter.apply(build):
            logger.debug("Build %s (status: %s) filtered out", build.id, build.status.value)
            return False

        logger.info("Posting build %s (status: %s) over HTTP", build.id, build.status.value)
        await self._transport.post(self._url, self.build_payload(build))
        return True

    async def close(self) -> None:
        await self._transport.close()
