"""Exception hierarchy for the notification engine.

Errors are split by failure domain so the engine can decide what to retry:

- ConfigurationError: bad filter, delivery or secrets config. Fatal at set-up.
- SecretAccessError: the secret store failed. Fatal at set-up, but only
  SecretStoreUnavailableError is retried under the startup policy.
- RenderError: a message could not be built for one build. Not retried.
- DeliveryError: the delivery channel failed. Retried with backoff.
"""

from __future__ import annotations


class NotifierError(Exception):
    """Base exception for notifier errors."""


class ConfigurationError(NotifierError):
    """Raised when notifier configuration is invalid."""


class FilterSyntaxError(ConfigurationError):
    """Raised when a filter expression cannot be compiled.

    Attributes:
        position: Offset into the filter source where the error was found.
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)
        self.position = position


class FieldMissingError(ConfigurationError):
    """Raised when a required delivery field is absent or malformed."""


class UnknownSecretRefError(ConfigurationError):
    """Raised when a secret reference has no matching secret declaration."""


class SecretAccessError(NotifierError):
    """Base exception for secret store failures."""


class SecretStoreUnavailableError(SecretAccessError):
    """Raised when the secret store cannot be reached or timed out."""


class SecretAccessDeniedError(SecretAccessError):
    """Raised when the secret store refuses access to a secret."""


class SecretNotFoundError(SecretAccessError):
    """Raised when the secret store has no such secret."""


class RenderError(NotifierError):
    """Raised when a notification message cannot be rendered."""


class URLAnnotationError(RenderError):
    """Raised when tracking parameters cannot be added to a URL."""


class DeliveryError(NotifierError):
    """Raised when dispatching to the delivery channel fails.

    Attributes:
        status_code: HTTP status returned by the channel, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotifierStateError(NotifierError):
    """Raised when a notifier is used outside its lifecycle rules."""
