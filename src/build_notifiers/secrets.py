"""Secret resolution for notifier credentials.

Resolving a credential takes three stages, each with its own failure domain:

1. find_secret_ref: find the secret reference in the delivery config.
2. find_secret_resource_name: map the reference to a declared resource locator.
3. SecretGetter.get_secret: fetch the value from the secret store.

Stages 1 and 2 are pure lookups that raise ConfigurationError, so a broken
configuration is reported before any network call. Only stage 3 does I/O and
raises SecretAccessError.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

from build_notifiers.errors import (
    ConfigurationError,
    FieldMissingError,
    SecretNotFoundError,
    SecretStoreUnavailableError,
    UnknownSecretRefError,
)

if TYPE_CHECKING:
    from build_notifiers.config import NotifierConfig, SecretDeclaration

logger = logging.getLogger(__name__)

SECRET_REF_KEY = "secretRef"
ENV_LOCATOR_PREFIX = "env:"


class SecretGetter(Protocol):
    """Protocol for secret store clients."""

    async def get_secret(self, resource: str) -> str:
        """Fetch the current value of a secret.

        Raises:
            SecretAccessError: If the store is unavailable, denies access or
                has no such secret.
        """
        ...


def secret_ref_of(value: Any) -> str | None:
    """Return the secret reference named by a delivery value, if it is one."""
    if isinstance(value, Mapping):
        ref = value.get(SECRET_REF_KEY)
        if isinstance(ref, str) and ref:
            return ref
    return None


def find_secret_ref(delivery: Mapping[str, Any], field_name: str) -> str:
    """Find the secret reference stored under a delivery field.

    Args:
        delivery: The notification delivery config.
        field_name: Delivery field expected to hold ``{secretRef: <name>}``.

    Returns:
        The secret reference name.

    Raises:
        FieldMissingError: If the field is absent or is not a secret reference.
    """
    if field_name not in delivery:
        raise FieldMissingError(f"delivery config has no field {field_name!r}")

    ref = secret_ref_of(delivery[field_name])
    if ref is None:
        raise FieldMissingError(
            f"delivery field {field_name!r} must be a mapping with a non-empty "
            f"{SECRET_REF_KEY!r} key"
        )
    return ref


def find_secret_resource_name(secrets: Sequence[SecretDeclaration], ref: str) -> str:
    """Resolve a secret reference to its resource locator.

    Args:
        secrets: Secret declarations from the notifier config.
        ref: Secret reference name.

    Returns:
        The resource locator of the matching declaration.

    Raises:
        UnknownSecretRefError: If no declaration has this name.
        ConfigurationError: If more than one declaration has this name.
    """
    matches = [s for s in secrets if s.name == ref]
    if not matches:
        raise UnknownSecretRefError(f"no secret declared with name {ref!r}")
    if len(matches) > 1:
        raise ConfigurationError(f"secret {ref!r} is declared {len(matches)} times")
    return matches[0].resource_locator


async def get_secret_for_field(
    config: NotifierConfig,
    field_name: str,
    getter: SecretGetter,
) -> str:
    """Resolve and fetch the secret behind a delivery field.

    Both structural lookups complete before the getter is called.

    Raises:
        ConfigurationError: If the field or its secret declaration is missing.
        SecretAccessError: If the secret store fetch fails.
    """
    ref = find_secret_ref(config.notification.delivery, field_name)
    resource = find_secret_resource_name(config.secrets, ref)
    logger.debug("Fetching secret %r for delivery field %r", ref, field_name)
    return await getter.get_secret(resource)


class RetryingSecretGetter:
    """Secret getter applying a timeout and retry policy to another getter.

    Only SecretStoreUnavailableError is retried; access denied and not found
    errors are permanent. A call exceeding the timeout counts as the store
    being unavailable.
    """

    def __init__(
        self,
        getter: SecretGetter,
        *,
        max_attempts: int = 1,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the retrying getter.

        Args:
            getter: Secret getter to delegate to.
            max_attempts: Total attempts per secret (1 disables retries).
            retry_delay: Base delay between attempts (exponential backoff).
            timeout: Deadline for each attempt in seconds.
        """
        self.getter = getter
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.timeout = timeout

    async def get_secret(self, resource: str) -> str:
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(
                    self.getter.get_secret(resource), timeout=self.timeout
                )
            except TimeoutError:
                last_error = SecretStoreUnavailableError(
                    f"secret store timed out after {self.timeout}s fetching {resource!r}"
                )
            except SecretStoreUnavailableError as e:
                last_error = e

            logger.warning(
                "Secret store unavailable (attempt %d/%d): %s",
                attempt + 1,
                self.max_attempts,
                last_error,
            )
            attempt += 1
            if attempt >= self.max_attempts:
                raise last_error
            await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))


class StaticSecretGetter:
    """In-memory secret store, for tests and dry runs."""

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})
        self.calls: list[str] = []

    async def get_secret(self, resource: str) -> str:
        self.calls.append(resource)
        try:
            return self._secrets[resource]
        except KeyError:
            raise SecretNotFoundError(f"secret {resource!r} not found") from None


class EnvironmentSecretGetter:
    """Secret store backed by process environment variables.

    A locator is either ``env:NAME`` or a bare variable ``NAME``.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    async def get_secret(self, resource: str) -> str:
        name = resource.removeprefix(ENV_LOCATOR_PREFIX)
        value = self._environ.get(name)
        if value is None:
            raise SecretNotFoundError(f"environment variable {name!r} is not set")
        return value
