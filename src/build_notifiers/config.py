"""Configuration management with Pydantic Settings.

Two kinds of configuration live here:

- Settings: how the engine process runs (event source, retry policy,
  timeouts, logging), loaded from environment variables at startup.
- NotifierConfig: the declarative YAML document describing one notifier
  instance (filter, delivery and secret declarations).
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from build_notifiers.errors import ConfigurationError
from build_notifiers.secrets import secret_ref_of

SUPPORTED_API_VERSIONS = frozenset({"build-notifiers/v1"})


# ============================================================================
# Notifier configuration document
# ============================================================================


class SecretDeclaration(BaseModel):
    """Maps a symbolic secret name to a locator in an external secret store."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    resource_locator: str = Field(
        min_length=1,
        validation_alias=AliasChoices("value", "resourceLocator", "resource_locator"),
    )


class NotificationSpec(BaseModel):
    """What to notify about and where to deliver it."""

    model_config = ConfigDict(frozen=True)

    filter: str
    delivery: dict[str, Any] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)

    def secret_refs(self) -> dict[str, str]:
        """Return delivery field name -> secret reference for secret-backed fields."""
        refs: dict[str, str] = {}
        for field_name, value in self.delivery.items():
            ref = secret_ref_of(value)
            if ref is not None:
                refs[field_name] = ref
        return refs


class NotifierSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    notification: NotificationSpec
    secrets: tuple[SecretDeclaration, ...] = ()


class NotifierMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""


class NotifierConfig(BaseModel):
    """A notifier configuration document.

    Example:
        ```yaml
        apiVersion: build-notifiers/v1
        kind: SlackNotifier
        metadata:
          name: example-slack-notifier
        spec:
          notification:
            filter: build.status == Build.Status.SUCCESS
            delivery:
              webhookUrl:
                secretRef: webhook-url
          secrets:
          - name: webhook-url
            value: projects/example/secrets/slack-webhook/versions/latest
        ```
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_version: str = Field(alias="apiVersion")
    kind: str = ""
    metadata: NotifierMetadata = Field(default_factory=NotifierMetadata)
    spec: NotifierSpec

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        """Reject documents written for another schema version."""
        if v not in SUPPORTED_API_VERSIONS:
            raise ValueError(
                f"unsupported apiVersion {v!r}, expected one of {sorted(SUPPORTED_API_VERSIONS)}"
            )
        return v

    @model_validator(mode="after")
    def validate_secret_refs(self) -> NotifierConfig:
        """Every secret reference must match exactly one declared secret."""
        names = [s.name for s in self.spec.secrets]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"secrets declared more than once: {', '.join(duplicates)}")

        declared = set(names)
        for field_name, ref in self.spec.notification.secret_refs().items():
            if ref not in declared:
                raise ValueError(
                    f"delivery field {field_name!r} references undeclared secret {ref!r}"
                )
        return self

    @property
    def name(self) -> str:
        """Return the notifier instance name."""
        return self.metadata.name

    @property
    def notification(self) -> NotificationSpec:
        """Shortcut for ``spec.notification``."""
        return self.spec.notification

    @property
    def secrets(self) -> tuple[SecretDeclaration, ...]:
        """Shortcut for ``spec.secrets``."""
        return self.spec.secrets


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"]) or "(document)"
        lines.append(f"{location}: {item['msg']}")
    return "; ".join(lines)


def parse_notifier_config(data: Any) -> NotifierConfig:
    """Validate a decoded notifier configuration document.

    Args:
        data: The decoded YAML/JSON document.

    Returns:
        The validated NotifierConfig.

    Raises:
        ConfigurationError: If the document is not a valid configuration.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("notifier configuration must be a mapping")
    try:
        return NotifierConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"invalid notifier configuration: {_format_validation_error(e)}"
        ) from e


def load_notifier_config(path: str | Path) -> NotifierConfig:
    """Load and validate a notifier configuration file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        The validated NotifierConfig.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid YAML or
            does not describe a valid notifier.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"failed to read notifier config {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"notifier config {path} is not valid YAML: {e}") from e

    return parse_notifier_config(data)


# ============================================================================
# Engine settings
# ============================================================================


class RedisSettings(BaseSettings):
    """Redis Streams event source settings."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    stream: str = Field(
        default="builds",
        alias="REDIS_STREAM",
        description="Stream that build events are published to",
    )
    consumer_group: str = Field(
        default="build-notifiers",
        alias="REDIS_CONSUMER_GROUP",
        description="Consumer group shared by notifier replicas",
    )
    consumer_name: str = Field(
        default="notifier-1",
        alias="REDIS_CONSUMER_NAME",
        description="Name of this replica within the consumer group",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class RetrySettings(BaseSettings):
    """Retry policy for delivery and startup secret fetches."""

    model_config = SettingsConfigDict(env_prefix="")

    delivery_max_attempts: int = Field(
        default=3,
        alias="DELIVERY_MAX_ATTEMPTS",
        description="Dispatch attempts per build before giving up",
        ge=1,
        le=20,
    )
    delivery_base_delay: float = Field(
        default=1.0,
        alias="DELIVERY_BASE_DELAY",
        description="Initial backoff between dispatch attempts, in seconds",
        ge=0,
    )
    delivery_max_delay: float = Field(
        default=30.0,
        alias="DELIVERY_MAX_DELAY",
        description="Upper bound on backoff between dispatch attempts, in seconds",
        ge=0,
    )
    secret_fetch_max_attempts: int = Field(
        default=1,
        alias="SECRET_FETCH_MAX_ATTEMPTS",
        description="Secret store attempts at startup (1 disables retries)",
        ge=1,
        le=20,
    )


class Settings(BaseSettings):
    """Main engine settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from build_notifiers.config import get_settings

        settings = get_settings()
        print(settings.notifier_type)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    redis: RedisSettings = Field(default_factory=RedisSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    notifier_type: Literal["slack", "http"] = Field(
        default="slack",
        alias="NOTIFIER_TYPE",
        description="Delivery channel implementation to run",
    )
    notifier_config_path: Path = Field(
        default=Path("notifier.yaml"),
        alias="NOTIFIER_CONFIG_PATH",
        description="Path to the notifier configuration document",
    )
    event_source: Literal["http", "redis"] = Field(
        default="http",
        alias="EVENT_SOURCE",
        description="Where build events come from: HTTP push or a Redis Stream",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    http_port: int = Field(
        default=8080,
        alias="HTTP_PORT",
        description="HTTP port for push delivery, health and metrics endpoints",
        ge=1,
        le=65535,
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log rendered notifications instead of sending them",
    )
    dispatch_timeout: float = Field(
        default=10.0,
        alias="DISPATCH_TIMEOUT",
        description="Deadline for a single dispatch attempt, in seconds",
        gt=0,
    )
    secret_fetch_timeout: float = Field(
        default=10.0,
        alias="SECRET_FETCH_TIMEOUT",
        description="Deadline for a single secret store call, in seconds",
        gt=0,
    )
    max_concurrency: int = Field(
        default=4,
        alias="MAX_CONCURRENCY",
        description="Builds handled concurrently",
        ge=1,
        le=256,
    )
    dedup_window_seconds: int = Field(
        default=0,
        alias="DEDUP_WINDOW_SECONDS",
        description="Suppress repeat notifications for the same build/status (0 disables)",
        ge=0,
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "notifier_type": self.notifier_type,
            "notifier_config_path": str(self.notifier_config_path),
            "event_source": self.event_source,
            "redis": {
                "url": self._redact_url(self.redis.url),
                "stream": self.redis.stream,
                "consumer_group": self.redis.consumer_group,
                "consumer_name": self.redis.consumer_name,
            },
            "delivery_max_attempts": str(self.retry.delivery_max_attempts),
            "log_level": self.log_level,
            "http_port": str(self.http_port),
            "dry_run": str(self.dry_run),
            "max_concurrency": str(self.max_concurrency),
            "dedup_window_seconds": str(self.dedup_window_seconds),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the settings singleton.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
