"""CLI entry point for build notifiers.

Usage:
    python -m build_notifiers [options]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError
from redis.asyncio import Redis

from build_notifiers import __version__
from build_notifiers.config import (
    NotifierConfig,
    Settings,
    clear_settings_cache,
    get_settings,
    load_notifier_config,
)
from build_notifiers.dedup import RedisDeduplicator
from build_notifiers.engine import NotificationEngine, RetryPolicy
from build_notifiers.errors import ConfigurationError, SecretAccessError
from build_notifiers.filters import make_predicate
from build_notifiers.notifiers import (
    NOTIFIERS,
    DryRunTransport,
    HttpxWebhookTransport,
    create_notifier,
)
from build_notifiers.secrets import EnvironmentSecretGetter, find_secret_resource_name
from build_notifiers.server import NotifierServer
from build_notifiers.shutdown import GracefulShutdown
from build_notifiers.sources.redis_stream import RedisStreamSource

APP_NAME = "Build Notifiers"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_SECRET_ERROR = 3
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="build-notifiers",
        description="Notify external channels about build lifecycle events.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m build_notifiers                        Serve push deliveries on HTTP_PORT
  python -m build_notifiers --source redis         Consume a Redis Stream
  python -m build_notifiers --config-check         Validate config and exit
  python -m build_notifiers --dry-run              Log notifications instead of sending
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )
    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate settings and notifier config, then exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log rendered notifications instead of sending them",
    )
    parser.add_argument(
        "--http-port",
        type=int,
        default=None,
        help="Override HTTP port (default: from settings)",
    )
    parser.add_argument(
        "--notifier",
        choices=sorted(NOTIFIERS),
        default=None,
        help="Override notifier type (default: from settings)",
    )
    parser.add_argument(
        "--source",
        choices=["http", "redis"],
        default=None,
        help="Override event source (default: from settings)",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Override notifier config path (default: from settings)",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure logging for the process.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "aiohttp.access": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_banner() -> None:
    """Print the application startup banner."""
    print(f"{APP_NAME} v{APP_VERSION}")
    print()


def validate_settings() -> Settings | None:
    """Load engine settings, reporting validation errors.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"  {field}: {error['msg']}", file=sys.stderr)
        return None


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return settings with command line overrides applied."""
    updates: dict[str, object] = {}
    if args.log_level:
        updates["log_level"] = args.log_level
    if args.dry_run:
        updates["dry_run"] = True
    if args.http_port is not None:
        updates["http_port"] = args.http_port
    if args.notifier:
        updates["notifier_type"] = args.notifier
    if args.source:
        updates["event_source"] = args.source
    if args.config_path:
        updates["notifier_config_path"] = Path(args.config_path)
    return settings.model_copy(update=updates) if updates else settings


def check_notifier_config(config: NotifierConfig) -> list[str]:
    """Check a notifier config without contacting any secret store.

    Returns:
        Human readable check results.

    Raises:
        ConfigurationError: If the filter or a secret reference is invalid.
    """
    make_predicate(config.notification.filter)
    lines = [f"Filter: {config.notification.filter}"]
    for field_name, ref in sorted(config.notification.secret_refs().items()):
        find_secret_resource_name(config.secrets, ref)
        lines.append(f"Delivery field {field_name!r}: secret {ref!r}")
    return lines


def run_config_check(settings: Settings) -> int:
    """Validate the notifier config and print a summary.

    Returns:
        Exit code.
    """
    summary = settings.redacted_summary()
    print("Settings:")
    for key, value in summary.items():
        print(f"  {key}: {value}")
    print()

    try:
        config = load_notifier_config(settings.notifier_config_path)
        lines = check_notifier_config(config)
    except ConfigurationError as e:
        print(f"Notifier config is invalid: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    print(f"Notifier config {settings.notifier_config_path} is valid:")
    for line in lines:
        print(f"  {line}")
    return EXIT_SUCCESS


def build_engine(
    settings: Settings,
    config: NotifierConfig,
    *,
    redis: Redis | None = None,
) -> NotificationEngine:
    """Assemble the engine described by settings."""
    if settings.dry_run:
        transport = DryRunTransport()
    else:
        transport = HttpxWebhookTransport(timeout=settings.dispatch_timeout)

    deduplicator = None
    if settings.dedup_window_seconds > 0 and redis is not None:
        deduplicator = RedisDeduplicator(redis, window_seconds=settings.dedup_window_seconds)

    return NotificationEngine(
        create_notifier(settings.notifier_type, transport),
        config,
        EnvironmentSecretGetter(),
        retry_policy=RetryPolicy(
            max_attempts=settings.retry.delivery_max_attempts,
            base_delay=settings.retry.delivery_base_delay,
            max_delay=settings.retry.delivery_max_delay,
        ),
        secret_fetch_attempts=settings.retry.secret_fetch_max_attempts,
        secret_fetch_timeout=settings.secret_fetch_timeout,
        dispatch_timeout=settings.dispatch_timeout,
        max_concurrency=settings.max_concurrency,
        deduplicator=deduplicator,
    )


async def run_service(settings: Settings) -> int:
    """Set up the notifier and serve until a shutdown signal arrives.

    Returns:
        Exit code.
    """
    try:
        config = load_notifier_config(settings.notifier_config_path)
    except ConfigurationError as e:
        logger.error("Invalid notifier config: %s", e)
        return EXIT_CONFIG_ERROR

    redis: Redis | None = None
    if settings.event_source == "redis" or settings.dedup_window_seconds > 0:
        redis = Redis.from_url(settings.redis.url)

    engine = build_engine(settings, config, redis=redis)
    server = NotifierServer(engine)

    try:
        async with GracefulShutdown() as shutdown:
            if redis is not None:
                shutdown.register_cleanup(redis.aclose)
            shutdown.register_cleanup(engine.close)

            try:
                await engine.set_up()
            except ConfigurationError as e:
                logger.error("Notifier configuration error: %s", e)
                return EXIT_CONFIG_ERROR
            except SecretAccessError as e:
                logger.error("Could not fetch notifier credentials: %s", e)
                return EXIT_SECRET_ERROR

            await server.start(settings.http_port)
            shutdown.register_cleanup(server.stop)

            run_task: asyncio.Task[None] | None = None
            if settings.event_source == "redis" and redis is not None:
                source = RedisStreamSource(
                    redis,
                    settings.redis.stream,
                    settings.redis.consumer_group,
                    settings.redis.consumer_name,
                )
                await source.start()
                run_task = asyncio.create_task(engine.run(source))
                run_task.add_done_callback(lambda _task: shutdown.request_shutdown())

            logger.info("Notifier running. Press Ctrl+C to stop.")
            await shutdown.wait()

            engine.stop()
            if run_task is not None:
                await run_task

        return EXIT_SUCCESS
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Notifier failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = validate_settings()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)
    settings = apply_overrides(settings, args)

    configure_logging(settings.log_level)
    print_banner()

    if args.config_check:
        sys.exit(run_config_check(settings))

    sys.exit(asyncio.run(run_service(settings)))


if __name__ == "__main__":
    main()
