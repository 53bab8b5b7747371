"""Tests for the CLI entry point."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from build_notifiers.__main__ import (
    EXIT_CONFIG_ERROR,
    EXIT_SECRET_ERROR,
    EXIT_SUCCESS,
    apply_overrides,
    build_engine,
    check_notifier_config,
    configure_logging,
    create_parser,
    main,
    print_banner,
    run_config_check,
    run_service,
    validate_settings,
)
from build_notifiers.config import clear_settings_cache, load_notifier_config
from build_notifiers.errors import UnknownSecretRefError
from build_notifiers.notifiers import DryRunTransport, HttpxWebhookTransport, HTTPNotifier
from tests.conftest import make_config

VALID_CONFIG = """\
apiVersion: build-notifiers/v1
kind: SlackNotifier
metadata:
  name: cli-test
spec:
  notification:
    filter: build.status == Build.Status.FAILURE
    delivery:
      webhookUrl:
        secretRef: webhook-url
  secrets:
  - name: webhook-url
    value: env:TEST_SLACK_WEBHOOK
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate settings from the developer's environment."""
    for name in ("NOTIFIER_TYPE", "EVENT_SOURCE", "DRY_RUN", "HTTP_PORT", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    clear_settings_cache()


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Write a valid notifier config and point settings at it."""
    path = tmp_path / "notifier.yaml"
    path.write_text(VALID_CONFIG)
    monkeypatch.setenv("NOTIFIER_CONFIG_PATH", str(path))
    return path


class TestCreateParser:
    """Tests for argument parser creation."""

    def test_parser_has_version(self):
        """Parser should have version flag."""
        parser = create_parser()
        with pytest.raises(SystemExit) as exc_info:
            parser.parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_parser_options(self):
        """Parser should accept every override."""
        parser = create_parser()
        args = parser.parse_args(
            [
                "--config-check",
                "--log-level",
                "DEBUG",
                "--dry-run",
                "--http-port",
                "9090",
                "--notifier",
                "http",
                "--source",
                "redis",
                "--config",
                "other.yaml",
            ]
        )
        assert args.config_check is True
        assert args.log_level == "DEBUG"
        assert args.dry_run is True
        assert args.http_port == 9090
        assert args.notifier == "http"
        assert args.source == "redis"
        assert args.config_path == "other.yaml"

    def test_parser_default_values(self):
        """Parser should have correct defaults."""
        args = create_parser().parse_args([])
        assert args.config_check is False
        assert args.log_level is None
        assert args.dry_run is False
        assert args.http_port is None
        assert args.notifier is None
        assert args.config_path is None


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_logging_info(self):
        """Should configure logging at INFO level."""
        configure_logging("INFO")
        assert logging.getLogger().level == logging.INFO

    def test_configure_logging_debug(self):
        """Should configure logging at DEBUG level."""
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING


class TestPrintBanner:
    """Tests for banner printing."""

    def test_banner(self, capsys):
        """Banner should contain name and version."""
        print_banner()
        captured = capsys.readouterr()
        assert "Build Notifiers" in captured.out
        assert "v0.1.0" in captured.out


class TestSettingsHandling:
    """Tests for settings loading and overrides."""

    def test_validate_settings_success(self):
        """Should return settings when the environment is valid."""
        assert validate_settings() is not None

    def test_validate_settings_failure(self, monkeypatch, capsys):
        """Should return None and report errors on invalid settings."""
        monkeypatch.setenv("NOTIFIER_TYPE", "carrier-pigeon")

        assert validate_settings() is None
        assert "Configuration validation failed" in capsys.readouterr().err

    def test_apply_overrides(self):
        """Command line flags should override settings."""
        settings = validate_settings()
        assert settings is not None

        args = create_parser().parse_args(["--dry-run", "--notifier", "http", "--config", "x.yaml"])
        updated = apply_overrides(settings, args)

        assert updated.dry_run is True
        assert updated.notifier_type == "http"
        assert str(updated.notifier_config_path) == "x.yaml"
        assert settings.dry_run is False

    def test_no_overrides(self):
        """Settings should be returned unchanged without flags."""
        settings = validate_settings()
        assert settings is not None
        assert apply_overrides(settings, create_parser().parse_args([])) is settings


class TestConfigCheck:
    """Tests for config check mode."""

    def test_check_notifier_config(self, config_path):
        """Structural checks should list the filter and secret refs."""
        lines = check_notifier_config(load_notifier_config(config_path))

        assert lines[0] == "Filter: build.status == Build.Status.FAILURE"
        assert "webhook-url" in lines[1]

    def test_check_undeclared_secret(self):
        """Structural checks should reject refs without a declaration."""
        config = make_config()
        config = config.model_copy(
            update={"spec": config.spec.model_copy(update={"secrets": ()})}
        )
        with pytest.raises(UnknownSecretRefError):
            check_notifier_config(config)

    def test_config_check_valid(self, config_path, capsys):
        """Config check should print a summary and succeed."""
        settings = validate_settings()
        assert settings is not None

        assert run_config_check(settings) == EXIT_SUCCESS
        captured = capsys.readouterr()
        assert "Settings:" in captured.out
        assert "is valid" in captured.out

    def test_config_check_invalid_filter(self, tmp_path, monkeypatch, capsys):
        """Config check should fail on an uncompilable filter."""
        path = tmp_path / "bad.yaml"
        path.write_text(VALID_CONFIG.replace("build.status", "build.nonexistent_field"))
        monkeypatch.setenv("NOTIFIER_CONFIG_PATH", str(path))
        settings = validate_settings()
        assert settings is not None

        assert run_config_check(settings) == EXIT_CONFIG_ERROR
        assert "nonexistent_field" in capsys.readouterr().err


class TestBuildEngine:
    """Tests for engine assembly."""

    def test_dry_run_transport(self, config_path):
        """Dry runs should use the logging transport."""
        settings = validate_settings()
        assert settings is not None
        settings = settings.model_copy(update={"dry_run": True})

        engine = build_engine(settings, load_notifier_config(config_path))

        assert isinstance(engine.notifier._transport, DryRunTransport)
        assert engine.deduplicator is None

    def test_http_notifier(self, config_path):
        """The notifier type should select the notifier."""
        settings = validate_settings()
        assert settings is not None
        settings = settings.model_copy(update={"notifier_type": "http"})

        engine = build_engine(settings, load_notifier_config(config_path))

        assert isinstance(engine.notifier, HTTPNotifier)
        assert isinstance(engine.notifier._transport, HttpxWebhookTransport)

    def test_deduplicator_needs_redis(self, config_path):
        """A dedup window should only take effect with a Redis client."""
        settings = validate_settings()
        assert settings is not None
        settings = settings.model_copy(update={"dedup_window_seconds": 60})
        config = load_notifier_config(config_path)

        assert build_engine(settings, config).deduplicator is None
        assert build_engine(settings, config, redis=MagicMock()).deduplicator is not None


class TestRunService:
    """Tests for the service runner."""

    async def test_invalid_config(self, tmp_path, monkeypatch):
        """A missing config file should exit with a config error."""
        monkeypatch.setenv("NOTIFIER_CONFIG_PATH", str(tmp_path / "missing.yaml"))
        settings = validate_settings()
        assert settings is not None

        assert await run_service(settings) == EXIT_CONFIG_ERROR

    async def test_missing_secret(self, config_path, monkeypatch):
        """A secret that cannot be fetched should exit with a secret error."""
        monkeypatch.delenv("TEST_SLACK_WEBHOOK", raising=False)
        settings = validate_settings()
        assert settings is not None

        assert await run_service(settings) == EXIT_SECRET_ERROR

    async def test_serves_until_shutdown(self, config_path, monkeypatch):
        """The service should start the server and stop on shutdown."""
        monkeypatch.setenv("TEST_SLACK_WEBHOOK", "https://hooks.test/x")
        settings = validate_settings()
        assert settings is not None

        with (
            patch("build_notifiers.__main__.NotifierServer") as server_class,
            patch("build_notifiers.__main__.GracefulShutdown.wait", new=AsyncMock()),
        ):
            server = server_class.return_value
            server.start = AsyncMock()
            server.stop = AsyncMock()

            assert await run_service(settings) == EXIT_SUCCESS

        server.start.assert_awaited_once_with(settings.http_port)
        server.stop.assert_awaited_once()


class TestMain:
    """Tests for main entry point."""

    def test_main_with_config_check(self, config_path):
        """Main should exit successfully with --config-check."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--config-check"])

        assert exc_info.value.code == EXIT_SUCCESS

    def test_main_with_invalid_settings(self, monkeypatch):
        """Main should exit with config error on invalid settings."""
        monkeypatch.setenv("EVENT_SOURCE", "carrier-pigeon")

        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == EXIT_CONFIG_ERROR

    @patch("build_notifiers.__main__.run_service")
    @patch("build_notifiers.__main__.asyncio.run")
    def test_main_runs_service(self, mock_asyncio_run, _mock_run_service):
        """Main should run the service when not in config-check mode."""
        mock_asyncio_run.return_value = EXIT_SUCCESS

        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == EXIT_SUCCESS
        mock_asyncio_run.assert_called_once()


class TestIntegration:
    """Integration tests for CLI invocation."""

    def test_cli_help_option(self, capsys):
        """CLI should display help with -h option."""
        with pytest.raises(SystemExit) as exc_info:
            main(["-h"])

        assert exc_info.value.code == 0
        captured = capsys.readouterr()
        assert "build-notifiers" in captured.out
        assert "--config-check" in captured.out
        assert "--dry-run" in captured.out

    def test_cli_version_option(self, capsys):
        """CLI should display version with --version option."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "0.1.0" in capsys.readouterr().out

    def test_cli_invalid_notifier(self, capsys):
        """CLI should reject unknown notifiers."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--notifier", "pager"])

        assert exc_info.value.code != 0
        assert "invalid choice" in capsys.readouterr().err
