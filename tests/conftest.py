"""Shared fixtures for notifier tests."""

from __future__ import annotations

from typing import Any

import pytest

from build_notifiers.config import NotifierConfig, parse_notifier_config
from build_notifiers.models import Build, BuildStatus, Substitutions
from build_notifiers.secrets import StaticSecretGetter

WEBHOOK_URL = "https://hooks.slack.test/services/T000/B000/XXXX"
WEBHOOK_LOCATOR = "projects/p/secrets/slack-webhook/versions/latest"


def make_build(
    status: BuildStatus = BuildStatus.SUCCESS,
    build_id: str = "build-123",
    substitutions: dict[str, str] | None = None,
    **kwargs: Any,
) -> Build:
    """Create a build with realistic defaults."""
    if substitutions is None:
        substitutions = {
            "BRANCH_NAME": "main",
            "COMMIT_SHA": "abc123",
            "TRIGGER_NAME": "ci-trigger",
        }
    kwargs.setdefault("log_url", "https://ci.example.com/builds/build-123")
    kwargs.setdefault("project_id", "my-project")
    kwargs.setdefault("build_trigger_id", "trigger-1")
    return Build(
        id=build_id,
        status=status,
        substitutions=Substitutions(substitutions),
        **kwargs,
    )


def make_config(
    filter_expr: str = "build.status == Build.Status.SUCCESS",
    delivery: dict[str, Any] | None = None,
    secrets: list[dict[str, str]] | None = None,
    params: dict[str, str] | None = None,
    kind: str = "SlackNotifier",
) -> NotifierConfig:
    """Create a validated notifier config."""
    if delivery is None:
        delivery = {"webhookUrl": {"secretRef": "webhook-url"}}
    if secrets is None:
        secrets = [{"name": "webhook-url", "value": WEBHOOK_LOCATOR}]
    return parse_notifier_config(
        {
            "apiVersion": "build-notifiers/v1",
            "kind": kind,
            "metadata": {"name": "test-notifier"},
            "spec": {
                "notification": {
                    "filter": filter_expr,
                    "delivery": delivery,
                    "params": params or {},
                },
                "secrets": secrets,
            },
        }
    )


@pytest.fixture
def success_build() -> Build:
    """Create a successful build on main."""
    return make_build()


@pytest.fixture
def slack_config() -> NotifierConfig:
    """Create a Slack config notifying on success."""
    return make_config()


@pytest.fixture
def secret_getter() -> StaticSecretGetter:
    """Create a secret store holding the webhook URL."""
    return StaticSecretGetter({WEBHOOK_LOCATOR: WEBHOOK_URL})
