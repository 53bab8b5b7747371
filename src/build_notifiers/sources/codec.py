"""Encoding of build events on the wire."""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any

from build_notifiers.models import Build


class EventDecodeError(ValueError):
    """Raised when a payload does not contain a valid build event."""


def encode_build(build: Build) -> str:
    """Serialize a build to JSON."""
    return json.dumps(build.to_dict(), sort_keys=True)


def decode_build(data: bytes | str) -> Build:
    """Deserialize a build from JSON.

    Raises:
        EventDecodeError: If the payload is not a JSON build object.
    """
    try:
        decoded: Any = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EventDecodeError(f"build payload is not valid JSON: {e}") from e

    if not isinstance(decoded, dict):
        raise EventDecodeError("build payload must be a JSON object")

    try:
        return Build.from_dict(decoded)
    except (ValueError, TypeError) as e:
        raise EventDecodeError(f"invalid build payload: {e}") from e


def decode_push_envelope(body: Any) -> tuple[str, Build]:
    """Decode a push subscription envelope.

    The envelope looks like ``{"message": {"data": <base64 build JSON>,
    "messageId": "..."}}``.

    Returns:
        The message id (empty if absent) and the decoded build.

    Raises:
        EventDecodeError: If the envelope or its build payload is malformed.
    """
    if not isinstance(body, Mapping):
        raise EventDecodeError("push envelope must be a JSON object")

    message = body.get("message")
    if not isinstance(message, Mapping):
        raise EventDecodeError("push envelope has no message")

    data = message.get("data")
    if not isinstance(data, str) or not data:
        raise EventDecodeError("push message has no data")

    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EventDecodeError(f"push message data is not base64: {e}") from e

    message_id = message.get("messageId", message.get("message_id", ""))
    return str(message_id or ""), decode_build(raw)


def encode_push_envelope(build: Build, message_id: str = "") -> dict[str, Any]:
    """Wrap a build in a push subscription envelope."""
    data = base64.b64encode(encode_build(build).encode()).decode()
    return {"message": {"data": data, "messageId": message_id}}
