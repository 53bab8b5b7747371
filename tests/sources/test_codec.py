"""Tests for build event encoding."""

import base64
import json

import pytest

from build_notifiers.models import BuildStatus
from build_notifiers.sources.codec import (
    EventDecodeError,
    decode_build,
    decode_push_envelope,
    encode_build,
    encode_push_envelope,
)
from tests.conftest import make_build


class TestDecodeBuild:
    """Tests for decode_build."""

    def test_decode(self) -> None:
        """Test decoding a build JSON document."""
        build = decode_build(
            json.dumps(
                {
                    "id": "b1",
                    "status": "FAILURE",
                    "substitutions": {"BRANCH_NAME": "main"},
                    "logUrl": "https://ci.example.com/b1",
                }
            )
        )

        assert build.id == "b1"
        assert build.status is BuildStatus.FAILURE
        assert build.substitutions["BRANCH_NAME"] == "main"

    def test_encode_is_stable(self) -> None:
        """Test encoding sorts keys."""
        encoded = encode_build(make_build())
        assert json.loads(encoded)["id"] == "build-123"
        assert encoded == encode_build(make_build())

    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            ("{not json", "not valid JSON"),
            (b"\xff\xfe", "not valid JSON"),
            ("[1, 2]", "JSON object"),
            ('{"status": "SUCCESS"}', "no id"),
            ('{"id": "b1", "status": "SUCCESS", "tags": 5}', "tags must be a list"),
            ('{"id": "b1", "status": "SUCCESS", "tags": {"a": 1}}', "tags must be a list"),
        ],
    )
    def test_invalid(self, payload: str | bytes, message: str) -> None:
        """Test malformed payloads raise EventDecodeError."""
        with pytest.raises(EventDecodeError, match=message):
            decode_build(payload)


class TestPushEnvelope:
    """Tests for push envelopes."""

    def test_round_trip(self) -> None:
        """Test an encoded envelope decodes to the same build."""
        build = make_build()
        message_id, decoded = decode_push_envelope(encode_push_envelope(build, "m-1"))

        assert message_id == "m-1"
        assert decoded == build

    def test_missing_message_id(self) -> None:
        """Test the message id is optional."""
        data = base64.b64encode(b'{"id": "b1", "status": "SUCCESS"}').decode()
        message_id, build = decode_push_envelope({"message": {"data": data}})

        assert message_id == ""
        assert build.id == "b1"

    @pytest.mark.parametrize(
        ("body", "message"),
        [
            ([], "JSON object"),
            ({}, "no message"),
            ({"message": {}}, "no data"),
            ({"message": {"data": "***"}}, "not base64"),
            ({"message": {"data": base64.b64encode(b"[]").decode()}}, "JSON object"),
        ],
    )
    def test_invalid(self, body: object, message: str) -> None:
        """Test malformed envelopes raise EventDecodeError."""
        with pytest.raises(EventDecodeError, match=message):
            decode_push_envelope(body)
