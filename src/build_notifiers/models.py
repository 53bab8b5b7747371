"""Data models for build events."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)


class BuildStatus(Enum):
    """Lifecycle status of a build."""

    STATUS_UNKNOWN = "STATUS_UNKNOWN"
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    WORKING = "WORKING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    @classmethod
    def parse(cls, value: Any) -> BuildStatus:
        """Parse a status name or numeric status code.

        Unrecognised values map to STATUS_UNKNOWN instead of raising, so a
        build system that grows a new status still produces notifications.
        """
        if isinstance(value, BuildStatus):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            status = _STATUS_CODES.get(value)
        elif isinstance(value, str):
            name = value.strip().upper()
            status = cls.__members__.get(name)
            if status is None and name.isdigit():
                status = _STATUS_CODES.get(int(name))
        else:
            status = None

        if status is None:
            logger.warning("Unrecognised build status %r, treating as STATUS_UNKNOWN", value)
            return cls.STATUS_UNKNOWN
        return status


# Numeric codes used by the build system's wire format
_STATUS_CODES: dict[int, BuildStatus] = {
    0: BuildStatus.STATUS_UNKNOWN,
    10: BuildStatus.PENDING,
    1: BuildStatus.QUEUED,
    2: BuildStatus.WORKING,
    3: BuildStatus.SUCCESS,
    4: BuildStatus.FAILURE,
    5: BuildStatus.INTERNAL_ERROR,
    6: BuildStatus.TIMEOUT,
    7: BuildStatus.CANCELLED,
    9: BuildStatus.EXPIRED,
}


class Substitutions(Mapping[str, str]):
    """Immutable substitution variables of a build.

    Looking up an absent key returns an empty string rather than raising;
    use ``in`` to tell absent keys from keys set to ``""``.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        items = {str(k): "" if v is None else str(v) for k, v in (data or {}).items()}
        self._data: Mapping[str, str] = MappingProxyType(items)

    def __getitem__(self, key: str) -> str:
        return self._data.get(key, "")

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Substitutions):
            return dict(self._data) == dict(other._data)
        if isinstance(other, Mapping):
            return dict(self._data) == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._data.items()))

    def __repr__(self) -> str:
        return f"Substitutions({dict(self._data)!r})"


def _parse_time(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning None when absent or malformed."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring malformed timestamp %r", value)
        return None


@dataclass(frozen=True)
class Build:
    """Immutable snapshot of a build at notification time.

    Attributes:
        id: Build identifier.
        status: Current build status.
        substitutions: Substitution variables (branch, commit, trigger, ...).
        log_url: URL of the build log / result page.
        project_id: Project that owns the build.
        build_trigger_id: Trigger that started the build, if any.
        tags: Tags attached to the build.
        create_time: When the build was created.
        finish_time: When the build finished, if it has.
    """

    id: str
    status: BuildStatus
    substitutions: Substitutions = field(default_factory=Substitutions)
    log_url: str = ""
    project_id: str = ""
    build_trigger_id: str = ""
    tags: tuple[str, ...] = ()
    create_time: datetime | None = None
    finish_time: datetime | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Build:
        """Create a Build from the build system's JSON representation.

        Both camelCase (wire) and snake_case keys are accepted.

        Args:
            data: Decoded build JSON.

        Returns:
            Build instance.

        Raises:
            ValueError: If the build has no identifier or malformed
                substitutions or tags.
        """

        def pick(camel: str, snake: str) -> Any:
            return data.get(camel, data.get(snake))

        build_id = data.get("id")
        if not build_id:
            raise ValueError("build has no id")

        subs = data.get("substitutions") or {}
        if not isinstance(subs, Mapping):
            raise ValueError("build substitutions must be an object")

        tags = data.get("tags") or ()
        if isinstance(tags, str):
            tags = (tags,)
        elif not isinstance(tags, (list, tuple)):
            raise ValueError("build tags must be a list")

        return cls(
            id=str(build_id),
            status=BuildStatus.parse(data.get("status")),
            substitutions=Substitutions(subs),
            log_url=str(pick("logUrl", "log_url") or ""),
            project_id=str(pick("projectId", "project_id") or ""),
            build_trigger_id=str(pick("buildTriggerId", "build_trigger_id") or ""),
            tags=tuple(str(t) for t in tags),
            create_time=_parse_time(pick("createTime", "create_time")),
            finish_time=_parse_time(pick("finishTime", "finish_time")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON representation."""
        data: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "status": self.status.value,
            "substitutions": dict(self.substitutions),
            "logUrl": self.log_url,
            "buildTriggerId": self.build_trigger_id,
            "tags": list(self.tags),
        }
        if self.create_time is not None:
            data["createTime"] = self.create_time.isoformat()
        if self.finish_time is not None:
            data["finishTime"] = self.finish_time.isoformat()
        return data
