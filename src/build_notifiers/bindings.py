"""Template bindings resolved from build data.

Notification params may embed ``$(...)`` references that are filled in from
the build being notified about:

    $(build.id)  $(build.project_id)  $(build.status)
    $(build.build_trigger_id)  $(build.log_url)
    $(build.substitutions.BRANCH_NAME)
    $(_CUSTOM_SUBSTITUTION) / $(BRANCH_NAME)   shorthand for a substitution

References are checked by validate() at set-up; resolve() never fails.
Absent substitutions resolve to an empty string.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Protocol

from build_notifiers.errors import ConfigurationError
from build_notifiers.models import Build

_REFERENCE = re.compile(r"\$\(([^()]*)\)")
_SUBSTITUTION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SUBSTITUTIONS_PREFIX = "build.substitutions."

_BUILD_VALUES: dict[str, Callable[[Build], str]] = {
    "build.id": lambda b: b.id,
    "build.project_id": lambda b: b.project_id,
    "build.status": lambda b: b.status.value,
    "build.build_trigger_id": lambda b: b.build_trigger_id,
    "build.log_url": lambda b: b.log_url,
}


class BindingResolver(Protocol):
    """Protocol for resolving notification params against a build."""

    def validate(self, params: Mapping[str, str]) -> None:
        """Check every reference in params.

        Raises:
            ConfigurationError: If a param references something unknown.
        """
        ...

    def resolve(self, params: Mapping[str, str], build: Build) -> dict[str, str]:
        """Return params with every reference replaced by its value."""
        ...


def _substitution_key(reference: str) -> str | None:
    if reference.startswith(_SUBSTITUTIONS_PREFIX):
        key = reference[len(_SUBSTITUTIONS_PREFIX) :]
    else:
        key = reference
    return key if _SUBSTITUTION_NAME.match(key) else None


def _lookup(reference: str, build: Build) -> str:
    reference = reference.strip()
    getter = _BUILD_VALUES.get(reference)
    if getter is not None:
        return getter(build)
    key = _substitution_key(reference)
    return build.substitutions[key] if key is not None else ""


class DefaultBindingResolver:
    """Resolves ``$(...)`` references from build fields and substitutions."""

    def validate(self, params: Mapping[str, str]) -> None:
        for name, template in params.items():
            for match in _REFERENCE.finditer(template):
                reference = match.group(1).strip()
                if reference in _BUILD_VALUES:
                    continue
                if reference.startswith("build.") and not reference.startswith(
                    _SUBSTITUTIONS_PREFIX
                ):
                    raise ConfigurationError(
                        f"param {name!r} references unknown build field {reference!r}"
                    )
                if _substitution_key(reference) is None:
                    raise ConfigurationError(
                        f"param {name!r} has invalid reference $({match.group(1)})"
                    )

    def resolve(self, params: Mapping[str, str], build: Build) -> dict[str, str]:
        return {
            name: _REFERENCE.sub(lambda m: _lookup(m.group(1), build), template)
            for name, template in params.items()
        }
