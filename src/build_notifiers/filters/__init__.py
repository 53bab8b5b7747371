"""Filter expressions - decide which builds are worth a notification."""

from build_notifiers.filters.predicate import (
    BUILD_FIELDS,
    EventFilter,
    ValueType,
    make_predicate,
)

__all__ = [
    "BUILD_FIELDS",
    "EventFilter",
    "ValueType",
    "make_predicate",
]
