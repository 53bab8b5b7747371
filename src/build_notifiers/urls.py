"""Tracking parameter annotation for outbound links."""

from __future__ import annotations

from enum import Enum

import httpx

from build_notifiers.errors import URLAnnotationError

UTM_CAMPAIGN = "build-notifiers"
UTM_SOURCE = "build-notifiers"


class UTMMedium(Enum):
    """Medium a link is delivered through."""

    EMAIL = "email"
    CHAT = "chat"
    HTTP = "http"
    OTHER = "other"


def add_utm_params(url: str, medium: UTMMedium) -> str:
    """Add UTM tracking parameters to a URL.

    Existing query parameters are kept; existing UTM parameters are replaced.

    Args:
        url: Absolute http(s) URL to annotate.
        medium: Medium the link is delivered through.

    Returns:
        The annotated URL.

    Raises:
        URLAnnotationError: If the URL is not an absolute http(s) URL or the
            medium is not a UTMMedium.
    """
    if not isinstance(medium, UTMMedium):
        raise URLAnnotationError(f"unknown UTM medium {medium!r}")
    if not url:
        raise URLAnnotationError("cannot annotate an empty URL")

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise URLAnnotationError(f"failed to parse URL {url!r}: {e}") from e

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise URLAnnotationError(f"URL {url!r} is not an absolute http(s) URL")

    annotated = parsed.copy_merge_params(
        {
            "utm_campaign": UTM_CAMPAIGN,
            "utm_medium": medium.value,
            "utm_source": UTM_SOURCE,
        }
    )
    return str(annotated)
