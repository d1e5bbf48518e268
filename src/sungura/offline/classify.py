"""
Request classification for the offline controller.

Decides whether a request may be served from or written to the cache, and
what kind of resource (destination) it is asking for.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import PurePosixPath

import httpx

# Paths that are never cached: API calls, dev-server/build artifacts,
# source maps and screenshot assets.
EXCLUDED_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^/api(/|$)"),
    re.compile(r"^/_next/webpack-hmr"),
    re.compile(r"^/_next/static/development/"),
    re.compile(r"\.hot-update\.(js|json)$"),
    re.compile(r"\.map$"),
    re.compile(r"(^|/)screenshots/"),
)

SAFE_METHODS = frozenset({"GET"})


class Cacheability(str, Enum):
    """Result of classifying a request."""

    CACHEABLE = "cacheable"
    NOT_CACHEABLE = "not_cacheable"


class Destination(str, Enum):
    """What a request is fetching, using the Fetch standard's destination names."""

    DOCUMENT = "document"
    IMAGE = "image"
    SCRIPT = "script"
    STYLE = "style"
    FONT = "font"
    MANIFEST = "manifest"
    OTHER = "other"


_EXTENSION_DESTINATIONS: dict[str, Destination] = {
    ".html": Destination.DOCUMENT,
    ".htm": Destination.DOCUMENT,
    ".png": Destination.IMAGE,
    ".jpg": Destination.IMAGE,
    ".jpeg": Destination.IMAGE,
    ".gif": Destination.IMAGE,
    ".webp": Destination.IMAGE,
    ".svg": Destination.IMAGE,
    ".ico": Destination.IMAGE,
    ".avif": Destination.IMAGE,
    ".js": Destination.SCRIPT,
    ".mjs": Destination.SCRIPT,
    ".css": Destination.STYLE,
    ".woff": Destination.FONT,
    ".woff2": Destination.FONT,
    ".ttf": Destination.FONT,
    ".otf": Destination.FONT,
    ".webmanifest": Destination.MANIFEST,
}


def classify_request(
    request: httpx.Request,
    extra_exclusions: tuple[re.Pattern[str], ...] = (),
) -> Cacheability:
    """Classify a request as cacheable or not.

    A request is cacheable when its method is GET and its path matches none
    of the exclusion patterns. Pure predicate, no side effects.

    Args:
        request: The outgoing request.
        extra_exclusions: Additional path patterns to exclude.

    Returns:
        Cacheability verdict.
    """
    if request.method.upper() not in SAFE_METHODS:
        return Cacheability.NOT_CACHEABLE

    path = request.url.path
    for pattern in EXCLUDED_PATH_PATTERNS + extra_exclusions:
        if pattern.search(path):
            return Cacheability.NOT_CACHEABLE

    return Cacheability.CACHEABLE


def is_cacheable(request: httpx.Request) -> bool:
    """Shorthand for classify_request(...) == CACHEABLE."""
    return classify_request(request) is Cacheability.CACHEABLE


def request_destination(request: httpx.Request) -> Destination:
    """Work out the destination of a request.

    Uses, in order: an explicit ``Sec-Fetch-Dest`` header, the path
    extension, then the ``Accept`` header. Extensionless paths that accept
    HTML are navigations.
    """
    explicit = request.headers.get("sec-fetch-dest", "").lower()
    if explicit:
        try:
            return Destination(explicit)
        except ValueError:
            return Destination.OTHER

    path = request.url.path
    if path.endswith("manifest.json"):
        return Destination.MANIFEST

    suffix = PurePosixPath(path).suffix.lower()
    if suffix in _EXTENSION_DESTINATIONS:
        return _EXTENSION_DESTINATIONS[suffix]

    accept = request.headers.get("accept", "").lower()
    if "text/html" in accept:
        return Destination.DOCUMENT
    if accept.startswith("image/"):
        return Destination.IMAGE
    if not suffix and not accept:
        return Destination.DOCUMENT

    return Destination.OTHER
