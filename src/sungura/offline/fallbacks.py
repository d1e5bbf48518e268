"""
Synthesized responses used when neither network nor cache can answer.
"""

from __future__ import annotations

import base64

import httpx

OFFLINE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Offline - {title}</title>
  <style>
    body {{ font-family: system-ui, sans-serif; display: flex; align-items: center;
           justify-content: center; min-height: 100vh; margin: 0; background: #f9fafb; }}
    main {{ text-align: center; padding: 2rem; }}
  </style>
</head>
<body>
  <main>
    <h1>You're currently offline</h1>
    <p>{title} will reload your farm records once you are back online.</p>
    <button onclick="window.location.reload()">Try again</button>
  </main>
</body>
</html>
"""

# 1x1 transparent GIF89a (global palette of two colours, index 0 transparent)
TRANSPARENT_GIF: bytes = base64.b64decode(
    "R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"
)


def offline_page_response(request: httpx.Request, title: str = "Sungura Master") -> httpx.Response:
    """Minimal offline document, always status 200."""
    return httpx.Response(
        status_code=200,
        headers={"content-type": "text/html; charset=utf-8", "cache-control": "no-store"},
        content=OFFLINE_HTML.format(title=title).encode("utf-8"),
        request=request,
    )


def placeholder_image_response(request: httpx.Request) -> httpx.Response:
    """Transparent 1x1 GIF standing in for an unreachable image."""
    return httpx.Response(
        status_code=200,
        headers={"content-type": "image/gif", "cache-control": "no-store"},
        content=TRANSPARENT_GIF,
        request=request,
    )


def empty_response(request: httpx.Request) -> httpx.Response:
    """Empty 204 standing in for any other unreachable asset."""
    return httpx.Response(status_code=204, request=request)
