"""
HTTP cache header presets for cached responses.
"""

from typing import Dict, Optional

from fastapi import Response


CACHE_HEADERS: Dict[str, Dict[str, str]] = {
    "short": {
        "Cache-Control": "public, max-age=30, s-maxage=30",
        "Vary": "Authorization",
    },
    "medium": {
        "Cache-Control": "public, max-age=300, s-maxage=300",
        "Vary": "Authorization",
    },
    "long": {
        "Cache-Control": "public, max-age=3600, s-maxage=3600",
        "Vary": "Authorization",
    },
    "none": {
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
    },
}


def apply_cache_headers(response: Response, preset: str, status: Optional[str] = None) -> Response:
    """Copy a header preset onto ``response`` and expose the cache status."""
    try:
        headers = CACHE_HEADERS[preset]
    except KeyError:
        raise ValueError(f"Unknown cache header preset: {preset}") from None

    for name, value in headers.items():
        response.headers[name] = value
    if status:
        response.headers["X-Cache"] = status
    return response
