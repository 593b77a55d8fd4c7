from __future__ import annotations

from typing import Dict, Iterable, Tuple
from urllib.parse import urlparse

import azure.functions as func

ALLOWED_HEADERS = "authorization, x-client-info, content-type, apikey, x-requested-with"
ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
PREFLIGHT_MAX_AGE_SECONDS = 86400


def _split_origin(value: str, *, default_scheme: str | None = None) -> Tuple[str | None, str | None, int | None]:
    text = str(value or "").strip()
    if not text:
        return None, None, None

    candidate = text.rstrip("/")
    has_scheme = "://" in candidate
    if not has_scheme and default_scheme:
        candidate = f"{default_scheme}://{candidate}"

    parsed = urlparse(candidate)
    scheme = (parsed.scheme or "").lower()
    host = (parsed.hostname or "").lower()
    if not host:
        return None, None, None

    try:
        port = parsed.port
    except ValueError:
        return None, None, None

    return (scheme if has_scheme else None), host, port


def _normalized_port(scheme: str | None, port: int | None) -> int | None:
    if port is not None:
        return port
    if scheme == "https":
        return 443
    if scheme == "http":
        return 80
    return None


def _origin_matches(origin: str | None, allowed_origin: str) -> bool:
    if not origin or not allowed_origin:
        return False

    origin_scheme, origin_host, origin_port = _split_origin(origin, default_scheme="https")
    if not origin_host:
        return False

    allowed_has_scheme = "://" in allowed_origin
    allowed_scheme, allowed_host, allowed_port = _split_origin(
        allowed_origin,
        default_scheme=None if allowed_has_scheme else "https",
    )
    if not allowed_host:
        return False

    if allowed_has_scheme and allowed_scheme and origin_scheme and origin_scheme != allowed_scheme:
        return False
    if allowed_port is not None or allowed_has_scheme:
        if _normalized_port(origin_scheme, origin_port) != _normalized_port(allowed_scheme, allowed_port):
            return False

    if allowed_host.startswith("*."):
        suffix = allowed_host[2:]
        return origin_host == suffix or origin_host.endswith(f".{suffix}")
    return origin_host == allowed_host


def is_allowed_origin(origin: str | None, allowed_origins: Iterable[str]) -> bool:
    if not origin:
        return False
    return any(_origin_matches(origin, allowed) for allowed in allowed_origins)


def build_cors_headers(req: func.HttpRequest, allowed_origins: Iterable[str]) -> Dict[str, str]:
    """
    CORS headers for the integration endpoints.
    Known frontend origins are echoed back; anything else gets "*".
    """
    origin = req.headers.get("origin") or req.headers.get("Origin")
    allow_origin = origin if is_allowed_origin(origin, allowed_origins) else "*"
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Max-Age": str(PREFLIGHT_MAX_AGE_SECONDS),
        "Vary": "Origin",
    }
