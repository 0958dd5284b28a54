from typing import NamedTuple
from urllib.parse import urlsplit, urlunsplit


class UrlParts(NamedTuple):
    scheme: str
    host: str
    location: str


def split_url(url: str) -> UrlParts:
    """Split a warm-up URL into scheme, host (with port) and path plus query."""
    parts = urlsplit(url.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Not an absolute http(s) URL: {url!r}")

    location = parts.path or "/"
    if parts.query:
        location = f"{location}?{parts.query}"

    return UrlParts(parts.scheme.lower(), parts.netloc.lower(), location)


def build_url(scheme: str, host: str, path: str) -> str:
    return f"{scheme}://{host}/{path.lstrip('/')}"


def rewrite_to_gateway(url: str, gateway: str) -> str:
    """Point ``url`` at ``gateway`` (e.g. a cache node), keeping path and query."""
    original = urlsplit(url)
    target = urlsplit(gateway)
    return urlunsplit((target.scheme, target.netloc, original.path or "/", original.query, ""))
