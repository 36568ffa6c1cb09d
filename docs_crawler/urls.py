"""URL normalization and same-origin helpers for the crawl frontier."""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

_HTTP_SCHEMES = frozenset({"http", "https"})
_DEFAULT_PORTS = {"http": 80, "https": 443}

Origin = Tuple[str, str, int]


def _normalize_host(host: Optional[str]) -> str:
    """Lowercase a hostname; ``None`` becomes an empty string."""
    if not host:
        return ""
    return host.lower()


def is_absolute_http_url(url: str) -> bool:
    """Return True for well-formed absolute http(s) URLs with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url.strip())
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return False
    return parts.scheme.lower() in _HTTP_SCHEMES and bool(parts.hostname)


def url_origin(url: str) -> Optional[Origin]:
    """Return ``(scheme, host, port)`` for an http(s) URL, else ``None``."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in _HTTP_SCHEMES or not parts.hostname:
        return None
    return scheme, _normalize_host(parts.hostname), port or _DEFAULT_PORTS[scheme]


def same_origin(url: str, other: str) -> bool:
    origin = url_origin(url)
    return origin is not None and origin == url_origin(other)


def normalize_url(url: str, base: Optional[str] = None) -> Optional[str]:
    """Canonical form used for deduplication.

    Resolves ``url`` against ``base``, drops the fragment, lowercases scheme
    and host and strips trailing slashes from the path. Returns ``None`` for
    non-http(s) or unparsable references. Normalizing a normalized URL is a
    no-op.
    """
    if not url or not url.strip():
        return None
    try:
        resolved = urljoin(base, url.strip()) if base else url.strip()
        parts = urlsplit(resolved)
        parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in _HTTP_SCHEMES or not parts.hostname:
        return None

    # Userinfo is case-sensitive; only the host part is lowercased.
    userinfo, at, hostport = parts.netloc.rpartition("@")
    hostport = hostport.lower()
    if parts.port == _DEFAULT_PORTS[scheme]:
        hostport = hostport.rpartition(":")[0]
    netloc = f"{userinfo}{at}{hostport}"

    path = parts.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def resolve_links(
    hrefs: Iterable[str], page_url: str, origin_url: Optional[str] = None
) -> List[str]:
    """Resolve raw hrefs against the page URL and keep same-origin http(s) links.

    ``page_url`` must be the page's effective URL (after redirects) so relative
    references follow the directory semantics of a trailing slash. Results are
    normalized and deduplicated in first-seen order.
    """
    origin = url_origin(origin_url or page_url)
    seen = set()
    links: List[str] = []
    for href in hrefs:
        if not href or href.lstrip().startswith("#"):
            continue
        normalized = normalize_url(href, page_url)
        if normalized is None or url_origin(normalized) != origin:
            continue
        if normalized in seen:
            continue
        seen.add(normalized)
        links.append(normalized)
    return links


def url_matches_prefix(url: str, prefix: str) -> bool:
    """True if ``url`` lies under ``prefix`` on the same origin.

    The prefix must end at a path segment boundary, so
    ``https://docs.example.co`` does not cover ``https://docs.example.com``
    and ``/docs`` does not cover ``/docs-v2``. A trailing slash on the prefix
    is ignored. An empty prefix matches everything.
    """
    if not prefix:
        return True
    if not same_origin(url, prefix):
        return False
    url = normalize_url(url) or url
    trimmed = (normalize_url(prefix) or prefix).rstrip("/")
    if not url.startswith(trimmed):
        return False
    rest = url[len(trimmed):]
    return not rest or rest[0] in "/?#"
