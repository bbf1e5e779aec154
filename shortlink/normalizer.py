"""URL canonicalization for deduplication.

Two inputs that differ only in host case, a trailing slash, a fragment,
embedded credentials, an explicit default port or percent-encoding of the
path normalize to the same string, so they share a cache key and a store
record.

Rules, in order:
    1. Trim surrounding whitespace.
    2. Require an ``http``/``https`` scheme and a host.
    3. Lowercase the host; path and query keep their case.
    4. Drop ``user:pass@`` and default ports (80/443).
    5. Drop the fragment.
    6. Percent-encode characters not allowed in a path or query.
    7. Strip one trailing slash from a non-root path.
    8. A root path without a query collapses to the bare origin.
    9. The result must pass ``validators.url``.

Example:
    >>> normalize_url("  https://EXAMPLE.com/Path/#top ")
    'https://example.com/Path'
    >>> normalize_url("https://example.com/")
    'https://example.com'
    >>> normalize_url("https://example.com/a b")
    'https://example.com/a%20b'
"""

from urllib.parse import quote, urlsplit

import validators

from shortlink.exceptions import InvalidUrl

__all__ = ["ALLOWED_SCHEMES", "is_valid_http_url", "normalize_url"]

ALLOWED_SCHEMES = {"http": 80, "https": 443}

# RFC 3986 pchar plus "/"; "%" keeps existing escapes intact
PATH_SAFE = "/%:@!$&'()*+,;=-._~"
QUERY_SAFE = PATH_SAFE + "?"


def normalize_url(value: str) -> str:
    if not isinstance(value, str):
        raise InvalidUrl(repr(value), "expected a string")

    candidate = value.strip()
    if not candidate:
        raise InvalidUrl(value, "empty URL")

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        raise InvalidUrl(value, str(exc)) from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidUrl(value, "scheme must be http or https")

    # hostname is already lowercased and stripped of userinfo and IPv6 brackets
    host = parts.hostname
    if not host:
        raise InvalidUrl(value, "missing host")
    if ":" in host:
        host = f"[{host}]"

    netloc = host if port is None or port == ALLOWED_SCHEMES[scheme] else f"{host}:{port}"

    path = quote(parts.path, safe=PATH_SAFE)
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    origin = f"{scheme}://{netloc}"
    if path in ("", "/") and not parts.query:
        normalized = origin
    else:
        query = f"?{quote(parts.query, safe=QUERY_SAFE)}" if parts.query else ""
        normalized = f"{origin}{path or '/'}{query}"

    if not validators.url(normalized, strict_query=False):
        raise InvalidUrl(value, "malformed URL")
    return normalized


def is_valid_http_url(value: str) -> bool:
    """Return True when ``value`` normalizes cleanly."""
    try:
        normalize_url(value)
    except InvalidUrl:
        return False
    return True
