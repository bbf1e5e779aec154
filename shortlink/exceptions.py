"""Exception hierarchy for the shortlink core.

Classes:
    ShortlinkError:
        Base class for every error raised by this package.

    InvalidUrl:
        Input is not a parseable absolute http/https URL.

    ShortCodeConflict:
        A custom short code is already taken by another record.

    ShortCodeCollision:
        A generated short code hit the store's uniqueness constraint. With a
        strict allocator this only happens after a counter reset or a salt
        change, so it is reported loudly and never retried.

    AllocatorUnavailable:
        The ID allocator backend could not be reached.

    StoreUnavailable:
        The durable store could not be reached.

    CacheError:
        A cache backend failed. Always caught by the cache-aside layer.
"""

__all__ = [
    "AllocatorUnavailable",
    "CacheError",
    "InvalidUrl",
    "ShortCodeCollision",
    "ShortCodeConflict",
    "ShortlinkError",
    "StoreUnavailable",
]


class ShortlinkError(Exception):
    """Generic base class for shortlink errors."""

    pass


class InvalidUrl(ShortlinkError, ValueError):
    """Raised when a URL cannot be parsed as an absolute http/https URL."""

    def __init__(self, url: str, reason: str = "not an absolute http/https URL"):
        super().__init__(f"Invalid URL {url!r}: {reason}")
        self.url = url
        self.reason = reason


class ShortCodeConflict(ShortlinkError):
    """Raised when a custom short code is already taken."""

    def __init__(self, short_code: str):
        super().__init__(f"Short code '{short_code}' is already taken")
        self.short_code = short_code


class ShortCodeCollision(ShortlinkError):
    """Raised when a generated short code violates the uniqueness constraint."""

    def __init__(self, short_code: str):
        super().__init__(f"Generated short code '{short_code}' collides with an existing record")
        self.short_code = short_code


class AllocatorUnavailable(ShortlinkError):
    """Raised when the ID allocator backend is unreachable."""

    pass


class StoreUnavailable(ShortlinkError):
    """Raised when the durable store is unreachable."""

    pass


class CacheError(ShortlinkError):
    """Raised by cache adapters on backend failure."""

    pass
