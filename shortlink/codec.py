"""Short code codec: sequential IDs to opaque, reversible strings.

Handles the encoding and decoding of allocator IDs into short, non-sequential,
reversible strings using the hashids library. Building a Hashids instance
shuffles the alphabet with the salt, which is the expensive step, so instances
are cached per ``(salt, min_length)`` for the lifetime of the process.

Functions:
    get_hashids(salt, min_length) -> Hashids
    encode_id(value, salt, min_length) -> str
    decode_id(short_code, salt, min_length) -> int | None

Classes:
    ShortCodeCodec:  Codec bound to one salt configuration.

Example:
    >>> code = encode_id(1, salt="s", min_length=5)
    >>> decode_id(code, salt="s", min_length=5)
    1
    >>> decode_id("not-a-code!", salt="s", min_length=5) is None
    True
"""

import string
from functools import lru_cache

from hashids import Hashids

__all__ = ["ALPHABET", "ShortCodeCodec", "decode_id", "encode_id", "get_hashids"]

ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits


@lru_cache(maxsize=32)
def get_hashids(salt: str, min_length: int) -> Hashids:
    """Return the cached Hashids instance for a salt configuration."""
    return Hashids(salt=salt, min_length=min_length, alphabet=ALPHABET)


def encode_id(value: int, salt: str, min_length: int = 5) -> str:
    """Encode a non-negative integer ID into a short alphanumeric code.

    Args:
        value: ID handed out by the allocator (>= 1 in practice; 0 is accepted
            but outside the allocator's range).
        salt: Secret salt; changing it changes every code.
        min_length: Minimum length of the produced code (>= 1).

    Returns:
        str: Code over ``[a-zA-Z0-9]`` with ``len(code) >= min_length``.

    Raises:
        ValueError: If ``value`` is not a non-negative int or ``min_length < 1``.
    """
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"value must be a non-negative int, got {value!r}")
    if min_length < 1:
        raise ValueError(f"min_length must be >= 1, got {min_length!r}")
    return get_hashids(salt, min_length).encode(value)


def decode_id(short_code: str, salt: str, min_length: int = 5) -> int | None:
    """Decode a short code back into its ID.

    Malformed codes are routine input from untrusted clients, so every failure
    (empty string, foreign characters, multi-value or non-canonical codes, a
    different salt) yields ``None`` instead of raising.
    """
    if not isinstance(short_code, str) or not short_code:
        return None
    try:
        decoded = get_hashids(salt, min_length).decode(short_code)
    except ValueError:
        return None
    if len(decoded) != 1:
        return None
    return decoded[0]


class ShortCodeCodec:
    """Codec bound to a single ``(salt, min_length)`` configuration."""

    def __init__(self, salt: str, min_length: int = 5):
        if min_length < 1:
            raise ValueError(f"min_length must be >= 1, got {min_length!r}")
        self.salt = salt
        self.min_length = min_length

    def encode(self, value: int) -> str:
        return encode_id(value, self.salt, self.min_length)

    def decode(self, short_code: str) -> int | None:
        return decode_id(short_code, self.salt, self.min_length)

    def __repr__(self) -> str:
        return f"<ShortCodeCodec(min_length={self.min_length})>"
