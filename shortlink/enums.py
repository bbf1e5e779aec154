"""Shared enums for the shortlink core.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["AllocatorBackend", "CacheBackend", "CacheStatus", "RequestStatus"]


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    EXISTING = "existing"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class CacheBackend(StrEnum):
    REDIS = "redis"
    MEMORY = "memory"
    NONE = "none"


class AllocatorBackend(StrEnum):
    REDIS = "redis"
    KEYGEN = "keygen"
    MEMORY = "memory"
