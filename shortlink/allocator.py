"""Sequential ID allocation.

Every generated short code starts life as an integer from one of these
allocators. They share one contract:

- the first ``next_id()`` on a fresh counter returns 1, every later call
  returns the previous value + 1;
- concurrent callers (tasks, processes, replicas) never receive the same value;
- the increment is atomic at the storage layer, never read-then-write in
  application code;
- an unreachable backend raises AllocatorUnavailable. No fallback ID is ever
  made up, since a non-unique ID would later surface as a code collision.

A call that fails after the backend applied the increment (for example a lost
reply) leaves that value unused. Calls are not retried, so such a failure is
the only way a value is skipped.

Backends
========
::
    RedisIdAllocator      INCR <key>              shared across replicas
    KeygenIdAllocator     POST /allocate size=1   remote keygen service
    InMemoryIdAllocator   asyncio.Lock counter    single process (dev/tests)

Administrative reset: ``reset()`` makes the next call return 1, ``reset(v)``
makes it return ``v``. Both are a single atomic write on the backend. The
keygen backend owns its counter and refuses resets from here.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError

from shortlink.exceptions import AllocatorUnavailable

__all__ = [
    "DEFAULT_COUNTER_KEY",
    "IdAllocator",
    "InMemoryIdAllocator",
    "KeygenIdAllocator",
    "RedisIdAllocator",
]

DEFAULT_COUNTER_KEY = "url_shortener:id_counter"

logger = logging.getLogger("shortlink.allocator")


def _reset_target(value: int | None) -> int:
    """Counter value to store so that the next increment yields ``value``."""
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"reset value must be a positive int, got {value!r}")
    return value - 1


class IdAllocator(ABC):
    """Interface for strictly increasing, globally unique ID allocators."""

    @abstractmethod
    async def next_id(self) -> int:
        """Return the next ID.

        Raises:
            AllocatorUnavailable: If the backing counter cannot be reached.
        """
        pass

    @abstractmethod
    async def reset(self, value: int | None = None) -> None:
        """Reset the counter so the next call returns ``value`` (default 1)."""
        pass


class RedisIdAllocator(IdAllocator):
    """Counter stored in a single Redis key.

    INCR on a missing key starts from 0, so lazy initialization and the
    increment are the same atomic command.
    """

    def __init__(self, client: redis.Redis, key: str = DEFAULT_COUNTER_KEY):
        self._redis = client
        self.key = key

    async def next_id(self) -> int:
        try:
            value = await self._redis.incr(self.key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.error(f"ID allocation failed on Redis key {self.key}: {exc}")
            raise AllocatorUnavailable(f"Can't increment Redis counter '{self.key}'") from exc
        return int(value)

    async def reset(self, value: int | None = None) -> None:
        target = _reset_target(value)
        try:
            await self._redis.set(self.key, target)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.error(f"ID counter reset failed on Redis key {self.key}: {exc}")
            raise AllocatorUnavailable(f"Can't reset Redis counter '{self.key}'") from exc
        logger.warning(f"ID counter {self.key} reset, next id will be {target + 1}")


class KeygenIdAllocator(IdAllocator):
    """Client for the keygen service's range allocation endpoint.

    Asks for blocks of size 1 so that IDs stay gap-free across every caller
    of the service. ``client`` is expected to carry the service's base URL
    and timeout.

    The keygen service exposes ``/allocate``, ``/health``, ``/metrics`` and
    ``/status`` only. Its counter is reset on the service itself, so
    ``reset()`` raises AllocatorUnavailable without making a request.
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def next_id(self) -> int:
        try:
            response = await self._client.post("/allocate", json={"size": 1})
            response.raise_for_status()
            payload = response.json()
            start_value = int(payload["start"])
            end_value = int(payload["end"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.error(f"Keygen service allocation failed: {exc}")
            raise AllocatorUnavailable("Keygen service unavailable") from exc

        if start_value != end_value or start_value < 1:
            raise AllocatorUnavailable(f"Keygen service returned an invalid range {start_value}..{end_value}")
        return start_value

    async def reset(self, value: int | None = None) -> None:
        _reset_target(value)
        raise AllocatorUnavailable("Keygen service has no reset endpoint; reset its counter on the service")


class InMemoryIdAllocator(IdAllocator):
    """Single-writer counter for one process.

    Not shared between processes; use it for local development and tests.
    """

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = asyncio.Lock()

    async def next_id(self) -> int:
        async with self._lock:
            self._value += 1
            return self._value

    async def reset(self, value: int | None = None) -> None:
        target = _reset_target(value)
        async with self._lock:
            self._value = target

    def __repr__(self) -> str:
        return f"<InMemoryIdAllocator(last={self._value})>"
