"""Durable store access for short URL records.

``ShortURLStore`` wraps one request-scoped ``AsyncSession`` and exposes the
handful of queries the orchestrator needs. Uniqueness of ``short_code`` is
enforced by the database; the store only translates the violation.

Query Overview
==============
::
    get_by_code(code)              SELECT ... WHERE short_code = :code
    code_exists(code)              SELECT id ... WHERE short_code = :code LIMIT 1
    find_reusable(url, ...)        SELECT ... WHERE original_url = :url
                                     AND <expiration class> AND <owner scope>
                                     AND (not expired)
                                   ORDER BY id DESC LIMIT 1
    insert(...)                    INSERT, unique violation -> ShortCodeConflict
    record_access(code, now)       UPDATE ... SET clicks = clicks + 1
    delete_expired(now)            DELETE ... WHERE expires_at <= :now

Key Behaviours
===============
- Connectivity problems raise StoreUnavailable (see handle_store_errors).
- A failed insert is rolled back before the error propagates, so the session
  never holds a half-written record.
- Click counts are incremented by the database, never read-modify-write.
"""

import asyncio
import datetime
import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlink.exceptions import ShortCodeConflict, StoreUnavailable
from shortlink.models import ShortURL

__all__ = ["ShortURLStore", "handle_store_errors"]

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger("shortlink.store")


def handle_store_errors(method: F) -> F:
    """Wrap store methods so driver connectivity errors raise StoreUnavailable."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except (OperationalError, InterfaceError, DBAPIError, OSError, asyncio.TimeoutError) as exc:
            logger.error(f"Store operation {method.__name__} failed: {exc}")
            raise StoreUnavailable(f"Durable store unavailable during {method.__name__}") from exc

    return wrapper


class ShortURLStore:
    def __init__(self, db: AsyncSession):
        self._db = db

    @handle_store_errors
    async def get_by_code(self, short_code: str) -> ShortURL | None:
        result = await self._db.execute(select(ShortURL).where(ShortURL.short_code == short_code))
        return result.scalar_one_or_none()

    @handle_store_errors
    async def code_exists(self, short_code: str) -> bool:
        result = await self._db.execute(select(ShortURL.id).where(ShortURL.short_code == short_code).limit(1))
        return result.scalar_one_or_none() is not None

    @handle_store_errors
    async def find_reusable(
        self,
        original_url: str,
        *,
        expiring: bool,
        owner_id: str | None,
        now: datetime.datetime,
    ) -> ShortURL | None:
        """Newest live record for a URL within one expiration class and owner scope.

        ``owner_id=None`` matches anonymous records only; it is not a wildcard.
        """
        stmt = select(ShortURL).where(ShortURL.original_url == original_url)
        if expiring:
            stmt = stmt.where(ShortURL.expires_at.is_not(None), ShortURL.expires_at > now)
        else:
            stmt = stmt.where(ShortURL.expires_at.is_(None))
        if owner_id:
            stmt = stmt.where(ShortURL.user_id == owner_id)
        else:
            stmt = stmt.where(ShortURL.user_id.is_(None))

        result = await self._db.execute(stmt.order_by(ShortURL.id.desc()).limit(1))
        return result.scalar_one_or_none()

    @handle_store_errors
    async def insert(
        self,
        *,
        short_code: str,
        original_url: str,
        owner_id: str | None,
        expires_at: datetime.datetime | None,
        now: datetime.datetime,
    ) -> ShortURL:
        """Insert a new record.

        Raises:
            ShortCodeConflict: If ``short_code`` is already stored.
            StoreUnavailable: On connectivity failure.
        """
        url = ShortURL(
            short_code=short_code,
            original_url=original_url,
            user_id=owner_id,
            clicks=0,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        self._db.add(url)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ShortCodeConflict(short_code) from exc
        return url

    @handle_store_errors
    async def record_access(self, short_code: str, now: datetime.datetime) -> bool:
        result = await self._db.execute(
            update(ShortURL)
            .where(ShortURL.short_code == short_code)
            .values(clicks=ShortURL.clicks + 1, last_accessed_at=now)
        )
        await self._db.commit()
        return result.rowcount > 0

    @handle_store_errors
    async def delete_expired(self, now: datetime.datetime) -> int:
        result = await self._db.execute(
            delete(ShortURL)
            .where(ShortURL.expires_at.is_not(None), ShortURL.expires_at <= now)
            .execution_options(synchronize_session="fetch")
        )
        await self._db.commit()
        return result.rowcount
