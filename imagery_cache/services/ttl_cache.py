"""TTL result cache — shared logic for hash-keyed, expiring query caches.

Subclasses bind one table and one query kind:

  - ``normalize(params)``   → canonical parameter mapping (key source)
  - ``project(normalized, payload)`` → denormalized diagnostic columns
  - ``summarize(row)``      → small scalars for logs / inspection

Expiry is lazy: ``get`` only returns rows with ``expires_at > now``, so an
expired row is a miss whether or not ``clear_expired`` has swept it.

Error policy:
  - get / set absorb storage failures (log + miss / no-op) so callers can
    always fall back to the upstream API
  - clear / clear_all / clear_expired / stats / peek raise
    StorageUnavailableError
  - MalformedParamsError from normalization always propagates
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, ClassVar

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagery_cache.config import settings
from imagery_cache.database import STORAGE_ERRORS, upsert
from imagery_cache.errors import StorageUnavailableError
from imagery_cache.schemas import CacheEntryInfo, TTLCacheStats
from imagery_cache.services.accounting import AccessAccountant
from imagery_cache.services.cache_keys import (
    NormalizedParams,
    cache_key_prefix,
    describe_params,
    generate_cache_key,
)
from imagery_cache.utils.timeutils import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)


class TTLResultCache:
    """Persistent cache of idempotent query results with per-entry expiry."""

    kind: ClassVar[str] = ""
    label: ClassVar[str] = "Result"
    model: ClassVar[type]

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        accountant: AccessAccountant | None = None,
        clock: Clock = utcnow,
        default_ttl: int | None = None,
    ):
        self._session_factory = session_factory
        self._accountant = accountant
        self._clock = clock
        self.default_ttl = default_ttl if default_ttl is not None else settings.ttl_for(self.kind)

    # ------------------------------------------------------------------
    # Per-kind hooks
    # ------------------------------------------------------------------

    def normalize(self, params: Any) -> NormalizedParams:
        raise NotImplementedError

    def project(self, normalized: NormalizedParams, payload: dict[str, Any]) -> dict[str, Any]:
        return {}

    def summarize(self, row: Any) -> dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def key_for(self, params: Any) -> str:
        return generate_cache_key(self.normalize(params))

    def prefix_for(self, params: Any) -> str:
        return cache_key_prefix(self.kind, self.normalize(params))

    # ------------------------------------------------------------------
    # Read / write path (failures absorbed)
    # ------------------------------------------------------------------

    async def get(self, params: Any) -> dict[str, Any] | None:
        """Return the cached payload, or None on miss, expiry or storage error."""
        cache_key = self.key_for(params)
        start = time.monotonic()
        now = self._clock()

        try:
            async with self._session_factory() as session:
                row = await session.scalar(
                    select(self.model)
                    .where(self.model.cache_key == cache_key, self.model.expires_at > now)
                    .limit(1)
                )
        except Exception as e:
            logger.error(
                "%s cache get failed | key=%s | %dms | %s",
                self.label, cache_key[:16], _elapsed_ms(start), str(e)[:200],
            )
            return None

        if row is None:
            logger.debug("%s cache MISS | key=%s | %dms", self.label, cache_key[:16], _elapsed_ms(start))
            return None

        if self._accountant is not None:
            self._accountant.record_hit(self.model, cache_key, row.version)

        created_at = as_utc(row.created_at)
        logger.info(
            "%s cache HIT | key=%s | hits=%d | age=%dm | %s | %dms",
            self.label, cache_key[:16], row.hit_count + 1,
            int((now - created_at).total_seconds() // 60),
            _format_summary(self.summarize(row)), _elapsed_ms(start),
        )
        return row.response_data

    async def set(self, params: Any, payload: dict[str, Any], ttl_seconds: int | None = None) -> None:
        """Insert or overwrite the entry; an overwrite starts again at zero hits.

        A zero or negative TTL is accepted and stores an already-expired entry.
        """
        normalized = self.normalize(params)
        cache_key = generate_cache_key(normalized)
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        start = time.monotonic()
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl)

        values = {
            "cache_key": cache_key,
            "response_data": payload,
            "created_at": now,
            "updated_at": now,
            "expires_at": expires_at,
            "hit_count": 0,
            "last_accessed_at": None,
            "version": 1,
            **self.project(normalized, payload),
        }

        try:
            async with self._session_factory() as session:
                await session.execute(upsert(
                    session, self.model, values, "cache_key",
                    overrides={"version": self.model.version + 1},
                ))
                await session.commit()
        except Exception as e:
            logger.error(
                "%s cache set failed | key=%s | %dms | %s",
                self.label, cache_key[:16], _elapsed_ms(start), str(e)[:200],
            )
            return

        logger.info(
            "%s cache SET | key=%s | ttl=%ds | expires=%s | %s | %dms",
            self.label, cache_key[:16], ttl, expires_at.isoformat(),
            describe_params(normalized), _elapsed_ms(start),
        )

    # ------------------------------------------------------------------
    # Maintenance (failures propagate)
    # ------------------------------------------------------------------

    async def clear(self, params: Any) -> bool:
        """Delete the entry for *params*. Idempotent; returns True if a row went away."""
        cache_key = self.key_for(params)
        start = time.monotonic()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(self.model).where(self.model.cache_key == cache_key)
                )
                await session.commit()
        except STORAGE_ERRORS as e:
            logger.error("%s cache clear failed | key=%s | %s", self.label, cache_key[:16], str(e)[:200])
            raise StorageUnavailableError(f"{self.kind} clear", str(e)[:200]) from e

        deleted = (result.rowcount or 0) > 0
        logger.info(
            "%s cache entry cleared | key=%s | deleted=%s | %dms",
            self.label, cache_key[:16], deleted, _elapsed_ms(start),
        )
        return deleted

    async def clear_all(self) -> int:
        """Delete every entry of this kind. Returns the number removed."""
        start = time.monotonic()
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(self.model))
                await session.commit()
        except STORAGE_ERRORS as e:
            logger.error("%s cache clear all failed | %s", self.label, str(e)[:200])
            raise StorageUnavailableError(f"{self.kind} clear_all", str(e)[:200]) from e

        removed = result.rowcount or 0
        logger.warning("All %s cache entries cleared | removed=%d | %dms", self.kind, removed, _elapsed_ms(start))
        return removed

    async def clear_expired(self) -> int:
        """Sweep rows with ``expires_at <= now``. Returns the number removed."""
        start = time.monotonic()
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(self.model).where(self.model.expires_at <= now)
                )
                await session.commit()
        except STORAGE_ERRORS as e:
            logger.error("%s cache clear expired failed | %s", self.label, str(e)[:200])
            raise StorageUnavailableError(f"{self.kind} clear_expired", str(e)[:200]) from e

        removed = result.rowcount or 0
        if removed:
            logger.info("Expired %s cache entries cleared | removed=%d | %dms", self.kind, removed, _elapsed_ms(start))
        return removed

    async def stats(self) -> TTLCacheStats:
        now = self._clock()
        stmt = select(
            func.count(),
            func.coalesce(func.sum(case((self.model.expires_at <= now, 1), else_=0)), 0),
            func.coalesce(func.sum(self.model.hit_count), 0),
            func.coalesce(func.avg(self.model.hit_count), 0),
            func.max(self.model.last_accessed_at),
        ).select_from(self.model)

        try:
            async with self._session_factory() as session:
                total, expired, hits, avg_hits, last_accessed = (await session.execute(stmt)).one()
        except STORAGE_ERRORS as e:
            logger.error("Failed to get %s cache stats | %s", self.kind, str(e)[:200])
            raise StorageUnavailableError(f"{self.kind} stats", str(e)[:200]) from e

        return TTLCacheStats(
            total_entries=int(total),
            expired_entries=int(expired),
            total_hits=int(hits),
            avg_hits_per_entry=float(avg_hits),
            last_accessed=_as_datetime(last_accessed),
        )

    async def peek(self, params: Any) -> CacheEntryInfo | None:
        """Bookkeeping for the entry behind *params*, expired or not. Not a hit."""
        cache_key = self.key_for(params)
        try:
            async with self._session_factory() as session:
                row = await session.scalar(
                    select(self.model).where(self.model.cache_key == cache_key).limit(1)
                )
        except STORAGE_ERRORS as e:
            raise StorageUnavailableError(f"{self.kind} peek", str(e)[:200]) from e

        if row is None:
            return None
        expires_at = as_utc(row.expires_at)
        return CacheEntryInfo(
            cache_key=row.cache_key,
            summary=self.summarize(row),
            hit_count=row.hit_count,
            version=row.version,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            expires_at=expires_at,
            last_accessed_at=as_utc(row.last_accessed_at),
            expired=expires_at <= self._clock(),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _format_summary(summary: dict[str, Any]) -> str:
    return " ".join(f"{name}={value}" for name, value in summary.items()) or "-"


def _as_datetime(value: Any) -> datetime | None:
    # SQLite hands back MAX() over a DateTime column as text
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return as_utc(value)
