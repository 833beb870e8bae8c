"""Hit accounting for TTL caches, kept off the read path.

A cache hit only records ``(table, key, entry version)`` in an in-memory
pending map and returns. A background worker drains the map and applies
one ``UPDATE`` per entry:

    hit_count = hit_count + n, last_accessed_at = <latest hit>

Properties:
  - bounded: once ``max_pending`` distinct entries are waiting, hits for
    new entries are dropped (hits for already-pending entries coalesce)
  - version-guarded: the UPDATE matches on the row's integer ``version``,
    which every overwrite bumps, so hits recorded against an entry that has
    since been overwritten are discarded and the fresh entry keeps its
    reset counter
  - failures are logged and never reach the reader
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagery_cache.utils.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PendingHits:
    hits: int
    last_accessed_at: datetime


class AccessAccountant:
    """Bounded, coalescing queue of hit-count updates with one drain worker."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_pending: int = 1024,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._max_pending = max_pending
        self._clock = clock
        self._pending: dict[tuple[type, str, int], PendingHits] = {}
        self._wakeup = asyncio.Event()
        self._drain_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.dropped = 0
        self.applied = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Spawn the drain worker on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cache-hit-accounting")
        logger.info("Hit accounting worker started | max_pending=%d", self._max_pending)

    async def stop(self) -> None:
        """Drain whatever is pending, then stop the worker."""
        if self._task is not None:
            # Cancel only between drains so no in-flight batch is dropped
            async with self._drain_lock:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()
        logger.info("Hit accounting worker stopped | applied=%d | dropped=%d", self.applied, self.dropped)

    def record_hit(self, model: type, cache_key: str, version: int) -> bool:
        """Queue one hit. Never blocks; returns False if the hit was dropped."""
        now = self._clock()
        slot = (model, cache_key, version)
        pending = self._pending.get(slot)
        if pending is not None:
            pending.hits += 1
            pending.last_accessed_at = max(pending.last_accessed_at, now)
        elif len(self._pending) >= self._max_pending:
            self.dropped += 1
            logger.debug("Hit accounting queue full, dropping hit | key=%s", cache_key[:16])
            return False
        else:
            self._pending[slot] = PendingHits(hits=1, last_accessed_at=now)
        self._wakeup.set()
        return True

    async def flush(self) -> int:
        """Apply every pending hit now. Returns the number of rows updated."""
        return await self._drain()

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self._drain()

    async def _drain(self) -> int:
        async with self._drain_lock:
            if not self._pending:
                return 0
            batch, self._pending = self._pending, {}

            updated = 0
            try:
                async with self._session_factory() as session:
                    for (model, cache_key, version), pending in batch.items():
                        stmt = (
                            update(model)
                            .where(model.cache_key == cache_key, model.version == version)
                            .values(
                                hit_count=model.hit_count + pending.hits,
                                last_accessed_at=pending.last_accessed_at,
                            )
                        )
                        result = await session.execute(stmt)
                        updated += result.rowcount or 0
                    await session.commit()
            except Exception as e:
                logger.warning(
                    "Failed to update cache hit metrics | entries=%d | %s",
                    len(batch), str(e)[:200],
                )
                return 0

            self.applied += updated
            stale = len(batch) - updated
            if stale:
                logger.debug("Hit accounting skipped %d overwritten or removed entries", stale)
            return updated
