"""CacheStore — the one handle collaborators receive.

Built once by the process bootstrap around a shared session factory and
passed to whatever needs caching. The store owns the hit-accounting worker
and the optional periodic expiry sweep; it borrows the database engine,
whose lifecycle stays with the bootstrap.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagery_cache.config import Settings, settings as default_settings
from imagery_cache.schemas import OrderCacheStats, TTLCacheStats
from imagery_cache.services.accounting import AccessAccountant
from imagery_cache.services.archive_cache import ArchiveSearchCache
from imagery_cache.services.feasibility_cache import FeasibilityCache
from imagery_cache.services.order_cache import OrderCache
from imagery_cache.services.ttl_cache import TTLResultCache
from imagery_cache.utils.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)


class CacheStore:
    """Archive, feasibility and order caches sharing one accounting worker."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: Settings | None = None,
        clock: Clock = utcnow,
    ):
        config = config or default_settings
        self.config = config
        self.accounting = AccessAccountant(
            session_factory, max_pending=config.accounting_max_pending, clock=clock,
        )
        self.archives = ArchiveSearchCache(
            session_factory, self.accounting, clock=clock,
            default_ttl=config.cache_ttl_archive_search,
        )
        self.feasibility = FeasibilityCache(
            session_factory, self.accounting, clock=clock,
            default_ttl=config.cache_ttl_feasibility,
        )
        self.orders = OrderCache(session_factory, clock=clock)
        self._sweep_task: asyncio.Task | None = None

    @property
    def ttl_caches(self) -> dict[str, TTLResultCache]:
        return {"archives": self.archives, "feasibility": self.feasibility}

    async def start(self, sweep_interval: int | None = None) -> None:
        """Start hit accounting and, if an interval is given, the expiry sweep."""
        self.accounting.start()
        if sweep_interval and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(
                self._sweep_forever(sweep_interval), name="cache-expiry-sweep",
            )
            logger.info("Expiry sweep scheduled | every %ds", sweep_interval)

    async def close(self) -> None:
        """Stop background work and flush pending hit counts."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.accounting.stop()

    async def sweep_expired(self) -> dict[str, int]:
        """Physically delete expired rows from every TTL cache."""
        return {name: await cache.clear_expired() for name, cache in self.ttl_caches.items()}

    async def stats(self) -> dict[str, TTLCacheStats | OrderCacheStats]:
        return {
            "archives": await self.archives.stats(),
            "feasibility": await self.feasibility.stats(),
            "orders": await self.orders.stats(),
        }

    async def clear_kind(self, kind: str) -> int:
        """``clear_all`` on the cache named *kind* (archives, feasibility, orders)."""
        caches = {**self.ttl_caches, "orders": self.orders}
        try:
            cache = caches[kind]
        except KeyError:
            raise KeyError(f"Unknown cache kind '{kind}'") from None
        return await cache.clear_all()

    async def _sweep_forever(self, interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.sweep_expired()
                logger.info("Expiry sweep finished | removed=%s", removed)
            except Exception as e:
                logger.error("Expiry sweep failed | %s", str(e)[:200])
