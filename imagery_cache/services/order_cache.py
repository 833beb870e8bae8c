"""Order cache — upstream orders keyed by their order id, with no TTL.

Orders never expire; they are re-synced with ``set`` when the upstream API
is queried again and patched with ``update`` on status changes. The cache
stores whatever status string it is given and never validates transitions.

Error policy mirrors the TTL caches: get / set absorb storage failures,
update / list / clear / clear_all / stats raise StorageUnavailableError.
"""

import logging
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagery_cache.database import STORAGE_ERRORS, upsert
from imagery_cache.errors import MalformedParamsError, StorageUnavailableError
from imagery_cache.models import CachedOrder
from imagery_cache.schemas import OrderCacheStats, OrderListFilters
from imagery_cache.utils.timeutils import Clock, as_utc, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "PENDING"

# Statuses meaning the imagery reached the customer
DELIVERED_STATUSES = frozenset({"DELIVERED", "DELIVERY_COMPLETED", "COMPLETED"})


def extract_order_fields(payload: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Denormalized filter columns derived from an upstream order payload."""
    order_type = payload.get("orderType")
    status = payload.get("status") or DEFAULT_STATUS

    archive = payload.get("archive") if isinstance(payload.get("archive"), dict) else {}
    if order_type == "TASKING":
        product_type = payload.get("productType")
        resolution = payload.get("resolution")
    else:
        product_type = archive.get("productType") or payload.get("productType")
        resolution = archive.get("resolution") or payload.get("resolution")

    delivery_params = payload.get("deliveryParams")
    bucket = delivery_params.get("bucket") if isinstance(delivery_params, dict) else None

    cost_cents = payload.get("orderCost")
    completed_at = parse_timestamp(payload.get("completedAt") or payload.get("deliveredAt"))
    if completed_at is None and status in DELIVERED_STATUSES:
        completed_at = now

    return {
        "order_type": str(order_type) if order_type else None,
        "order_status": str(status),
        "user_reference": payload.get("label") or payload.get("orderLabel") or None,
        "aoi_wkt": payload.get("aoi") or None,
        "product_type": product_type or None,
        "resolution": str(resolution) if resolution else None,
        "delivery_driver": str(payload["deliveryDriver"]) if payload.get("deliveryDriver") else None,
        "delivery_bucket": bucket or None,
        "total_cost_usd": cost_cents / 100 if isinstance(cost_cents, (int, float)) else None,
        "ordered_at": parse_timestamp(payload.get("createdAt")),
        "completed_at": completed_at,
    }


class OrderCache:
    """Persistent, TTL-free cache of order payloads."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    async def get(self, order_id: str) -> dict[str, Any] | None:
        """Cached order payload, or None on miss or storage error."""
        start = time.monotonic()
        try:
            async with self._session_factory() as session:
                row = await session.scalar(
                    select(CachedOrder).where(CachedOrder.order_id == order_id).limit(1)
                )
        except Exception as e:
            logger.error("Order cache get failed | order=%s | %dms | %s", order_id, _elapsed_ms(start), str(e)[:200])
            return None

        if row is None:
            logger.debug("Order cache MISS | order=%s | %dms", order_id, _elapsed_ms(start))
            return None

        logger.info(
            "Order cache HIT | order=%s | type=%s | status=%s | %dms",
            order_id, row.order_type, row.order_status, _elapsed_ms(start),
        )
        return row.order_data

    async def set(self, order_id: str, payload: dict[str, Any]) -> None:
        """Store the full order, replacing any previous payload and filter fields."""
        start = time.monotonic()
        now = self._clock()

        try:
            values = {
                "order_id": order_id,
                "order_data": payload,
                "created_at": now,
                "updated_at": now,
                "last_synced_at": now,
                **extract_order_fields(payload, now),
            }
            async with self._session_factory() as session:
                await session.execute(upsert(session, CachedOrder, values, "order_id"))
                await session.commit()
        except Exception as e:
            logger.error("Order cache set failed | order=%s | %dms | %s", order_id, _elapsed_ms(start), str(e)[:200])
            return

        logger.info(
            "Order cache SET | order=%s | type=%s | status=%s | %dms",
            order_id, values["order_type"], values["order_status"], _elapsed_ms(start),
        )

    async def update(
        self,
        order_id: str,
        *,
        status: str | None = None,
        completed_at: datetime | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """Patch only the supplied fields; ``last_synced_at`` is always refreshed.

        The payload's embedded ``status`` and the ``order_status`` column are
        kept in step: a bare status change is written into the stored payload,
        and a replacement payload's status is mirrored into the column.
        """
        if status is None and completed_at is None and payload is None:
            logger.debug("Order cache update skipped, no changes | order=%s", order_id)
            return

        start = time.monotonic()
        now = self._clock()
        values: dict[str, Any] = {}

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if payload is not None:
                        if status is not None:
                            payload = {**payload, "status": status}
                        elif payload.get("status"):
                            status = str(payload["status"])
                        values["order_data"] = payload
                    elif status is not None:
                        current = await session.scalar(
                            select(CachedOrder.order_data)
                            .where(CachedOrder.order_id == order_id)
                            .with_for_update()
                        )
                        if current is not None:
                            values["order_data"] = {**current, "status": status}

                    if status is not None:
                        values["order_status"] = status
                    if completed_at is not None:
                        values["completed_at"] = as_utc(completed_at)
                    values["last_synced_at"] = now
                    values["updated_at"] = now

                    result = await session.execute(
                        update(CachedOrder).where(CachedOrder.order_id == order_id).values(**values)
                    )
        except STORAGE_ERRORS as e:
            logger.error("Order cache update failed | order=%s | %s", order_id, str(e)[:200])
            raise StorageUnavailableError("order update", str(e)[:200]) from e

        if not result.rowcount:
            logger.warning("Order cache update: order not found | order=%s | %dms", order_id, _elapsed_ms(start))
            return

        logger.info(
            "Order cache updated | order=%s | fields=%s | %dms",
            order_id, ",".join(sorted(values)), _elapsed_ms(start),
        )

    async def list(self, filters: OrderListFilters | Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Cached orders, newest order date first (undated orders last)."""
        filters = _coerce_filters(filters)
        start = time.monotonic()

        stmt = select(CachedOrder.order_data)
        if filters.order_type:
            stmt = stmt.where(CachedOrder.order_type == filters.order_type)
        if filters.order_status:
            stmt = stmt.where(CachedOrder.order_status == filters.order_status)
        if filters.start_date:
            stmt = stmt.where(CachedOrder.ordered_at >= as_utc(filters.start_date))
        if filters.end_date:
            stmt = stmt.where(CachedOrder.ordered_at <= as_utc(filters.end_date))
        stmt = (
            stmt.order_by(CachedOrder.ordered_at.desc().nulls_last(), CachedOrder.created_at.desc())
            .limit(filters.page_size)
            .offset(filters.page_number * filters.page_size)
        )

        try:
            async with self._session_factory() as session:
                orders = list((await session.scalars(stmt)).all())
        except STORAGE_ERRORS as e:
            logger.error("Order cache list failed | %s", str(e)[:200])
            raise StorageUnavailableError("order list", str(e)[:200]) from e

        logger.info(
            "Order cache list | filters=%s | results=%d | %dms",
            filters.model_dump(exclude_defaults=True), len(orders), _elapsed_ms(start),
        )
        return orders

    async def clear(self, order_id: str) -> bool:
        """Remove one order. Idempotent; returns True if a row went away."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(CachedOrder).where(CachedOrder.order_id == order_id))
                await session.commit()
        except STORAGE_ERRORS as e:
            logger.error("Order cache clear failed | order=%s | %s", order_id, str(e)[:200])
            raise StorageUnavailableError("order clear", str(e)[:200]) from e

        deleted = (result.rowcount or 0) > 0
        logger.info("Order cache entry cleared | order=%s | deleted=%s", order_id, deleted)
        return deleted

    async def clear_all(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(CachedOrder))
                await session.commit()
        except STORAGE_ERRORS as e:
            logger.error("Order cache clear all failed | %s", str(e)[:200])
            raise StorageUnavailableError("order clear_all", str(e)[:200]) from e

        removed = result.rowcount or 0
        logger.warning("All order cache entries cleared | removed=%d", removed)
        return removed

    async def stats(self) -> OrderCacheStats:
        try:
            async with self._session_factory() as session:
                total, last_synced = (await session.execute(
                    select(func.count(), func.max(CachedOrder.last_synced_at)).select_from(CachedOrder)
                )).one()
                by_type = (await session.execute(
                    select(CachedOrder.order_type, func.count()).group_by(CachedOrder.order_type)
                )).all()
                by_status = (await session.execute(
                    select(CachedOrder.order_status, func.count()).group_by(CachedOrder.order_status)
                )).all()
        except STORAGE_ERRORS as e:
            logger.error("Failed to get order cache stats | %s", str(e)[:200])
            raise StorageUnavailableError("order stats", str(e)[:200]) from e

        return OrderCacheStats(
            total_entries=int(total),
            by_type={(order_type or "UNKNOWN"): int(count) for order_type, count in by_type},
            by_status={status: int(count) for status, count in by_status},
            last_synced=parse_timestamp(last_synced),
        )


def _coerce_filters(filters: OrderListFilters | Mapping[str, Any] | None) -> OrderListFilters:
    if filters is None:
        return OrderListFilters()
    if isinstance(filters, OrderListFilters):
        return filters
    try:
        return OrderListFilters.model_validate(dict(filters))
    except ValidationError as e:
        raise MalformedParamsError("order_list", str(e)[:300]) from e


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
