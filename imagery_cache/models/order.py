"""CachedOrder model — orders cached indefinitely (no TTL).

Rows are refreshed by re-syncing from the upstream API or by partial
status updates; they are only removed by an explicit clear.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from imagery_cache.models.base import Base, JsonPayload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CachedOrder(Base):
    """Latest known state of one upstream order."""

    __tablename__ = "orders_cache"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    order_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True,
    )
    order_type: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    order_status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    order_data: Mapped[dict] = mapped_column(JsonPayload, nullable=False)

    # Extracted for filtering and sorting
    user_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    aoi_wkt: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolution: Mapped[str | None] = mapped_column(String(50), nullable=True)
    delivery_driver: Mapped[str | None] = mapped_column(String(20), nullable=True)
    delivery_bucket: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    ordered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
