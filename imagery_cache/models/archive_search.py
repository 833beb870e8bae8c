"""ArchiveSearch model — cached archive catalog searches (24h TTL)."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from imagery_cache.models.base import Base, TTLCacheMixin


class ArchiveSearch(TTLCacheMixin, Base):
    """One cached archive search response, keyed by normalized parameters."""

    __tablename__ = "archive_searches"

    # Search parameters kept for debugging and diagnostics only
    aoi_wkt: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    resolution: Mapped[str | None] = mapped_column(String(255), nullable=True)
    max_cloud_coverage: Mapped[float | None] = mapped_column(Float, nullable=True)
    open_data_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    result_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
