"""FeasibilityResult model — cached feasibility checks and pass predictions (24h TTL)."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from imagery_cache.models.base import Base, JsonPayload, TTLCacheMixin


class FeasibilityResult(TTLCacheMixin, Base):
    """One cached feasibility or pass-prediction response."""

    __tablename__ = "feasibility_cache"

    aoi_wkt: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolution: Mapped[str | None] = mapped_column(String(255), nullable=True)
    providers: Mapped[list | None] = mapped_column(JsonPayload, nullable=True)

    feasibility_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    pass_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    provider_windows: Mapped[dict | None] = mapped_column(JsonPayload, nullable=True)
