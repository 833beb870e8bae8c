"""Pydantic models for cache inputs and diagnostics.

Split into: request parameters (one model per query kind), list filters
for the order cache, and the statistics / inspection results returned by
the caches.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _RequestParams(BaseModel):
    """Accepts the upstream camelCase field names as well as snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("*", mode="before")
    @classmethod
    def _datetime_to_iso(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        return value


# ═══════════════ REQUEST PARAMETERS ═══════════════

class ArchiveSearchParams(_RequestParams):
    aoi: str
    from_date: str | None = None
    to_date: str | None = None
    max_cloud_coverage_percent: float | None = None
    max_off_nadir_angle: float | None = None
    min_overlap_ratio: float | None = None
    open_data: bool | None = None
    resolutions: list[str] | None = None
    product_types: list[str] | None = None
    providers: list[str] | None = None
    page_size: int | None = None


class FeasibilityCheckParams(_RequestParams):
    aoi: str
    product_type: str | None = None
    resolution: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    max_cloud_coverage_percent: float | None = None
    priority_item: bool | None = None
    required_provider: str | None = None


class PassPredictionParams(_RequestParams):
    aoi: str
    from_date: str | None = None
    to_date: str | None = None
    product_types: list[str] | None = None
    resolutions: list[str] | None = None
    max_off_nadir_angle: float | None = None


# ═══════════════ ORDER CACHE FILTERS ═══════════════

class OrderListFilters(BaseModel):
    """Filters for ``OrderCache.list`` — page numbers are 0-indexed."""

    order_type: str | None = None
    order_status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page_number: int = Field(default=0, ge=0)
    page_size: int = Field(default=10, ge=1, le=500)


# ═══════════════ DIAGNOSTICS ═══════════════

class TTLCacheStats(BaseModel):
    total_entries: int = 0
    expired_entries: int = 0
    total_hits: int = 0
    avg_hits_per_entry: float = 0.0
    last_accessed: datetime | None = None


class OrderCacheStats(BaseModel):
    total_entries: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    last_synced: datetime | None = None


class CacheEntryInfo(BaseModel):
    """Bookkeeping view of one TTL cache row, regardless of expiry."""

    cache_key: str
    summary: dict[str, Any] = Field(default_factory=dict)
    hit_count: int = 0
    version: int = 1
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    last_accessed_at: datetime | None = None
    expired: bool = False
