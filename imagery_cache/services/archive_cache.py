"""Archive search cache — 24h TTL over catalog search responses."""

from typing import Any

from imagery_cache.models import ArchiveSearch
from imagery_cache.services.cache_keys import NormalizedParams, normalize_archive_search
from imagery_cache.services.ttl_cache import TTLResultCache
from imagery_cache.utils.timeutils import parse_timestamp


class ArchiveSearchCache(TTLResultCache):
    kind = "archive_search"
    label = "Archive"
    model = ArchiveSearch

    def normalize(self, params: Any) -> NormalizedParams:
        return normalize_archive_search(params)

    def project(self, normalized: NormalizedParams, payload: dict[str, Any]) -> dict[str, Any]:
        archives = payload.get("archives") if isinstance(payload, dict) else None
        return {
            "aoi_wkt": normalized["aoi"],
            "start_date": parse_timestamp(normalized.get("fromDate")),
            "end_date": parse_timestamp(normalized.get("toDate")),
            "product_type": normalized.get("productTypes"),
            "resolution": normalized.get("resolutions"),
            "max_cloud_coverage": normalized.get("maxCloudCoveragePercent"),
            "open_data_only": bool(normalized.get("openData", False)),
            "result_count": len(archives) if isinstance(archives, list) else 0,
        }

    def summarize(self, row: ArchiveSearch) -> dict[str, Any]:
        return {"results": row.result_count}
