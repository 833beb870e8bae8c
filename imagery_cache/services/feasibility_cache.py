"""Feasibility cache — 24h TTL over feasibility checks and pass predictions.

Both request kinds share one table; the normalized parameters carry a
``queryKind`` discriminator so a check and a prediction over the same
window never collide.
"""

from typing import Any

from imagery_cache.models import FeasibilityResult
from imagery_cache.services.cache_keys import NormalizedParams, normalize_feasibility
from imagery_cache.services.ttl_cache import TTLResultCache
from imagery_cache.utils.timeutils import parse_timestamp


class FeasibilityCache(TTLResultCache):
    kind = "feasibility"
    label = "Feasibility"
    model = FeasibilityResult

    def normalize(self, params: Any) -> NormalizedParams:
        return normalize_feasibility(params)

    def project(self, normalized: NormalizedParams, payload: dict[str, Any]) -> dict[str, Any]:
        provider = normalized.get("requiredProvider")
        return {
            "aoi_wkt": normalized["aoi"],
            "start_date": parse_timestamp(normalized.get("startDate")),
            "end_date": parse_timestamp(normalized.get("endDate")),
            "product_type": normalized.get("productType"),
            "resolution": normalized.get("resolution"),
            "providers": [provider] if provider else None,
            **extract_feasibility_metrics(payload),
        }

    def summarize(self, row: FeasibilityResult) -> dict[str, Any]:
        return {"score": row.feasibility_score, "passes": row.pass_count}


def extract_feasibility_metrics(payload: dict[str, Any]) -> dict[str, Any]:
    """Score, pass count and per-provider windows pulled out of a response."""
    metrics: dict[str, Any] = {
        "feasibility_score": None,
        "pass_count": None,
        "provider_windows": None,
    }

    if not isinstance(payload, dict):
        return metrics

    overall = payload.get("overallScore")
    if isinstance(overall, dict):
        score = overall.get("feasibility")
        if isinstance(score, (int, float)):
            metrics["feasibility_score"] = float(score)

        provider_score = overall.get("providerScore")
        provider_scores = provider_score.get("providerScores") if isinstance(provider_score, dict) else None
        if isinstance(provider_scores, list) and provider_scores:
            metrics["provider_windows"] = {
                "providers": [
                    {
                        "provider": ps.get("provider"),
                        "score": ps.get("score"),
                        "opportunities": ps.get("opportunities", []),
                    }
                    for ps in provider_scores
                    if isinstance(ps, dict)
                ],
            }

    passes = payload.get("passes")
    if isinstance(passes, list):
        metrics["pass_count"] = len(passes)

    return metrics
