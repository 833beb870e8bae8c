"""Deterministic cache keys for imagery queries.

Each query kind (archive search, feasibility check, pass prediction) has a
normalizer that turns a request into a flat canonical mapping:

  - WKT geometry is trimmed, whitespace-collapsed and keyword-uppercased
  - list filters are deduplicated, sorted and joined with ","
  - fields that are absent / None are omitted (an explicit empty value is kept)
  - numbers, booleans and dates pass through unchanged

The canonical mapping is serialized with sorted keys and hashed with SHA-256,
so semantically identical requests share a key regardless of field order,
list order or geometry formatting.
"""

import hashlib
import json
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from imagery_cache.errors import MalformedParamsError
from imagery_cache.schemas import (
    ArchiveSearchParams,
    FeasibilityCheckParams,
    PassPredictionParams,
)

NormalizedParams = dict[str, Any]

ModelT = TypeVar("ModelT", bound=BaseModel)

_WHITESPACE_RE = re.compile(r"\s+")
_OPEN_PAREN_RE = re.compile(r"\(\s+")
_CLOSE_PAREN_RE = re.compile(r"\s+\)")
_COMMA_RE = re.compile(r"\s*,\s*")
_KEYWORD_RE = re.compile(r"(?<![0-9.])[A-Za-z]+")
_KEYWORD_PAREN_RE = re.compile(r"([A-Z]+) \(")


# ═══════════════ NORMALIZATION ═══════════════

def normalize_wkt(wkt: str) -> str:
    """Canonical WKT text: 'polygon (( 1 2, 3 4 ))' -> 'POLYGON((1 2,3 4))'."""
    if not wkt:
        return ""

    normalized = _WHITESPACE_RE.sub(" ", wkt.strip())
    normalized = _OPEN_PAREN_RE.sub("(", normalized)
    normalized = _CLOSE_PAREN_RE.sub(")", normalized)
    normalized = _COMMA_RE.sub(",", normalized)
    # Keywords and dimension markers (POLYGON, Z, M, EMPTY, ...); an exponent
    # letter always follows a digit, as in 1e-5.
    normalized = _KEYWORD_RE.sub(lambda m: m.group(0).upper(), normalized)
    return _KEYWORD_PAREN_RE.sub(r"\1(", normalized)


def join_sorted(values: Iterable[str]) -> str:
    """Deduplicate, sort lexicographically and join with ','."""
    return ",".join(sorted(set(values)))


def _coerce(model: type[ModelT], params: Any, kind: str) -> ModelT:
    if isinstance(params, model):
        return params
    if isinstance(params, BaseModel):
        params = params.model_dump(exclude_none=True)
    if not isinstance(params, Mapping):
        raise MalformedParamsError(kind, f"expected a mapping, got {type(params).__name__}")
    try:
        return model.model_validate(dict(params))
    except ValidationError as e:
        raise MalformedParamsError(kind, str(e)[:300]) from e


def _put(normalized: NormalizedParams, name: str, value: Any) -> None:
    if value is not None:
        normalized[name] = value


def _put_list(normalized: NormalizedParams, name: str, values: list[str] | None) -> None:
    if values is not None:
        normalized[name] = join_sorted(values)


def normalize_archive_search(params: ArchiveSearchParams | Mapping[str, Any]) -> NormalizedParams:
    p = _coerce(ArchiveSearchParams, params, "archive_search")
    normalized: NormalizedParams = {"aoi": normalize_wkt(p.aoi)}
    _put(normalized, "fromDate", p.from_date)
    _put(normalized, "toDate", p.to_date)
    _put(normalized, "maxCloudCoveragePercent", p.max_cloud_coverage_percent)
    _put(normalized, "maxOffNadirAngle", p.max_off_nadir_angle)
    _put(normalized, "minOverlapRatio", p.min_overlap_ratio)
    _put(normalized, "openData", p.open_data)
    _put_list(normalized, "resolutions", p.resolutions)
    _put_list(normalized, "productTypes", p.product_types)
    _put_list(normalized, "providers", p.providers)
    # Page size changes the upstream result set, so it is part of the key
    _put(normalized, "pageSize", p.page_size)
    return normalized


def normalize_feasibility_check(params: FeasibilityCheckParams | Mapping[str, Any]) -> NormalizedParams:
    p = _coerce(FeasibilityCheckParams, params, "feasibility_check")
    normalized: NormalizedParams = {
        "queryKind": "feasibility",
        "aoi": normalize_wkt(p.aoi),
    }
    _put(normalized, "startDate", p.start_date)
    _put(normalized, "endDate", p.end_date)
    _put(normalized, "productType", p.product_type)
    _put(normalized, "resolution", p.resolution)
    _put(normalized, "maxCloudCoveragePercent", p.max_cloud_coverage_percent)
    _put(normalized, "priorityItem", p.priority_item)
    _put(normalized, "requiredProvider", p.required_provider)
    return normalized


def normalize_pass_prediction(params: PassPredictionParams | Mapping[str, Any]) -> NormalizedParams:
    """Pass predictions share the feasibility table, so names line up with it."""
    p = _coerce(PassPredictionParams, params, "pass_prediction")
    normalized: NormalizedParams = {
        "queryKind": "pass_prediction",
        "aoi": normalize_wkt(p.aoi),
    }
    _put(normalized, "startDate", p.from_date)
    _put(normalized, "endDate", p.to_date)
    _put_list(normalized, "productType", p.product_types)
    _put_list(normalized, "resolution", p.resolutions)
    _put(normalized, "maxOffNadirAngle", p.max_off_nadir_angle)
    return normalized


def normalize_feasibility(
    params: FeasibilityCheckParams | PassPredictionParams | Mapping[str, Any],
) -> NormalizedParams:
    """Dispatch to the feasibility or pass-prediction rules by request shape."""
    if isinstance(params, PassPredictionParams):
        return normalize_pass_prediction(params)
    if isinstance(params, FeasibilityCheckParams):
        return normalize_feasibility_check(params)
    if isinstance(params, Mapping) and _looks_like_pass_prediction(params):
        return normalize_pass_prediction(params)
    return normalize_feasibility_check(params)


def _looks_like_pass_prediction(params: Mapping[str, Any]) -> bool:
    pass_fields = {"fromDate", "from_date", "toDate", "to_date", "productTypes", "product_types",
                   "resolutions", "maxOffNadirAngle", "max_off_nadir_angle"}
    check_fields = {"startDate", "start_date", "endDate", "end_date", "productType", "product_type",
                    "resolution", "requiredProvider", "required_provider"}
    return bool(pass_fields & params.keys()) and not (check_fields & params.keys())


# ═══════════════ KEY GENERATION ═══════════════

def canonical_json(normalized: NormalizedParams) -> str:
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def generate_cache_key(normalized: NormalizedParams) -> str:
    """64-char hex SHA-256 of the canonical serialization."""
    return hashlib.sha256(canonical_json(normalized).encode("utf-8")).hexdigest()


NORMALIZERS: dict[str, Callable[[Any], NormalizedParams]] = {
    "archive_search": normalize_archive_search,
    "feasibility": normalize_feasibility,
}


def make_key(kind: str, params: Any) -> str:
    """Normalize *params* with the rules for *kind* and hash the result."""
    try:
        normalizer = NORMALIZERS[kind]
    except KeyError:
        raise MalformedParamsError(kind, "unknown query kind") from None
    return generate_cache_key(normalizer(params))


# ═══════════════ DEBUGGING HELPERS ═══════════════

def cache_key_prefix(kind: str, normalized: NormalizedParams) -> str:
    """Short readable label such as 'archive_2025-01_20cloud_high'. Not unique."""
    parts = ["archive" if kind == "archive_search" else kind]

    start = normalized.get("fromDate") or normalized.get("startDate")
    if start:
        parts.append(str(start)[:7])

    cloud = normalized.get("maxCloudCoveragePercent")
    if cloud is not None:
        parts.append(f"{cloud:g}cloud")

    resolution = normalized.get("resolutions") or normalized.get("resolution")
    if resolution:
        parts.append(str(resolution).split(",")[0].lower())

    return "_".join(parts)


def describe_params(normalized: NormalizedParams) -> str:
    """One-line summary of normalized parameters for log lines."""
    parts = []

    aoi = normalized.get("aoi")
    if aoi:
        parts.append(f"AOI: {aoi[:50]}{'...' if len(aoi) > 50 else ''}")

    start = normalized.get("fromDate") or normalized.get("startDate")
    end = normalized.get("toDate") or normalized.get("endDate")
    if start or end:
        parts.append(f"Dates: {start or 'N/A'} to {end or 'N/A'}")

    cloud = normalized.get("maxCloudCoveragePercent")
    if cloud is not None:
        parts.append(f"Max Cloud: {cloud:g}%")

    resolution = normalized.get("resolutions") or normalized.get("resolution")
    if resolution:
        parts.append(f"Resolutions: {resolution}")

    products = normalized.get("productTypes") or normalized.get("productType")
    if products:
        parts.append(f"Products: {products}")

    return " | ".join(parts)
