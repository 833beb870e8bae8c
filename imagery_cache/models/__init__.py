"""SQLAlchemy ORM models."""

from imagery_cache.models.archive_search import ArchiveSearch
from imagery_cache.models.base import Base
from imagery_cache.models.feasibility import FeasibilityResult
from imagery_cache.models.order import CachedOrder

__all__ = ["Base", "ArchiveSearch", "FeasibilityResult", "CachedOrder"]
