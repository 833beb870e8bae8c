"""Cache-layer exceptions.

Read and write paths (``get`` / ``set``) never raise these for storage
problems; they log and degrade to a miss. Maintenance operations raise
``StorageUnavailableError`` so operators see the failure.
"""


class CacheError(Exception):
    """Base class for cache-layer errors."""


class StorageUnavailableError(CacheError):
    """The persistence layer could not be reached or a query failed."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Cache storage unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MalformedParamsError(CacheError, ValueError):
    """Request parameters could not be canonicalized into a cache key."""

    def __init__(self, kind: str, detail: str = ""):
        self.kind = kind
        self.detail = detail
        message = f"Cannot normalize {kind} parameters"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
