"""
Custom exception hierarchy for sungura.

Cache storage errors never leave the offline controller. Remote and
validation errors reach sync callers wrapped in the sync-level errors below.
"""

from __future__ import annotations

from typing import Any


class SunguraError(Exception):
    """Root of the sungura error hierarchy.

    Every error carries a human-readable ``message`` and a ``context`` dict
    of structured fields (farm, store, path, status...) that callers pass
    straight to the logger.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context) if context else {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = "; ".join(f"{key}: {value}" for key, value in self.context.items())
        return f"{self.message} [{details}]"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} message={self.message!r} context={self.context!r}>"


class ConfigurationError(SunguraError):
    """Raised when configuration is invalid or missing.

    Examples:
        - A write request with no API_TOKEN configured
    """

    pass


class CacheStorageError(SunguraError):
    """Raised by a cache storage backend when an operation fails.

    The offline controller never lets this escape a request; it degrades
    to network-only behavior instead.

    Context should include:
        - store: The cache store name
        - operation: open, match, put, delete, keys or estimate
    """

    pass


class QuotaExceededError(CacheStorageError):
    """Raised when a cache write cannot fit within the storage quota.

    Context should include:
        - usage: Current usage in bytes
        - quota: Quota in bytes
        - size: Size of the rejected entry
    """

    pass


class InstallError(SunguraError):
    """Raised when the essential install phase cannot be cached as a unit.

    Context should include:
        - path: The manifest path that failed
        - error: The underlying error
    """

    pass


class RemoteAPIError(SunguraError):
    """Raised when a call to the farm REST API fails.

    Attributes:
        status_code: HTTP status code, None when no response arrived.
        retryable: Whether the reconciliation retry policy may retry it.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code
        self.retryable = retryable


class RemoteWriteError(RemoteAPIError):
    """Raised when a create, update or removal is rejected by the server.

    The local snapshot is left untouched when this is raised.
    """

    pass


class ResponseValidationError(SunguraError):
    """Raised when the server returns data that fails schema validation.

    Context should include:
        - entity: The entity kind being parsed
        - errors: List of field-level error messages
    """

    pass


class ReconcileError(SunguraError):
    """Raised when a reconciliation fetch fails after all retries.

    Attributes:
        stale: The local snapshot that remains the rendered source.
    """

    def __init__(
        self,
        message: str,
        stale: list[Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.stale = stale or []


class SnapshotConflictError(SunguraError):
    """Raised when a compare-and-swap save sees an unexpected version.

    Context should include:
        - key: The snapshot key
        - expected_version: The version the writer read
        - current_version: The version found at write time
    """

    pass
