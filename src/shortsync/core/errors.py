"""
Exception taxonomy for shortsync.

- ConfigError: invalid links file or tool configuration (raised before any sync).
- DomainNotFound / UpstreamError: observed state cannot be read completely.
  Both abort the run: reconciling against a partial view risks wrong deletes.
- OperationError: one create/update/delete failed. The executor records it
  in SyncResult.errors and moves on.
"""

from __future__ import annotations

from typing import Optional


class ShortsyncError(Exception):
    """Base class for all shortsync errors."""


class ConfigError(ShortsyncError):
    """Raised when the links file or the tool configuration is invalid."""


class DomainNotFound(ShortsyncError):
    """Raised when a desired domain is not registered in the Short.io account."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"Domain not found: {domain}")
        self.domain = domain


class UpstreamError(ShortsyncError):
    """Raised when listing remote state fails (transport or service error)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message if cause is None else f"{message}: {cause}")
        self.cause = cause


class OperationError(ShortsyncError):
    """A single create/update/delete failed."""

    def __init__(self, operation: str, key: str, detail: str) -> None:
        super().__init__(f"Failed to {operation} {key}: {detail}")
        self.operation = operation
        self.key = key
        self.detail = detail
