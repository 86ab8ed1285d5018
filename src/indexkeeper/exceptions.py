"""Errors raised by index lifecycle, persistence and migration operations."""

from __future__ import annotations

from typing import Any


class IndexKeeperError(Exception):
    """Base exception for indexkeeper errors."""


class IndexAlreadyExists(IndexKeeperError):
    """Raised when creating an index (or alias) that already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Index '{name}' already exists.")
        self.name = name


class IndexMissing(IndexKeeperError):
    """Raised when an operation expects an index or alias binding that is absent."""


class AliasNotFound(IndexMissing):
    """Raised when a logical name is not bound to any concrete index."""


class ConcreteIndexMissing(IndexMissing):
    """Raised when a concrete index expected to exist does not."""


class AliasSwapConflict(IndexKeeperError):
    """Raised when the alias no longer points at the expected source index.

    Indicates a concurrent, conflicting migration; never retried.
    """

    def __init__(self, logical_name: str, expected: str, actual: list[str]) -> None:
        super().__init__(
            f"Alias '{logical_name}' expected to be bound to '{expected}', "
            f"found {actual or 'no binding'}."
        )
        self.logical_name = logical_name
        self.expected = expected
        self.actual = actual


class MigrationInProgress(IndexKeeperError):
    """Raised when a migration is requested for a name that is already migrating."""


class DocumentNotFound(IndexKeeperError):
    """Raised when a requested document does not exist."""


class SourceWriteFailure(IndexKeeperError):
    """Raised when a write to the system-of-record index fails."""


class DualWriteTargetFailure(IndexKeeperError):
    """Raised when the target-side write of a dual write fails.

    The source write already succeeded and is not rolled back; ``result``
    holds the source outcome.
    """

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class CopyPassFailure(IndexKeeperError):
    """Raised when a snapshot copy batch still fails after all retries."""


class BulkItemsFailed(IndexKeeperError):
    """Raised by callers that require every item of a bulk request to succeed."""

    def __init__(self, failures: list[Any]) -> None:
        super().__init__(f"{len(failures)} bulk item(s) failed.")
        self.failures = failures
