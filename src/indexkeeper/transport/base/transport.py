"""Base search transport — Abstract interface to the remote search engine.

Every engine backend must implement this interface. The transport is
responsible for:
  1. Index lifecycle (create, delete, refresh, mapping and settings reads)
  2. Per-document get / index / update / delete, optionally version-conditioned
  3. Atomic multi-action alias updates
  4. Bulk requests with per-item outcomes
  5. Full scans of an index in batches
  6. Searches and multi-searches

Document types are stored in a ``doc_type`` payload field; the engine itself
sees one mapping type per index.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any

from pydantic import BaseModel, Field

from indexkeeper.models.document import VersionedDocument
from indexkeeper.models.operation import BulkItemResult, Operation


class TransportHealth(BaseModel):
    """Health status of a search transport."""

    status: str = Field(description="Health status: healthy, degraded, unhealthy")
    latency_ms: int = Field(default=0, description="Latency of last health check in ms")
    message: str | None = Field(default=None, description="Additional health message")


class WriteResult(BaseModel):
    """Outcome of a single-document write."""

    index: str = Field(description="Concrete index the write landed in")
    id: str = Field(description="Document identifier")
    version: int = Field(description="Version of the document after the write")
    result: str = Field(description="Engine result: created, updated, deleted, not_found")

    @property
    def created(self) -> bool:
        return self.result == "created"


class SearchTransport(ABC):
    """Abstract base class for search engine transports.

    Transports should be safe to share between concurrent tasks. Connection
    pooling and timeouts are configured during initialization.

    Write methods accept either a concrete index name or an alias bound to a
    single index. ``version`` arguments switch the call to external
    versioning: the engine applies the write only if ``version`` is strictly
    greater than the stored version (or tombstone) and raises
    ``ConflictError`` otherwise.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique transport name (e.g., 'opensearch', 'memory')."""

    async def initialize(self) -> None:
        """Initialize the transport (connections, pools, etc.)."""

    async def shutdown(self) -> None:
        """Release connections held by the transport."""

    @abstractmethod
    async def health_check(self) -> TransportHealth:
        """Report the health of the engine."""

    # ── Index lifecycle ──────────────────────────────────────────────────

    @abstractmethod
    async def create_index(self, name: str, body: dict[str, Any]) -> None:
        """Create a concrete index from a definition (settings + mappings).

        Raises:
            ConflictError: If the index already exists.
        """

    @abstractmethod
    async def delete_index(self, name: str) -> None:
        """Delete a concrete index.

        Raises:
            NotFoundError: If the index does not exist.
        """

    @abstractmethod
    async def index_exists(self, name: str) -> bool:
        """Return True if a concrete index or alias with this name exists."""

    @abstractmethod
    async def list_indices(self, pattern: str) -> list[str]:
        """Return concrete index names matching a wildcard pattern."""

    @abstractmethod
    async def refresh(self, name: str) -> None:
        """Make all writes to the index visible to searches and scans."""

    @abstractmethod
    async def get_mapping(self, name: str) -> dict[str, Any] | None:
        """Return the mapping of the index, or None if it does not exist."""

    @abstractmethod
    async def get_settings(self, name: str) -> dict[str, Any] | None:
        """Return the settings of the index, or None if it does not exist."""

    # ── Aliases ──────────────────────────────────────────────────────────

    @abstractmethod
    async def get_alias(self, alias: str) -> list[str]:
        """Return the concrete indices the alias is bound to (empty if unbound)."""

    @abstractmethod
    async def update_aliases(self, actions: Sequence[dict[str, Any]]) -> None:
        """Apply ``add`` / ``remove`` alias actions as one indivisible unit.

        A ``remove`` action carrying ``must_exist: True`` fails the whole
        request when that binding is absent.

        Raises:
            NotFoundError: If a referenced binding or index is missing.
        """

    # ── Documents ────────────────────────────────────────────────────────

    @abstractmethod
    async def get(self, index: str, doc_type: str, id: str) -> VersionedDocument:
        """Fetch a document.

        Raises:
            NotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def index(
        self,
        index: str,
        doc_type: str,
        id: str,
        source: dict[str, Any],
        version: int | None = None,
    ) -> WriteResult:
        """Create or replace a document."""

    @abstractmethod
    async def update(self, index: str, doc_type: str, id: str, partial: dict[str, Any]) -> WriteResult:
        """Merge a partial document into a stored one.

        Raises:
            NotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def delete(self, index: str, doc_type: str, id: str, version: int | None = None) -> WriteResult:
        """Delete a document.

        With a ``version`` the engine records a tombstone even when the
        document is absent.

        Raises:
            NotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def delete_by_query(self, index: str, doc_type: str | None, query: dict[str, Any]) -> int:
        """Delete every document matching a query. Returns the number deleted."""

    # ── Bulk & scan ──────────────────────────────────────────────────────

    @abstractmethod
    async def bulk(self, index: str, operations: Sequence[Operation]) -> list[BulkItemResult]:
        """Submit operations in one request; results are in submission order."""

    @abstractmethod
    def scan(
        self,
        index: str,
        batch_size: int = 500,
        query: dict[str, Any] | None = None,
    ) -> AsyncIterator[list[VersionedDocument]]:
        """Iterate over a point-in-time view of the index in batches."""

    # ── Search ───────────────────────────────────────────────────────────

    @abstractmethod
    async def search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        """Run a search and return the raw response."""

    @abstractmethod
    async def msearch(self, searches: Sequence[tuple[str, dict[str, Any]]]) -> list[dict[str, Any]]:
        """Run ``(index, body)`` searches in one round trip; responses in order."""

    @abstractmethod
    async def count(self, index: str, doc_type: str | None = None) -> int:
        """Count documents, optionally restricted to a document type."""
