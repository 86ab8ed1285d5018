"""Index strategy interface — How a document class is stored in the engine.

A strategy owns the index lifecycle and per-document persistence for one
index name. Two strategies ship with indexkeeper:
  - ``SingleIndex``: one fixed concrete index; no remapping.
  - ``AliasIndex``: a logical name over versioned generations, remappable
    without downtime.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any

from indexkeeper.core.bulk import BulkOperationBatch
from indexkeeper.models.document import DOC_TYPE_FIELD, VersionedDocument
from indexkeeper.models.operation import BulkItemResult
from indexkeeper.models.search import SearchResults
from indexkeeper.transport.base.transport import SearchTransport


def scoped_query(doc_type: str | None, query: dict[str, Any] | None) -> dict[str, Any] | None:
    """Restrict a query to one document type."""
    if doc_type is None:
        return query
    clauses: list[dict[str, Any]] = [{"term": {DOC_TYPE_FIELD: doc_type}}]
    if query:
        clauses.append(query)
    return {"bool": {"filter": clauses}}


class IndexStrategy(ABC):
    """Abstract base class for index strategies.

    Args:
        transport: Engine transport.
        index_name: Index (or logical) name the strategy manages.
        doc_type: Default document type for bulk helpers and searches.
        definition: Index definition (settings + mappings) used by ``create``.
    """

    def __init__(
        self,
        transport: SearchTransport,
        index_name: str,
        doc_type: str = "_doc",
        definition: dict[str, Any] | None = None,
    ) -> None:
        self.transport = transport
        self.index_name = index_name
        self.doc_type = doc_type
        self.definition = definition or {}
        self.last_bulk_results: list[BulkItemResult] = []

    @property
    def ref_index_name(self) -> str:
        """Name identifying the strategy's storage."""
        return self.index_name

    @property
    def search_index(self) -> str:
        """Name searches are sent to."""
        return self.index_name

    # ── Lifecycle ────────────────────────────────────────────────────────

    @abstractmethod
    async def missing(self) -> bool:
        """True if the index does not exist yet."""

    @abstractmethod
    async def create(self, definition: dict[str, Any] | None = None) -> None:
        """Create the index.

        Raises:
            IndexAlreadyExists: If it already exists.
        """

    @abstractmethod
    async def delete(self) -> None:
        """Delete the index and everything stored in it."""

    async def create_if_undefined(self, definition: dict[str, Any] | None = None) -> None:
        if await self.missing():
            await self.create(definition)

    async def delete_if_defined(self) -> None:
        if not await self.missing():
            await self.delete()

    async def recreate(self, definition: dict[str, Any] | None = None) -> None:
        await self.delete_if_defined()
        await self.create(definition)

    @abstractmethod
    async def remap(self, definition: dict[str, Any] | None = None) -> Any:
        """Move the stored documents to an index built from a new definition."""

    @abstractmethod
    async def settings(self) -> dict[str, Any] | None:
        """Settings of the live index, or None if missing."""

    @abstractmethod
    async def mapping(self) -> dict[str, Any] | None:
        """Mapping of the live index, or None if missing."""

    async def flush(self) -> None:
        """Make all writes visible to searches."""
        await self.transport.refresh(self.search_index)

    # ── Documents ────────────────────────────────────────────────────────

    @abstractmethod
    async def index_document(self, doc_type: str, id: str | int, attributes: dict[str, Any]) -> tuple[str, bool]:
        """Create or replace a document. Returns ``(id, created)``."""

    @abstractmethod
    async def update_document(self, doc_type: str, id: str | int, partial: dict[str, Any]) -> int:
        """Merge attributes into a stored document. Returns the new version."""

    @abstractmethod
    async def delete_document(self, doc_type: str, id: str | int) -> None:
        """Delete a document.

        Raises:
            DocumentNotFound: If it does not exist.
        """

    @abstractmethod
    async def get_document(self, doc_type: str, id: str | int) -> VersionedDocument:
        """Fetch a document.

        Raises:
            DocumentNotFound: If it does not exist.
        """

    @abstractmethod
    async def delete_by_query(self, doc_type: str | None, query: dict[str, Any]) -> int:
        """Delete all documents matching a query. Returns the number deleted."""

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, body: dict[str, Any] | None = None, doc_type: str | None = None) -> SearchResults:
        body = dict(body or {})
        query = scoped_query(doc_type, body.get("query"))
        if query is not None:
            body["query"] = query
        response = await self.transport.search(self.search_index, body)
        return SearchResults.from_response(response)

    async def count(self, doc_type: str | None = None) -> int:
        return await self.transport.count(self.search_index, doc_type)

    # ── Bulk ─────────────────────────────────────────────────────────────

    @abstractmethod
    def new_batch(self) -> BulkOperationBatch:
        """A bulk batch whose ``execute`` writes through this strategy."""

    @asynccontextmanager
    async def bulk(self) -> AsyncIterator[BulkOperationBatch]:
        """Collect operations and submit them in one request on exit.

        Example:
            >>> async with strategy.bulk() as batch:
            ...     batch.index("user", 1, {"name": "John"})
            ...     batch.delete("user", 2)
        """
        batch = self.new_batch()
        yield batch
        self.last_bulk_results = await batch.execute()

    async def bulk_index(self, documents: Iterable[tuple[str | int, dict[str, Any]]]) -> list[BulkItemResult]:
        batch = self.new_batch()
        for id, attributes in documents:
            batch.index(self.doc_type, id, attributes)
        return await batch.execute()

    async def bulk_update(self, updates: Iterable[tuple[str | int, dict[str, Any]]]) -> list[BulkItemResult]:
        batch = self.new_batch()
        for id, partial in updates:
            batch.update(self.doc_type, id, partial)
        return await batch.execute()

    async def bulk_delete(self, ids: Iterable[str | int]) -> list[BulkItemResult]:
        batch = self.new_batch()
        for id in ids:
            batch.delete(self.doc_type, id)
        return await batch.execute()
