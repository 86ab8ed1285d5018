"""Single index strategy — Documents live in one fixed concrete index."""

from __future__ import annotations

from typing import Any

from indexkeeper.core.bulk import BulkOperationBatch
from indexkeeper.core.index import IndexHandle
from indexkeeper.exceptions import DocumentNotFound, IndexAlreadyExists
from indexkeeper.models.document import VersionedDocument
from indexkeeper.strategies.base import IndexStrategy
from indexkeeper.transport.base.exceptions import NotFoundError


class SingleIndex(IndexStrategy):
    """Stores documents in a single index named exactly ``index_name``.

    Changing the mapping requires recreating the index; use ``AliasIndex``
    for remapping without downtime.
    """

    @property
    def _handle(self) -> IndexHandle:
        return IndexHandle(self.transport, self.index_name)

    async def missing(self) -> bool:
        return not await self._handle.exists()

    async def create(self, definition: dict[str, Any] | None = None) -> None:
        if not await self.missing():
            raise IndexAlreadyExists(self.index_name)
        await self._handle.create(definition if definition is not None else self.definition)

    async def delete(self) -> None:
        await self._handle.delete()

    async def remap(self, definition: dict[str, Any] | None = None) -> Any:
        raise NotImplementedError("SingleIndex cannot remap; use AliasIndex for zero-downtime remapping.")

    async def settings(self) -> dict[str, Any] | None:
        return await self._handle.settings()

    async def mapping(self) -> dict[str, Any] | None:
        return await self._handle.mapping()

    async def index_document(self, doc_type: str, id: str | int, attributes: dict[str, Any]) -> tuple[str, bool]:
        result = await self.transport.index(self.index_name, doc_type, str(id), attributes)
        return result.id, result.created

    async def update_document(self, doc_type: str, id: str | int, partial: dict[str, Any]) -> int:
        try:
            result = await self.transport.update(self.index_name, doc_type, str(id), partial)
        except NotFoundError as e:
            raise DocumentNotFound(f"Document {doc_type}/{id} not found in '{self.index_name}'.") from e
        return result.version

    async def delete_document(self, doc_type: str, id: str | int) -> None:
        try:
            await self.transport.delete(self.index_name, doc_type, str(id))
        except NotFoundError as e:
            raise DocumentNotFound(f"Document {doc_type}/{id} not found in '{self.index_name}'.") from e

    async def get_document(self, doc_type: str, id: str | int) -> VersionedDocument:
        try:
            return await self.transport.get(self.index_name, doc_type, str(id))
        except NotFoundError as e:
            raise DocumentNotFound(f"Document {doc_type}/{id} not found in '{self.index_name}'.") from e

    async def delete_by_query(self, doc_type: str | None, query: dict[str, Any]) -> int:
        return await self.transport.delete_by_query(self.index_name, doc_type, query)

    def new_batch(self) -> BulkOperationBatch:
        return BulkOperationBatch(self.transport, self.index_name)
