"""Alias index strategy — A logical name over versioned concrete generations.

Applications only ever use the logical name. Reads go to the alias; writes
go through the shared :class:`WriteGuard`, so they stay correct while a
:class:`RemapCoordinator` migration is moving the documents to a new
generation.
"""

from __future__ import annotations

import logging
from typing import Any

from indexkeeper.config.settings import MigrationSettings
from indexkeeper.core.alias import AliasResolver
from indexkeeper.core.bulk import BulkOperationBatch
from indexkeeper.core.coordinator import MigrationHandle, RemapCoordinator
from indexkeeper.core.index import IndexHandle, generation_pattern
from indexkeeper.core.write_guard import WriteGuard
from indexkeeper.exceptions import AliasNotFound, DocumentNotFound, IndexAlreadyExists
from indexkeeper.models.document import VersionedDocument
from indexkeeper.models.operation import BulkItemResult, Operation
from indexkeeper.strategies.base import IndexStrategy, scoped_query
from indexkeeper.transport.base.exceptions import NotFoundError
from indexkeeper.transport.base.transport import SearchTransport

logger = logging.getLogger(__name__)


class GuardedBatch(BulkOperationBatch):
    """Bulk batch executed through a write guard."""

    def __init__(self, guard: WriteGuard, logical_name: str) -> None:
        super().__init__(guard.transport, logical_name)
        self.guard = guard

    async def execute(self) -> list[BulkItemResult]:
        if not self.operations:
            return []
        operations, self.operations = self.operations, []
        return await self.guard.write_batch(self.index_name, operations)


class AliasIndex(IndexStrategy):
    """Stores documents behind an alias that can be remapped without downtime.

    Args:
        transport: Engine transport.
        index_name: Logical name (the alias).
        doc_type: Default document type.
        definition: Index definition used by ``create`` and ``remap``.
        guard: Write guard shared by every writer of this name in the process.
        coordinator: Remap coordinator; built around ``guard`` if omitted.
        settings: Migration tuning for a coordinator built here.
    """

    def __init__(
        self,
        transport: SearchTransport,
        index_name: str,
        doc_type: str = "_doc",
        definition: dict[str, Any] | None = None,
        guard: WriteGuard | None = None,
        coordinator: RemapCoordinator | None = None,
        settings: MigrationSettings | None = None,
    ) -> None:
        super().__init__(transport, index_name, doc_type, definition)
        settings = settings or MigrationSettings()
        self.guard = guard or (
            coordinator.guard
            if coordinator
            else WriteGuard(transport, max_retries=settings.max_retries, retry_backoff=settings.retry_backoff)
        )
        self.coordinator = coordinator or RemapCoordinator(transport, self.guard, settings)
        self.resolver = AliasResolver(transport)

    @property
    def ref_index_name(self) -> str:
        return self.index_name

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def missing(self) -> bool:
        return not await self.resolver.bound_indices(self.index_name)

    async def create(self, definition: dict[str, Any] | None = None) -> None:
        """Create the first generation and bind the alias to it in one request."""
        if definition is not None:
            self.definition = definition
        if not await self.missing():
            raise IndexAlreadyExists(self.index_name)
        generation = IndexHandle.new_generation(self.transport, self.index_name)
        await generation.create(self.definition, aliases=[self.index_name])
        logger.info("Created %s as %s", self.index_name, generation.name)

    async def delete(self) -> None:
        """Delete every generation of the logical name, bound or orphaned.

        Raises:
            AliasNotFound: If the alias is not bound.
        """
        bound = await self.resolver.bound_indices(self.index_name)
        if not bound:
            raise AliasNotFound(f"Alias '{self.index_name}' is not bound to any index.")
        pattern = generation_pattern(self.index_name)
        generations = {n for n in await self.transport.list_indices(f"{self.index_name}-*") if pattern.match(n)}
        for name in sorted(generations | set(bound)):
            try:
                await self.transport.delete_index(name)
            except NotFoundError:
                continue
            logger.info("Deleted %s generation %s", self.index_name, name)

    async def remap(self, definition: dict[str, Any] | None = None) -> MigrationHandle:
        """Migrate to a new definition and wait for the cutover.

        Without a ``definition`` the live index's current mapping is reused,
        which still rebuilds every document into a fresh generation.
        """
        if definition is not None:
            self.definition = definition
        target_definition = self.definition or {"mappings": await self.mapping() or {}}
        return await self.coordinator.run(self.index_name, target_definition)

    def start_remap(self, definition: dict[str, Any] | None = None) -> MigrationHandle:
        """Start a migration in the background and return its handle."""
        if definition is not None:
            self.definition = definition
        return self.coordinator.migrate(self.index_name, self.definition)

    async def settings(self) -> dict[str, Any] | None:
        try:
            index = await self.resolver.resolve(self.index_name)
        except AliasNotFound:
            return None
        return await index.settings()

    async def mapping(self) -> dict[str, Any] | None:
        try:
            index = await self.resolver.resolve(self.index_name)
        except AliasNotFound:
            return None
        return await index.mapping()

    # ── Documents ────────────────────────────────────────────────────────

    async def index_document(self, doc_type: str, id: str | int, attributes: dict[str, Any]) -> tuple[str, bool]:
        result = await self.guard.index(self.index_name, doc_type, id, attributes)
        return result.id, result.created

    async def update_document(self, doc_type: str, id: str | int, partial: dict[str, Any]) -> int:
        result = await self.guard.update(self.index_name, doc_type, id, partial)
        return result.version

    async def delete_document(self, doc_type: str, id: str | int) -> None:
        await self.guard.delete(self.index_name, doc_type, id)

    async def get_document(self, doc_type: str, id: str | int) -> VersionedDocument:
        try:
            return await self.transport.get(self.index_name, doc_type, str(id))
        except NotFoundError as e:
            raise DocumentNotFound(f"Document {doc_type}/{id} not found in '{self.index_name}'.") from e

    async def delete_by_query(self, doc_type: str | None, query: dict[str, Any]) -> int:
        """Delete matching documents.

        During a migration the matches are read from the source and deleted
        one by one through the write guard, so the deletes reach the target
        as versioned tombstones. The whole call counts as one write in flight,
        so a migration starting meanwhile waits for it before copying.
        """
        with self.guard.tracked(self.index_name):
            registration = self.guard.registration(self.index_name)
            if registration is None:
                return await self.transport.delete_by_query(self.index_name, doc_type, query)

            deleted = 0
            async for documents in self.transport.scan(registration.source, query=scoped_query(doc_type, query)):
                operations = [Operation.delete(d.doc_type, d.id) for d in documents]
                results = await self.guard.write_batch(self.index_name, operations)
                deleted += sum(1 for r in results if r.ok)
            return deleted

    def new_batch(self) -> BulkOperationBatch:
        return GuardedBatch(self.guard, self.index_name)
