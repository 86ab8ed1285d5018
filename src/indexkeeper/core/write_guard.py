"""Write guard — Routes every mutation issued against a logical name.

Outside a migration a mutation is sent once, to the alias, and the engine
resolves it to whatever index is bound at that instant. While a
:class:`DualWriteRegistration` is installed for the name, every mutation is
applied to the source index first (the system of record) and then mirrored
to the target with the version the source assigned, using external
versioning. The target therefore only ever accepts a write if it is newer
than what it already holds, which lets the snapshot copy and live writes run
side by side without overwriting each other.

Mirrors that still fail after retries are remembered per logical name; the
remap coordinator takes them with :meth:`WriteGuard.take_unmirrored` and
re-applies them from the source before and after the alias swap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from indexkeeper.core.bulk import BulkOperationBatch, is_settled, replay_versioned
from indexkeeper.core.retry import with_retries
from indexkeeper.exceptions import (
    DocumentNotFound,
    DualWriteTargetFailure,
    MigrationInProgress,
    SourceWriteFailure,
)
from indexkeeper.models.operation import BulkItemResult, Operation, OperationKind
from indexkeeper.models.remap import DualWriteRegistration
from indexkeeper.transport.base.exceptions import ConflictError, NotFoundError, TransportError
from indexkeeper.transport.base.transport import SearchTransport, WriteResult

logger = logging.getLogger(__name__)


class WriteGuard:
    """Applies document mutations, duplicating them while a migration copies data.

    Registrations are owned by the guard; the remap coordinator installs and
    removes them. Writers never wait on the coordinator.

    Args:
        transport: Engine transport.
        max_retries: Retries for transient failures of the target-side write.
        retry_backoff: Initial delay between retries in seconds.
    """

    def __init__(self, transport: SearchTransport, max_retries: int = 3, retry_backoff: float = 0.5) -> None:
        self.transport = transport
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._registrations: dict[str, DualWriteRegistration] = {}
        self._in_flight: dict[str, set[asyncio.Future[None]]] = {}
        self._unmirrored: dict[str, list[Operation]] = {}

    # ── Registrations ────────────────────────────────────────────────────

    def register(self, registration: DualWriteRegistration) -> None:
        """Start mirroring writes for ``registration.logical_name``.

        Raises:
            MigrationInProgress: If the name already has a registration.
        """
        current = self._registrations.get(registration.logical_name)
        if current is not None:
            raise MigrationInProgress(
                f"Dual write already active for '{registration.logical_name}' "
                f"({current.source} -> {current.target})."
            )
        self._registrations[registration.logical_name] = registration
        self._unmirrored.pop(registration.logical_name, None)
        logger.info(
            "Dual write enabled for %s: %s -> %s",
            registration.logical_name,
            registration.source,
            registration.target,
        )

    def unregister(self, logical_name: str) -> DualWriteRegistration | None:
        """Stop mirroring writes for the name. Returns the removed registration."""
        registration = self._registrations.pop(logical_name, None)
        if registration is not None:
            logger.info("Dual write disabled for %s", logical_name)
        return registration

    def registration(self, logical_name: str) -> DualWriteRegistration | None:
        return self._registrations.get(logical_name)

    def take_unmirrored(self, logical_name: str) -> list[Operation]:
        """Remove and return the writes whose mirror to the target failed.

        Index and delete entries carry the version the source assigned.
        Update entries carry no payload: the document has to be re-read from
        the source.
        """
        return self._unmirrored.pop(logical_name, [])

    def _record_unmirrored(self, logical_name: str, operations: list[Operation]) -> None:
        self._unmirrored.setdefault(logical_name, []).extend(operations)

    # ── In-flight tracking ───────────────────────────────────────────────

    @contextmanager
    def tracked(self, logical_name: str) -> Iterator[None]:
        """Count the enclosed block as a write in flight against ``logical_name``."""
        marker: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._in_flight.setdefault(logical_name, set()).add(marker)
        try:
            yield
        finally:
            pending = self._in_flight.get(logical_name)
            if pending is not None:
                pending.discard(marker)
                if not pending:
                    del self._in_flight[logical_name]
            marker.set_result(None)

    async def drain(self, logical_name: str) -> None:
        """Wait for every write against the name that is in flight right now.

        Writes started later are not waited for. Called after registering,
        this lets writes that only reached the alias land before the
        snapshot; called after unregistering, it lets dual writes still
        holding the old registration finish before the source is retired.
        """
        pending = list(self._in_flight.get(logical_name, ()))
        if pending:
            logger.debug("Waiting for %d in-flight write(s) to %s", len(pending), logical_name)
            await asyncio.wait(pending)

    # ── Single writes ────────────────────────────────────────────────────

    async def index(
        self, logical_name: str, doc_type: str, id: str | int, source: dict[str, Any]
    ) -> WriteResult:
        return await self.write(logical_name, Operation.index(doc_type, id, source))

    async def update(
        self, logical_name: str, doc_type: str, id: str | int, partial: dict[str, Any]
    ) -> WriteResult:
        return await self.write(logical_name, Operation.update(doc_type, id, partial))

    async def delete(self, logical_name: str, doc_type: str, id: str | int) -> WriteResult:
        return await self.write(logical_name, Operation.delete(doc_type, id))

    async def write(self, logical_name: str, operation: Operation) -> WriteResult:
        """Apply one mutation addressed through the logical name.

        Raises:
            DocumentNotFound: If an update or delete addresses a missing document.
            SourceWriteFailure: If the write to the system-of-record index fails.
            DualWriteTargetFailure: If only the mirrored write to the target failed.
        """
        with self.tracked(logical_name):
            registration = self._registrations.get(logical_name)
            if registration is None:
                return await self._apply_source(logical_name, operation)
            return await self._write_dual(registration, operation)

    async def _write_dual(self, registration: DualWriteRegistration, operation: Operation) -> WriteResult:
        logical_name = registration.logical_name
        try:
            result = await self._apply_source(registration.source, operation)
        except SourceWriteFailure as e:
            if self._registrations.get(logical_name) is not registration and isinstance(e.__cause__, NotFoundError):
                # Cut over (and source retired) while this write was in flight.
                logger.debug("Source %s retired mid-write, rerouting through %s", registration.source, logical_name)
                return await self.write(logical_name, operation)
            raise

        try:
            await with_retries(
                lambda: self._mirror(registration, operation, result),
                max_retries=self.max_retries,
                backoff=self.retry_backoff,
                description=f"mirrored {operation.kind.value} of {operation.doc_type}/{operation.id}",
            )
        except TransportError as e:
            self._record_unmirrored(logical_name, [_replayable(operation, result)])
            logger.warning(
                "Dual write to %s failed for %s/%s (source %s succeeded): %s",
                registration.target,
                operation.doc_type,
                operation.id,
                registration.source,
                e,
            )
            raise DualWriteTargetFailure(
                f"Write of {operation.doc_type}/{operation.id} reached {registration.source} "
                f"but not {registration.target}: {e}",
                result,
            ) from e
        return result

    async def _apply_source(self, index: str, operation: Operation) -> WriteResult:
        try:
            if operation.kind is OperationKind.INDEX:
                return await self.transport.index(index, operation.doc_type, operation.id, operation.source)
            if operation.kind is OperationKind.UPDATE:
                return await self.transport.update(index, operation.doc_type, operation.id, operation.source)
            return await self.transport.delete(index, operation.doc_type, operation.id)
        except NotFoundError as e:
            if operation.kind is not OperationKind.INDEX and await self.transport.index_exists(index):
                raise DocumentNotFound(f"Document {operation.doc_type}/{operation.id} not found in '{index}'.") from e
            raise SourceWriteFailure(f"Index '{index}' not found for {operation.kind.value}.") from e
        except TransportError as e:
            raise SourceWriteFailure(
                f"{operation.kind.value} of {operation.doc_type}/{operation.id} on '{index}' failed: {e}"
            ) from e

    async def _mirror(self, registration: DualWriteRegistration, operation: Operation, result: WriteResult) -> None:
        target = registration.target
        try:
            if operation.kind is OperationKind.INDEX:
                await self.transport.index(
                    target, operation.doc_type, operation.id, operation.source, version=result.version
                )
            elif operation.kind is OperationKind.DELETE:
                await self.transport.delete(target, operation.doc_type, operation.id, version=result.version)
            else:
                # Partial updates cannot be version-conditioned: copy the merged source document.
                try:
                    current = await self.transport.get(registration.source, operation.doc_type, operation.id)
                except NotFoundError:
                    return
                await self.transport.index(
                    target, current.doc_type, current.id, current.source, version=current.version
                )
        except ConflictError:
            logger.debug("Target %s already holds a newer %s/%s", target, operation.doc_type, operation.id)
        except NotFoundError:
            if operation.kind is OperationKind.DELETE:
                return
            if self._registrations.get(registration.logical_name) is not registration:
                return
            raise

    # ── Bulk writes ──────────────────────────────────────────────────────

    async def write_batch(self, logical_name: str, operations: list[Operation]) -> list[BulkItemResult]:
        """Apply many mutations in one round trip per index.

        Results describe the source-side outcome of each operation.

        Raises:
            SourceWriteFailure: If the bulk request to the source fails as a whole.
            DualWriteTargetFailure: If mirrored items could not be applied to the target.
        """
        with self.tracked(logical_name):
            registration = self._registrations.get(logical_name)
            if registration is None:
                return await self._bulk_source(logical_name, operations)
            return await self._write_batch_dual(registration, operations)

    async def _write_batch_dual(
        self, registration: DualWriteRegistration, operations: list[Operation]
    ) -> list[BulkItemResult]:
        logical_name = registration.logical_name
        try:
            results = await self._bulk_source(registration.source, operations)
        except SourceWriteFailure as e:
            if self._registrations.get(logical_name) is not registration and isinstance(e.__cause__, NotFoundError):
                return await self.write_batch(logical_name, operations)
            raise

        mirror, failed = await self._mirror_operations(registration, operations, results)
        error: TransportError | None = None
        if mirror:
            try:
                mirrored = await replay_versioned(
                    self.transport,
                    registration.target,
                    mirror,
                    max_retries=self.max_retries,
                    backoff=self.retry_backoff,
                )
            except TransportError as e:
                if isinstance(e, NotFoundError) and self._registrations.get(logical_name) is not registration:
                    return results
                error = e
                failed.extend(mirror)
            else:
                failed.extend(op for op, r in zip(mirror, mirrored, strict=True) if not is_settled(r))

        if not failed:
            return results
        self._record_unmirrored(logical_name, failed)
        logger.warning("Dual write to %s failed for %d bulk item(s)", registration.target, len(failed))
        detail = f": {error}" if error is not None else "."
        raise DualWriteTargetFailure(
            f"{len(failed)} mirrored item(s) were not applied to {registration.target}{detail}", results
        ) from error

    async def _bulk_source(self, index: str, operations: list[Operation]) -> list[BulkItemResult]:
        try:
            return await BulkOperationBatch(self.transport, index, operations).execute()
        except TransportError as e:
            raise SourceWriteFailure(f"Bulk request to '{index}' failed: {e}") from e

    async def _mirror_operations(
        self,
        registration: DualWriteRegistration,
        operations: list[Operation],
        results: list[BulkItemResult],
    ) -> tuple[list[Operation], list[Operation]]:
        """Version-conditioned target operations for every successful source item.

        Also returns the updates whose merged document could not be read back.
        """
        mirror: list[Operation] = []
        unread: list[Operation] = []
        for operation, result in zip(operations, results, strict=True):
            if not result.ok or result.version is None:
                continue
            if operation.kind is OperationKind.INDEX:
                mirror.append(Operation.index(operation.doc_type, operation.id, operation.source, result.version))
            elif operation.kind is OperationKind.DELETE:
                mirror.append(Operation.delete(operation.doc_type, operation.id, result.version))
            else:
                try:
                    current = await self.transport.get(registration.source, operation.doc_type, operation.id)
                except NotFoundError:
                    continue
                except TransportError as e:
                    logger.debug(
                        "Re-reading %s/%s from %s failed: %s",
                        operation.doc_type,
                        operation.id,
                        registration.source,
                        e,
                    )
                    unread.append(Operation.update(operation.doc_type, operation.id, {}))
                    continue
                mirror.append(Operation.index(current.doc_type, current.id, current.source, current.version))
        return mirror, unread


def _replayable(operation: Operation, result: WriteResult) -> Operation:
    """The versioned form of a source write, for re-applying it to the target later."""
    if operation.kind is OperationKind.INDEX:
        return Operation.index(operation.doc_type, operation.id, operation.source, result.version)
    if operation.kind is OperationKind.DELETE:
        return Operation.delete(operation.doc_type, operation.id, result.version)
    return Operation.update(operation.doc_type, operation.id, {})
