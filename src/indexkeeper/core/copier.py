"""Snapshot copier — Copies every document of one index into another.

The source is read through a point-in-time scan in bounded batches. Each
batch is written to the target with the version each document carries in the
source (external versioning), the same rule the write guard uses for live
writes. Whichever of the two carries the higher version for a document wins,
so a stale copy never overwrites a live write, and copying twice changes
nothing.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable

from indexkeeper.core.bulk import is_settled, replay_versioned
from indexkeeper.core.index import IndexHandle
from indexkeeper.core.retry import with_retries
from indexkeeper.exceptions import CopyPassFailure
from indexkeeper.models.operation import Operation, OperationKind
from indexkeeper.transport.base.exceptions import NotFoundError, TransportError, is_retryable

logger = logging.getLogger(__name__)


class SnapshotCopier:
    """Batched, version-conditioned copy from a source index to a target index.

    Args:
        batch_size: Documents per scan page and per bulk request.
        max_retries: Retries for transient failures, per batch and per scan.
        retry_backoff: Initial delay between retries in seconds.
    """

    def __init__(self, batch_size: int = 500, max_retries: int = 3, retry_backoff: float = 0.5) -> None:
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    async def copy(
        self,
        source: IndexHandle,
        target: IndexHandle,
        on_progress: Callable[[int], None] | None = None,
    ) -> int:
        """Copy all documents of ``source`` into ``target``.

        A scan that breaks off with a transient error restarts from the
        beginning; batches already written are simply rejected as conflicts
        the second time.

        Args:
            source: Index to read from.
            target: Index to write to.
            on_progress: Called with the running number of copied documents
                after every batch.

        Returns:
            Number of documents read from the source in the completed pass.

        Raises:
            CopyPassFailure: If a batch cannot be written after all retries,
                or the scan keeps failing.
        """
        logger.info("Copying %s -> %s in batches of %d", source.name, target.name, self.batch_size)
        attempt = 0
        while True:
            try:
                copied = await self._copy_pass(source, target, on_progress)
            except TransportError as e:
                if not is_retryable(e) or attempt >= self.max_retries:
                    raise CopyPassFailure(f"Snapshot copy {source.name} -> {target.name} failed: {e}") from e
                delay = self.retry_backoff * (2**attempt)
                attempt += 1
                logger.warning(
                    "Scan of %s failed (attempt %d/%d), restarting copy in %.2fs: %s",
                    source.name,
                    attempt,
                    1 + self.max_retries,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
                continue
            logger.info("Copied %d documents from %s to %s", copied, source.name, target.name)
            return copied

    async def recopy(self, source: IndexHandle, target: IndexHandle, operations: list[Operation]) -> int:
        """Re-apply writes that reached ``source`` but not ``target``.

        Index and delete entries are replayed with the version the source
        assigned them. Update entries name a document that is re-read from
        the source first; one the source no longer holds is skipped, since
        its delete either reached the target or is among ``operations``.

        Returns:
            Number of operations written to the target.

        Raises:
            CopyPassFailure: If a document cannot be re-read or written.
        """
        replay: list[Operation] = []
        for operation in operations:
            if operation.kind is not OperationKind.UPDATE:
                replay.append(operation)
                continue
            try:
                document = await with_retries(
                    functools.partial(source.transport.get, source.name, operation.doc_type, operation.id),
                    max_retries=self.max_retries,
                    backoff=self.retry_backoff,
                    description=f"re-read of {operation.doc_type}/{operation.id}",
                )
            except NotFoundError:
                continue
            except TransportError as e:
                raise CopyPassFailure(
                    f"Re-reading {operation.doc_type}/{operation.id} from {source.name} failed: {e}"
                ) from e
            replay.append(Operation.index(document.doc_type, document.id, document.source, document.version))

        if replay:
            await self._write_batch(target, replay)
        logger.info("Re-applied %d missed write(s) from %s to %s", len(replay), source.name, target.name)
        return len(replay)

    async def _copy_pass(
        self,
        source: IndexHandle,
        target: IndexHandle,
        on_progress: Callable[[int], None] | None,
    ) -> int:
        copied = 0
        async for documents in source.transport.scan(source.name, batch_size=self.batch_size):
            operations = [Operation.index(d.doc_type, d.id, d.source, d.version) for d in documents]
            await self._write_batch(target, operations)
            copied += len(documents)
            if on_progress is not None:
                on_progress(copied)
            logger.debug("Copied %d documents so far into %s", copied, target.name)
        return copied

    async def _write_batch(self, target: IndexHandle, operations: list[Operation]) -> None:
        try:
            results = await replay_versioned(
                target.transport,
                target.name,
                operations,
                max_retries=self.max_retries,
                backoff=self.retry_backoff,
            )
        except TransportError as e:
            raise CopyPassFailure(f"Bulk copy into {target.name} failed: {e}") from e

        failed = [r for r in results if not is_settled(r)]
        if failed:
            sample = "; ".join(f"{r.id}: {r.error}" for r in failed[:3])
            raise CopyPassFailure(f"{len(failed)} document(s) could not be copied into {target.name}: {sample}")
