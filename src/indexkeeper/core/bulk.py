"""Bulk operation batch — Many mutations in one round trip."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from indexkeeper.exceptions import BulkItemsFailed
from indexkeeper.models.operation import BulkItemResult, Operation, OperationKind
from indexkeeper.transport.base.exceptions import TransportError, is_retryable
from indexkeeper.transport.base.transport import SearchTransport

logger = logging.getLogger(__name__)


class BulkOperationBatch:
    """Ordered, heterogeneous mutations submitted as a single bulk request.

    The request is atomic only at the transport level: each item succeeds or
    fails on its own and :meth:`execute` reports one result per operation, in
    submission order.

    Example:
        >>> batch = BulkOperationBatch(transport, "users")
        >>> batch.index("user", 1, {"name": "John"}).delete("user", 2)
        >>> results = await batch.execute()
    """

    def __init__(self, transport: SearchTransport, index: str, operations: list[Operation] | None = None) -> None:
        self.transport = transport
        self.index_name = index
        self.operations: list[Operation] = list(operations or [])

    def __len__(self) -> int:
        return len(self.operations)

    def add(self, operation: Operation) -> BulkOperationBatch:
        self.operations.append(operation)
        return self

    def index(
        self, doc_type: str, id: str | int, source: dict[str, Any], version: int | None = None
    ) -> BulkOperationBatch:
        return self.add(Operation.index(doc_type, id, source, version))

    def update(self, doc_type: str, id: str | int, partial: dict[str, Any]) -> BulkOperationBatch:
        return self.add(Operation.update(doc_type, id, partial))

    def delete(self, doc_type: str, id: str | int, version: int | None = None) -> BulkOperationBatch:
        return self.add(Operation.delete(doc_type, id, version))

    async def execute(self) -> list[BulkItemResult]:
        """Submit all queued operations and clear the batch."""
        if not self.operations:
            return []
        operations, self.operations = self.operations, []
        results = await self.transport.bulk(self.index_name, operations)
        failed = sum(1 for r in results if not r.ok)
        logger.debug("Bulk request to %s: %d items, %d not ok", self.index_name, len(results), failed)
        return results


def is_settled(result: BulkItemResult) -> bool:
    """True if a version-conditioned item needs no further attempts.

    A conflict means a newer version is already stored; a delete that found
    nothing still left its tombstone.
    """
    if result.ok or result.conflict:
        return True
    return result.action is OperationKind.DELETE and result.not_found and result.error is None


async def replay_versioned(
    transport: SearchTransport,
    index: str,
    operations: list[Operation],
    *,
    max_retries: int,
    backoff: float,
) -> list[BulkItemResult]:
    """Submit version-conditioned operations, resubmitting transiently failed items.

    Versioned writes are idempotent, so whole requests and individual items
    can be replayed safely. Returns the final result of every operation in
    submission order; items still failing after ``max_retries`` keep their
    last result.

    Raises:
        TransportError: If the request itself fails with a non-retryable
            error, or with a retryable one on the last attempt.
    """
    results: list[BulkItemResult | None] = [None] * len(operations)
    pending = list(range(len(operations)))

    for attempt in range(1 + max_retries):
        if attempt:
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                "Replaying %d bulk item(s) to %s (attempt %d/%d) in %.2fs",
                len(pending),
                index,
                attempt + 1,
                1 + max_retries,
                delay,
            )
            await asyncio.sleep(delay)

        batch = BulkOperationBatch(transport, index, [operations[i] for i in pending])
        try:
            item_results = await batch.execute()
        except TransportError as e:
            if not is_retryable(e) or attempt == max_retries:
                raise
            logger.warning("Bulk request to %s failed: %s", index, e)
            continue

        retry: list[int] = []
        for i, result in zip(pending, item_results, strict=True):
            results[i] = result
            if result.retryable:
                retry.append(i)
        pending = retry
        if not pending:
            break

    return [r for r in results if r is not None]


def raise_on_error(results: list[BulkItemResult], ignore_not_found: bool = True) -> list[BulkItemResult]:
    """Raise :class:`BulkItemsFailed` if any item failed.

    Deletes of already-missing documents count as success unless
    ``ignore_not_found`` is False.
    """
    failures = [r for r in results if not r.ok and not (ignore_not_found and r.not_found and r.error is None)]
    if failures:
        raise BulkItemsFailed(failures)
    return results
