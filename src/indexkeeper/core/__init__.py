"""Persistence core — Index handles, alias resolution, dual writes and remapping."""

from indexkeeper.core.alias import AliasResolver
from indexkeeper.core.bulk import BulkOperationBatch
from indexkeeper.core.coordinator import MigrationHandle, RemapCoordinator
from indexkeeper.core.copier import SnapshotCopier
from indexkeeper.core.index import IndexHandle
from indexkeeper.core.write_guard import WriteGuard

__all__ = [
    "AliasResolver",
    "BulkOperationBatch",
    "IndexHandle",
    "MigrationHandle",
    "RemapCoordinator",
    "SnapshotCopier",
    "WriteGuard",
]
