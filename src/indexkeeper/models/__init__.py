"""Data models shared by the transport layer, the migration core and the strategies."""

from indexkeeper.models.document import VersionedDocument
from indexkeeper.models.operation import BulkItemResult, Operation, OperationKind
from indexkeeper.models.remap import DualWriteRegistration, RemapState
from indexkeeper.models.search import SearchResults

__all__ = [
    "BulkItemResult",
    "DualWriteRegistration",
    "Operation",
    "OperationKind",
    "RemapState",
    "SearchResults",
    "VersionedDocument",
]
