"""Index strategies — How a document class maps onto engine indices."""

from indexkeeper.strategies.alias_index import AliasIndex, GuardedBatch
from indexkeeper.strategies.base import IndexStrategy
from indexkeeper.strategies.single_index import SingleIndex

__all__ = [
    "AliasIndex",
    "GuardedBatch",
    "IndexStrategy",
    "SingleIndex",
]
