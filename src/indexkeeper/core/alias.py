"""Alias resolver — Binds stable logical names to concrete indices.

The logical name is an engine alias. Readers resolve it on every request, so
the only way to move it is :meth:`AliasResolver.swap`, which removes the old
binding and adds the new one in a single ``update_aliases`` request. The
engine applies both actions as one unit, so no reader ever sees the name
bound to neither index or to both.
"""

from __future__ import annotations

import logging

from indexkeeper.core.index import IndexHandle
from indexkeeper.exceptions import AliasNotFound, AliasSwapConflict, ConcreteIndexMissing, IndexAlreadyExists
from indexkeeper.transport.base.exceptions import NotFoundError
from indexkeeper.transport.base.transport import SearchTransport

logger = logging.getLogger(__name__)


class AliasResolver:
    """Resolves and atomically repoints logical index names."""

    def __init__(self, transport: SearchTransport) -> None:
        self.transport = transport

    async def bound_indices(self, logical_name: str) -> list[str]:
        """Concrete indices currently bound to the logical name."""
        return await self.transport.get_alias(logical_name)

    async def resolve(self, logical_name: str) -> IndexHandle:
        """Return the concrete index the logical name points to.

        Raises:
            AliasNotFound: If the name is not bound.
            AliasSwapConflict: If the name is bound to more than one index.
        """
        bound = await self.bound_indices(logical_name)
        if not bound:
            raise AliasNotFound(f"Alias '{logical_name}' is not bound to any index.")
        if len(bound) > 1:
            raise AliasSwapConflict(logical_name, bound[0], bound)
        return IndexHandle(self.transport, bound[0])

    async def bind(self, logical_name: str, index: IndexHandle | str) -> None:
        """Bind an unbound logical name to a concrete index.

        Raises:
            IndexAlreadyExists: If the name is already bound.
            ConcreteIndexMissing: If the index does not exist.
        """
        name = index.name if isinstance(index, IndexHandle) else index
        if await self.bound_indices(logical_name):
            raise IndexAlreadyExists(logical_name)
        try:
            await self.transport.update_aliases([{"add": {"index": name, "alias": logical_name}}])
        except NotFoundError as e:
            raise ConcreteIndexMissing(f"Index '{name}' does not exist.") from e
        logger.info("Bound alias %s -> %s", logical_name, name)

    async def swap(self, logical_name: str, from_index: IndexHandle | str, to_index: IndexHandle | str) -> None:
        """Atomically repoint the logical name from one index to another.

        The removal of the old binding is conditional (``must_exist``), so
        the swap behaves as a compare-and-swap against the expected source.

        Raises:
            AliasNotFound: If the name is not bound at all.
            AliasSwapConflict: If the name is bound, but not to ``from_index``.
            ConcreteIndexMissing: If ``to_index`` does not exist.
        """
        source = from_index.name if isinstance(from_index, IndexHandle) else from_index
        target = to_index.name if isinstance(to_index, IndexHandle) else to_index

        bound = await self.bound_indices(logical_name)
        if not bound:
            raise AliasNotFound(f"Alias '{logical_name}' is not bound to any index.")
        if bound != [source]:
            raise AliasSwapConflict(logical_name, source, bound)
        if not await self.transport.index_exists(target):
            raise ConcreteIndexMissing(f"Index '{target}' does not exist.")

        actions = [
            {"remove": {"index": source, "alias": logical_name, "must_exist": True}},
            {"add": {"index": target, "alias": logical_name}},
        ]
        try:
            await self.transport.update_aliases(actions)
        except NotFoundError as e:
            # The binding or the target changed between the checks and the swap.
            if not await self.transport.index_exists(target):
                raise ConcreteIndexMissing(f"Index '{target}' does not exist.") from e
            raise AliasSwapConflict(logical_name, source, await self.bound_indices(logical_name)) from e
        logger.info("Swapped alias %s: %s -> %s", logical_name, source, target)

    async def unbind(self, logical_name: str) -> list[str]:
        """Remove every binding of the logical name. Returns the unbound indices."""
        bound = await self.bound_indices(logical_name)
        if bound:
            await self.transport.update_aliases(
                [{"remove": {"index": name, "alias": logical_name}} for name in bound]
            )
            logger.info("Unbound alias %s from %s", logical_name, bound)
        return bound
