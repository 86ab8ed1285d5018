"""Concrete index handle — One physical, versioned index in the engine."""

from __future__ import annotations

import copy
import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Any

from indexkeeper.exceptions import ConcreteIndexMissing, IndexAlreadyExists
from indexkeeper.models.document import DOC_TYPE_FIELD
from indexkeeper.transport.base.exceptions import ConflictError, NotFoundError
from indexkeeper.transport.base.transport import SearchTransport

logger = logging.getLogger(__name__)

GENERATION_FORMAT = "%Y%m%d%H%M%S%f"


def generation_name(logical_name: str, now: datetime | None = None) -> str:
    """Return a new concrete index name for a logical name.

    Names sort chronologically: ``users-20261018104512123456``.
    """
    return f"{logical_name}-{(now or datetime.now(UTC)).strftime(GENERATION_FORMAT)}"


def generation_pattern(logical_name: str) -> re.Pattern[str]:
    """Regex matching exactly the concrete generations of a logical name."""
    return re.compile(rf"^{re.escape(logical_name)}-\d{{20}}$")


def with_doc_type_field(definition: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of an index definition with the document type field mapped as keyword."""
    body = copy.deepcopy(definition or {})
    properties = body.setdefault("mappings", {}).setdefault("properties", {})
    properties.setdefault(DOC_TYPE_FIELD, {"type": "keyword"})
    return body


class IndexHandle:
    """Identifies one concrete index and manages its lifecycle.

    Attributes:
        name: Concrete index name.
    """

    def __init__(self, transport: SearchTransport, name: str) -> None:
        self.transport = transport
        self.name = name

    def __repr__(self) -> str:
        return f"IndexHandle({self.name!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, IndexHandle) and other.name == self.name

    def __hash__(self) -> int:
        return hash(self.name)

    @classmethod
    def new_generation(
        cls, transport: SearchTransport, logical_name: str, previous: IndexHandle | None = None
    ) -> IndexHandle:
        """Handle for a fresh generation, always sorting after ``previous``."""
        name = generation_name(logical_name)
        if previous is not None and generation_pattern(logical_name).match(previous.name) and name <= previous.name:
            stamp = datetime.strptime(previous.name.rsplit("-", 1)[1], GENERATION_FORMAT)
            name = generation_name(logical_name, stamp + timedelta(microseconds=1))
        return cls(transport, name)

    async def exists(self) -> bool:
        return await self.transport.index_exists(self.name)

    async def create(self, definition: dict[str, Any] | None, aliases: list[str] | None = None) -> None:
        """Create the index, optionally bound to aliases in the same request.

        Raises:
            IndexAlreadyExists: If an index or alias with this name exists.
        """
        body = with_doc_type_field(definition)
        if aliases:
            body["aliases"] = {alias: {} for alias in aliases}
        try:
            await self.transport.create_index(self.name, body)
        except ConflictError as e:
            raise IndexAlreadyExists(self.name) from e
        logger.info("Created index %s", self.name)

    async def delete(self) -> None:
        """Delete the index.

        Raises:
            ConcreteIndexMissing: If the index does not exist.
        """
        try:
            await self.transport.delete_index(self.name)
        except NotFoundError as e:
            raise ConcreteIndexMissing(f"Index '{self.name}' does not exist.") from e
        logger.info("Deleted index %s", self.name)

    async def refresh(self) -> None:
        await self.transport.refresh(self.name)

    async def count(self, doc_type: str | None = None) -> int:
        return await self.transport.count(self.name, doc_type)

    async def mapping(self) -> dict[str, Any] | None:
        return await self.transport.get_mapping(self.name)

    async def settings(self) -> dict[str, Any] | None:
        return await self.transport.get_settings(self.name)
