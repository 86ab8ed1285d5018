"""Search result model — Assembled response of a single search."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

from pydantic import BaseModel, Field

from indexkeeper.models.document import VersionedDocument


class SearchResults(BaseModel):
    """Hits of one search, optionally mapped to application objects."""

    total: int = Field(default=0, description="Total number of matching documents")
    hits: list[dict[str, Any]] = Field(default_factory=list, description="Raw hits as returned by the engine")
    documents: list[Any] = Field(default_factory=list, description="Hits after mapping")
    took_ms: int = Field(default=0, description="Engine-reported query time in ms")
    error: str | None = Field(default=None, description="Error reported for this search, if it failed")

    @classmethod
    def from_response(
        cls,
        response: dict[str, Any],
        mapper: Callable[[dict[str, Any]], Any] | None = None,
    ) -> SearchResults:
        """Build results from a raw search response.

        Without a ``mapper`` every hit becomes a :class:`VersionedDocument`.
        """
        if "error" in response:
            error = response["error"]
            reason = error.get("reason", str(error)) if isinstance(error, dict) else str(error)
            return cls(error=reason)

        hits_section = response.get("hits", {})
        total = hits_section.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)
        hits = list(hits_section.get("hits", []))
        to_document = mapper or VersionedDocument.from_hit

        return cls(
            total=int(total),
            hits=hits,
            documents=[to_document(hit) for hit in hits],
            took_ms=int(response.get("took", 0)),
        )

    def __len__(self) -> int:
        return len(self.documents)

    def __iter__(self) -> Iterator[Any]:  # type: ignore[override]
        return iter(self.documents)

    def __getitem__(self, idx: int) -> Any:
        return self.documents[idx]
