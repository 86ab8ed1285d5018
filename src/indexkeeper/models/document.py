"""Document model — A stored record as seen by the migration core.

Records are opaque payloads. The core only cares about where a document lives
(index), how it is addressed (doc_type, id) and its engine-assigned version.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

DOC_TYPE_FIELD = "doc_type"


class VersionedDocument(BaseModel):
    """A document together with the version stamp the engine assigned to it."""

    index: str = Field(description="Concrete index holding the document")
    doc_type: str = Field(description="Application-level document type")
    id: str = Field(description="Document identifier, unique within an index")
    version: int = Field(ge=0, description="Engine-assigned version stamp")
    source: dict[str, Any] = Field(default_factory=dict, description="Document payload")

    @classmethod
    def from_hit(cls, hit: dict[str, Any]) -> VersionedDocument:
        """Build a document from a raw ``get`` response or search hit.

        The ``doc_type`` marker field is lifted out of the payload.
        """
        source = dict(hit.get("_source") or {})
        doc_type = source.pop(DOC_TYPE_FIELD, None) or hit.get("_type") or "_doc"
        return cls(
            index=hit.get("_index", ""),
            doc_type=str(doc_type),
            id=str(hit.get("_id", "")),
            version=int(hit.get("_version", 0) or 0),
            source=source,
        )
