"""Mutation models — Single operations and per-item bulk outcomes."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OperationKind(str, Enum):
    """Kind of document mutation.

    ``index`` covers both insert and full replacement; ``update`` merges a
    partial document into the stored one.
    """

    INDEX = "index"
    UPDATE = "update"
    DELETE = "delete"


class Operation(BaseModel):
    """One document mutation addressed by ``(doc_type, id)``.

    When ``version`` is set the mutation is applied with external versioning:
    the engine accepts it only if ``version`` is greater than the stored one.
    """

    kind: OperationKind = Field(description="Mutation kind")
    doc_type: str = Field(description="Application-level document type")
    id: str = Field(description="Document identifier")
    source: dict[str, Any] = Field(default_factory=dict, description="Full document (index) or partial document (update)")
    version: int | None = Field(default=None, ge=1, description="External version stamp, if conditioned")

    @classmethod
    def index(cls, doc_type: str, id: str | int, source: dict[str, Any], version: int | None = None) -> Operation:
        return cls(kind=OperationKind.INDEX, doc_type=doc_type, id=str(id), source=source, version=version)

    @classmethod
    def update(cls, doc_type: str, id: str | int, partial: dict[str, Any]) -> Operation:
        return cls(kind=OperationKind.UPDATE, doc_type=doc_type, id=str(id), source=partial)

    @classmethod
    def delete(cls, doc_type: str, id: str | int, version: int | None = None) -> Operation:
        return cls(kind=OperationKind.DELETE, doc_type=doc_type, id=str(id), version=version)


class BulkItemResult(BaseModel):
    """Outcome of a single item inside a bulk request."""

    action: OperationKind = Field(description="Mutation kind of the item")
    id: str = Field(description="Document identifier")
    index: str = Field(default="", description="Concrete index the item was applied to")
    status: int = Field(description="HTTP-style status code of the item")
    version: int | None = Field(default=None, description="Resulting document version, if any")
    result: str | None = Field(default=None, description="Engine result: created, updated, deleted, not_found, ...")
    error: str | None = Field(default=None, description="Error description for failed items")

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300

    @property
    def conflict(self) -> bool:
        """True when the item was rejected because a newer version is stored."""
        return self.status == 409

    @property
    def not_found(self) -> bool:
        return self.status == 404

    @property
    def retryable(self) -> bool:
        """Transient failures worth resubmitting (throttling, server errors)."""
        return self.status == 429 or self.status >= 500
