"""In-memory transport — An in-process engine with search-engine write semantics.

Implements the subset of engine behaviour the persistence layer relies on:
  - internal versioning (every write bumps the stored version)
  - external versioning (write only if the incoming version is greater than
    the stored version or delete tombstone)
  - atomic multi-action alias updates
  - point-in-time scans

Every call yields to the event loop before touching state, and applies its
mutation without awaiting, so concurrent tasks interleave the way they would
against a remote engine while each request stays indivisible.
"""

from __future__ import annotations

import asyncio
import copy
import fnmatch
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from indexkeeper.models.document import DOC_TYPE_FIELD, VersionedDocument
from indexkeeper.models.operation import BulkItemResult, Operation, OperationKind
from indexkeeper.transport.base.exceptions import ConflictError, NotFoundError, TransportError
from indexkeeper.transport.base.transport import SearchTransport, TransportHealth, WriteResult

logger = logging.getLogger(__name__)


@dataclass
class _StoredDocument:
    doc_type: str
    version: int
    source: dict[str, Any]


@dataclass
class _MemoryIndex:
    name: str
    body: dict[str, Any]
    docs: dict[str, _StoredDocument] = field(default_factory=dict)
    tombstones: dict[str, int] = field(default_factory=dict)


class MemoryTransport(SearchTransport):
    """Search transport backed by process memory.

    Args:
        latency: Seconds every call sleeps before executing. ``0`` still
            yields to the event loop.
    """

    def __init__(self, latency: float = 0.0, **kwargs: Any) -> None:
        self._latency = latency
        self._indices: dict[str, _MemoryIndex] = {}
        self._aliases: dict[str, set[str]] = {}
        self._faults: dict[str, list[Exception]] = {}
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "memory"

    async def health_check(self) -> TransportHealth:
        return TransportHealth(status="healthy", message=f"Indices: {len(self._indices)}")

    # ── Fault injection ──────────────────────────────────────────────────

    def fail_writes(self, index: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` write requests against ``index`` raise ``error``."""
        self._faults.setdefault(index, []).extend([error] * times)

    def _check_fault(self, index: str) -> None:
        pending = self._faults.get(index)
        if pending:
            raise pending.pop(0)

    # ── Internals ────────────────────────────────────────────────────────

    async def _tick(self, method: str, target: str) -> None:
        self.calls.append((method, target))
        await asyncio.sleep(self._latency)

    def _concrete(self, name: str) -> _MemoryIndex:
        if name not in self._indices:
            raise NotFoundError(f"no such index [{name}]")
        return self._indices[name]

    def _write_index(self, name: str) -> _MemoryIndex:
        if name in self._indices:
            return self._indices[name]
        bound = self._aliases.get(name)
        if not bound:
            raise NotFoundError(f"no such index [{name}]")
        if len(bound) > 1:
            raise TransportError(f"no write index is defined for alias [{name}]")
        return self._indices[next(iter(bound))]

    def _read_indices(self, name: str) -> list[_MemoryIndex]:
        names: set[str] = set()
        for part in name.split(","):
            if part in self._indices:
                names.add(part)
            elif part in self._aliases:
                names.update(self._aliases[part])
            elif "*" in part:
                names.update(n for n in self._indices if fnmatch.fnmatchcase(n, part))
            else:
                raise NotFoundError(f"no such index [{part}]")
        return [self._indices[n] for n in sorted(names)]

    @staticmethod
    def _current_version(idx: _MemoryIndex, id: str) -> int | None:
        doc = idx.docs.get(id)
        if doc is not None:
            return doc.version
        return idx.tombstones.get(id)

    def _apply_index(
        self, idx: _MemoryIndex, doc_type: str, id: str, source: dict[str, Any], version: int | None
    ) -> WriteResult:
        self._check_fault(idx.name)
        current = self._current_version(idx, id)
        if version is not None:
            if current is not None and version <= current:
                raise ConflictError(
                    f"[{id}]: version conflict, current version [{current}] is higher or equal "
                    f"to the one provided [{version}]"
                )
            new_version = version
        else:
            new_version = (current or 0) + 1
        created = id not in idx.docs
        idx.docs[id] = _StoredDocument(doc_type=doc_type, version=new_version, source=copy.deepcopy(source))
        idx.tombstones.pop(id, None)
        return WriteResult(index=idx.name, id=id, version=new_version, result="created" if created else "updated")

    def _apply_update(self, idx: _MemoryIndex, id: str, partial: dict[str, Any]) -> WriteResult:
        self._check_fault(idx.name)
        doc = idx.docs.get(id)
        if doc is None:
            raise NotFoundError(f"[{id}]: document missing")
        merged = {**doc.source, **copy.deepcopy(partial)}
        result = "noop" if merged == doc.source else "updated"
        if result == "updated":
            doc.source = merged
            doc.version += 1
        return WriteResult(index=idx.name, id=id, version=doc.version, result=result)

    def _apply_delete(self, idx: _MemoryIndex, id: str, version: int | None) -> WriteResult:
        self._check_fault(idx.name)
        current = self._current_version(idx, id)
        if version is not None:
            if current is not None and version <= current:
                raise ConflictError(
                    f"[{id}]: version conflict, current version [{current}] is higher or equal "
                    f"to the one provided [{version}]"
                )
            new_version = version
        else:
            if id not in idx.docs:
                raise NotFoundError(f"[{id}]: document missing")
            new_version = (current or 0) + 1
        existed = idx.docs.pop(id, None) is not None
        idx.tombstones[id] = new_version
        if not existed:
            raise NotFoundError(f"[{id}]: document missing")
        return WriteResult(index=idx.name, id=id, version=new_version, result="deleted")

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def create_index(self, name: str, body: dict[str, Any]) -> None:
        await self._tick("create_index", name)
        if name in self._indices or name in self._aliases:
            raise ConflictError(f"index [{name}] already exists")
        aliases = (body or {}).get("aliases", {})
        for alias in aliases:
            if alias in self._indices:
                raise TransportError(f"an index exists with the same name as the alias [{alias}]")
        self._indices[name] = _MemoryIndex(name=name, body=copy.deepcopy(body or {}))
        for alias in aliases:
            self._aliases.setdefault(alias, set()).add(name)

    async def delete_index(self, name: str) -> None:
        await self._tick("delete_index", name)
        self._check_fault(name)
        self._concrete(name)
        del self._indices[name]
        for alias in list(self._aliases):
            self._aliases[alias].discard(name)
            if not self._aliases[alias]:
                del self._aliases[alias]

    async def index_exists(self, name: str) -> bool:
        await self._tick("index_exists", name)
        return name in self._indices or name in self._aliases

    async def list_indices(self, pattern: str) -> list[str]:
        await self._tick("list_indices", pattern)
        return sorted(n for n in self._indices if fnmatch.fnmatchcase(n, pattern))

    async def refresh(self, name: str) -> None:
        await self._tick("refresh", name)
        self._read_indices(name)

    async def get_mapping(self, name: str) -> dict[str, Any] | None:
        await self._tick("get_mapping", name)
        try:
            idx = self._write_index(name)
        except NotFoundError:
            return None
        return copy.deepcopy(idx.body.get("mappings", {}))

    async def get_settings(self, name: str) -> dict[str, Any] | None:
        await self._tick("get_settings", name)
        try:
            idx = self._write_index(name)
        except NotFoundError:
            return None
        return copy.deepcopy(idx.body.get("settings", {}))

    # ── Aliases ──────────────────────────────────────────────────────────

    async def get_alias(self, alias: str) -> list[str]:
        await self._tick("get_alias", alias)
        return sorted(self._aliases.get(alias, set()))

    async def update_aliases(self, actions: Sequence[dict[str, Any]]) -> None:
        await self._tick("update_aliases", "_aliases")
        staged = {alias: set(bound) for alias, bound in self._aliases.items()}
        for action in actions:
            ((verb, params),) = action.items()
            index, alias = params["index"], params["alias"]
            if verb == "add":
                if index not in self._indices:
                    raise NotFoundError(f"no such index [{index}]")
                if alias in self._indices:
                    raise TransportError(f"an index exists with the same name as the alias [{alias}]")
                staged.setdefault(alias, set()).add(index)
            elif verb == "remove":
                bound = staged.get(alias, set())
                if index not in bound:
                    if params.get("must_exist", True):
                        raise NotFoundError(f"aliases [{alias}] missing on index [{index}]")
                    continue
                bound.discard(index)
                if not bound:
                    del staged[alias]
            else:
                raise TransportError(f"unsupported alias action [{verb}]")
        self._aliases = staged

    # ── Documents ────────────────────────────────────────────────────────

    async def get(self, index: str, doc_type: str, id: str) -> VersionedDocument:
        await self._tick("get", index)
        idx = self._write_index(index)
        doc = idx.docs.get(id)
        if doc is None:
            raise NotFoundError(f"[{id}]: document missing")
        return VersionedDocument(
            index=idx.name, doc_type=doc.doc_type, id=id, version=doc.version, source=copy.deepcopy(doc.source)
        )

    async def index(
        self,
        index: str,
        doc_type: str,
        id: str,
        source: dict[str, Any],
        version: int | None = None,
    ) -> WriteResult:
        await self._tick("index", index)
        return self._apply_index(self._write_index(index), doc_type, id, source, version)

    async def update(self, index: str, doc_type: str, id: str, partial: dict[str, Any]) -> WriteResult:
        await self._tick("update", index)
        return self._apply_update(self._write_index(index), id, partial)

    async def delete(self, index: str, doc_type: str, id: str, version: int | None = None) -> WriteResult:
        await self._tick("delete", index)
        return self._apply_delete(self._write_index(index), id, version)

    async def delete_by_query(self, index: str, doc_type: str | None, query: dict[str, Any]) -> int:
        await self._tick("delete_by_query", index)
        deleted = 0
        for idx in self._read_indices(index):
            for id, doc in list(idx.docs.items()):
                if self._matches(doc, id, doc_type, query):
                    self._apply_delete(idx, id, None)
                    deleted += 1
        return deleted

    # ── Bulk & scan ──────────────────────────────────────────────────────

    async def bulk(self, index: str, operations: Sequence[Operation]) -> list[BulkItemResult]:
        await self._tick("bulk", index)
        idx = self._write_index(index)
        self._check_fault(idx.name)
        results: list[BulkItemResult] = []
        for op in operations:
            try:
                if op.kind is OperationKind.INDEX:
                    outcome = self._apply_index(idx, op.doc_type, op.id, op.source, op.version)
                    status = 201 if outcome.created else 200
                elif op.kind is OperationKind.UPDATE:
                    outcome = self._apply_update(idx, op.id, op.source)
                    status = 200
                else:
                    outcome = self._apply_delete(idx, op.id, op.version)
                    status = 200
                results.append(
                    BulkItemResult(
                        action=op.kind,
                        id=op.id,
                        index=idx.name,
                        status=status,
                        version=outcome.version,
                        result=outcome.result,
                    )
                )
            except NotFoundError as e:
                version = idx.tombstones.get(op.id) if op.kind is OperationKind.DELETE else None
                result = "not_found" if op.kind is OperationKind.DELETE else None
                error = None if op.kind is OperationKind.DELETE else str(e)
                results.append(
                    BulkItemResult(
                        action=op.kind, id=op.id, index=idx.name, status=404, version=version, result=result, error=error
                    )
                )
            except ConflictError as e:
                results.append(BulkItemResult(action=op.kind, id=op.id, index=idx.name, status=409, error=str(e)))
            except TransportError as e:
                results.append(BulkItemResult(action=op.kind, id=op.id, index=idx.name, status=503, error=str(e)))
        return results

    async def scan(
        self,
        index: str,
        batch_size: int = 500,
        query: dict[str, Any] | None = None,
    ) -> AsyncIterator[list[VersionedDocument]]:
        await self._tick("scan", index)
        snapshot = [
            VersionedDocument(
                index=idx.name, doc_type=doc.doc_type, id=id, version=doc.version, source=copy.deepcopy(doc.source)
            )
            for idx in self._read_indices(index)
            for id, doc in idx.docs.items()
            if query is None or self._matches(doc, id, None, query)
        ]
        for start in range(0, len(snapshot), batch_size):
            yield snapshot[start : start + batch_size]
            await self._tick("scroll", index)

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        await self._tick("search", index)
        return self._search(index, body)

    async def msearch(self, searches: Sequence[tuple[str, dict[str, Any]]]) -> list[dict[str, Any]]:
        await self._tick("msearch", ",".join(index for index, _ in searches))
        responses: list[dict[str, Any]] = []
        for index, body in searches:
            try:
                responses.append({**self._search(index, body), "status": 200})
            except NotFoundError as e:
                responses.append(
                    {"error": {"type": "index_not_found_exception", "reason": str(e)}, "status": 404}
                )
        return responses

    async def count(self, index: str, doc_type: str | None = None) -> int:
        await self._tick("count", index)
        return sum(
            1
            for idx in self._read_indices(index)
            for id, doc in idx.docs.items()
            if self._matches(doc, id, doc_type, None)
        )

    def _search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        body = body or {}
        query = body.get("query")
        hits = [
            {
                "_index": idx.name,
                "_id": id,
                "_version": doc.version,
                "_score": 1.0,
                "_source": {**copy.deepcopy(doc.source), DOC_TYPE_FIELD: doc.doc_type},
            }
            for idx in self._read_indices(index)
            for id, doc in idx.docs.items()
            if self._matches(doc, id, None, query)
        ]
        for key, descending in reversed(self._sort_keys(body.get("sort"))):
            hits.sort(key=lambda h, k=key: self._sort_value(h, k), reverse=descending)
        start = int(body.get("from", 0))
        size = int(body.get("size", 10))
        return {
            "took": 0,
            "hits": {"total": {"value": len(hits), "relation": "eq"}, "hits": hits[start : start + size]},
        }

    @staticmethod
    def _sort_keys(sort: Any) -> list[tuple[str, bool]]:
        if not sort:
            return []
        keys: list[tuple[str, bool]] = []
        for entry in sort if isinstance(sort, list) else [sort]:
            if isinstance(entry, str):
                keys.append((entry, False))
            elif isinstance(entry, dict):
                for name, order in entry.items():
                    direction = order.get("order", "asc") if isinstance(order, dict) else order
                    keys.append((name, direction == "desc"))
        return keys

    @staticmethod
    def _sort_value(hit: dict[str, Any], key: str) -> tuple[bool, Any]:
        value = hit["_id"] if key == "_id" else hit["_source"].get(key)
        return (value is None, "" if value is None else value)

    @staticmethod
    def _clauses(clause: Any) -> list[dict[str, Any]]:
        if not clause:
            return []
        return clause if isinstance(clause, list) else [clause]

    @classmethod
    def _matches(cls, doc: _StoredDocument, id: str, doc_type: str | None, query: dict[str, Any] | None) -> bool:
        if doc_type is not None and doc.doc_type != doc_type:
            return False
        if not query:
            return True
        ((kind, params),) = query.items()
        source = {**doc.source, DOC_TYPE_FIELD: doc.doc_type}
        if kind == "match_all":
            return True
        if kind == "ids":
            return id in {str(v) for v in params.get("values", [])}
        if kind == "term":
            ((name, value),) = params.items()
            if isinstance(value, dict):
                value = value.get("value")
            return source.get(name) == value
        if kind == "terms":
            ((name, values),) = params.items()
            return source.get(name) in values
        if kind == "match":
            ((name, value),) = params.items()
            if isinstance(value, dict):
                value = value.get("query")
            tokens = str(source.get(name, "")).lower().split()
            return any(token in tokens for token in str(value).lower().split())
        if kind == "bool":
            must = cls._clauses(params.get("must")) + cls._clauses(params.get("filter"))
            must_not = cls._clauses(params.get("must_not"))
            return all(cls._matches(doc, id, None, q) for q in must) and not any(
                cls._matches(doc, id, None, q) for q in must_not
            )
        raise TransportError(f"unsupported query [{kind}]")
