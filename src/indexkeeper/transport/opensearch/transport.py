"""OpenSearch transport — Persistence against OpenSearch (v2+) clusters.

Uses the ``opensearch-py`` async client. Version-conditioned writes map to
``version_type=external``; alias swaps use a single ``_aliases`` request;
scans use the scroll API through ``opensearchpy.helpers.async_scan``.

Every client error is translated to the transport exceptions in
:mod:`indexkeeper.transport.base.exceptions`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Sequence
from typing import Any, TypeVar

from opensearchpy import AsyncOpenSearch
from opensearchpy import exceptions as os_exceptions
from opensearchpy.helpers import ScanError, async_scan

from indexkeeper.models.document import DOC_TYPE_FIELD, VersionedDocument
from indexkeeper.models.operation import BulkItemResult, Operation, OperationKind
from indexkeeper.transport.base.exceptions import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    TransportError,
    TransportTimeout,
)
from indexkeeper.transport.base.transport import SearchTransport, TransportHealth, WriteResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OpenSearchTransport(SearchTransport):
    """Search transport for OpenSearch (v2+).

    Args:
        hosts: List of OpenSearch node URLs.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        verify_certs: Whether to verify TLS certificates.
        request_timeout: Per-request timeout in seconds.
        **kwargs: Additional keyword arguments forwarded to ``AsyncOpenSearch``.
    """

    def __init__(
        self,
        hosts: list[str] | None = None,
        username: str | None = None,
        password: str | None = None,
        verify_certs: bool = True,
        request_timeout: float = 30.0,
        **kwargs: Any,
    ) -> None:
        self._hosts = hosts or ["https://localhost:9200"]
        self._username = username
        self._password = password
        self._verify_certs = verify_certs
        self._request_timeout = request_timeout
        self._extra_kwargs = kwargs
        self._client: Any = None

    @property
    def name(self) -> str:
        return "opensearch"

    async def initialize(self) -> None:
        """Create and verify the ``AsyncOpenSearch`` client."""
        client_kwargs: dict[str, Any] = {
            "hosts": self._hosts,
            "verify_certs": self._verify_certs,
            "ssl_show_warn": False,
            "timeout": self._request_timeout,
        }
        if self._username and self._password:
            client_kwargs["http_auth"] = (self._username, self._password)

        client_kwargs.update(self._extra_kwargs)

        try:
            self._client = AsyncOpenSearch(**client_kwargs)
            info = await self._client.info()
            version = info.get("version", {}).get("number", "unknown")
            cluster = info.get("cluster_name", "unknown")
            logger.info("Connected to OpenSearch cluster: %s (v%s)", cluster, version)
        except os_exceptions.ImproperlyConfigured as e:
            raise ConfigurationError(f"Invalid OpenSearch configuration: {e}") from e
        except Exception as e:
            raise TransportError(f"Failed to connect to OpenSearch: {e}") from e

    async def shutdown(self) -> None:
        """Close the OpenSearch client."""
        if self._client:
            await self._client.close()
            self._client = None

    async def health_check(self) -> TransportHealth:
        """Check OpenSearch cluster health."""
        if not self._client:
            return TransportHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            health = await self._client.cluster.health()
            latency_ms = int((time.monotonic() - start) * 1000)

            status_map = {"green": "healthy", "yellow": "degraded", "red": "unhealthy"}

            return TransportHealth(
                status=status_map.get(health.get("status", "red"), "unhealthy"),
                latency_ms=latency_ms,
                message=f"Cluster: {health.get('cluster_name')}, Nodes: {health.get('number_of_nodes')}",
            )
        except Exception as e:
            return TransportHealth(status="unhealthy", message=str(e))

    # ── Error translation ────────────────────────────────────────────────

    async def _call(self, request: Awaitable[T]) -> T:
        """Await a client request, translating client errors."""
        try:
            return await request
        except os_exceptions.NotFoundError as e:
            raise NotFoundError(self._reason(e)) from e
        except os_exceptions.ConflictError as e:
            raise ConflictError(self._reason(e)) from e
        except os_exceptions.RequestError as e:
            if e.error in ("resource_already_exists_exception", "index_already_exists_exception"):
                raise ConflictError(self._reason(e)) from e
            raise TransportError(self._reason(e)) from e
        except os_exceptions.ConnectionTimeout as e:
            raise TransportTimeout(f"OpenSearch request timed out: {e}") from e
        except os_exceptions.TransportError as e:
            raise TransportError(self._reason(e)) from e

    @staticmethod
    def _reason(error: os_exceptions.TransportError) -> str:
        info = error.info if isinstance(error.info, dict) else {}
        reason = info.get("error", {})
        if isinstance(reason, dict):
            reason = reason.get("reason") or reason.get("type")
        return f"[{error.status_code}] {reason or error.error}"

    def _require_client(self) -> Any:
        if not self._client:
            raise ConfigurationError("OpenSearch client not initialized.")
        return self._client

    @staticmethod
    def _version_params(version: int | None) -> dict[str, Any]:
        if version is None:
            return {}
        return {"version": version, "version_type": "external"}

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def create_index(self, name: str, body: dict[str, Any]) -> None:
        client = self._require_client()
        await self._call(client.indices.create(index=name, body=body))
        logger.debug("Created index %s", name)

    async def delete_index(self, name: str) -> None:
        client = self._require_client()
        await self._call(client.indices.delete(index=name))
        logger.debug("Deleted index %s", name)

    async def index_exists(self, name: str) -> bool:
        client = self._require_client()
        return bool(await self._call(client.indices.exists(index=name)))

    async def list_indices(self, pattern: str) -> list[str]:
        client = self._require_client()
        try:
            response = await self._call(client.indices.get(index=pattern, allow_no_indices=True))
        except NotFoundError:
            return []
        return sorted(response.keys())

    async def refresh(self, name: str) -> None:
        client = self._require_client()
        await self._call(client.indices.refresh(index=name))

    async def get_mapping(self, name: str) -> dict[str, Any] | None:
        client = self._require_client()
        try:
            response = await self._call(client.indices.get_mapping(index=name))
        except NotFoundError:
            return None
        return next(iter(response.values()), {}).get("mappings", {})

    async def get_settings(self, name: str) -> dict[str, Any] | None:
        client = self._require_client()
        try:
            response = await self._call(client.indices.get_settings(index=name))
        except NotFoundError:
            return None
        return next(iter(response.values()), {}).get("settings", {})

    # ── Aliases ──────────────────────────────────────────────────────────

    async def get_alias(self, alias: str) -> list[str]:
        client = self._require_client()
        try:
            response = await self._call(client.indices.get_alias(name=alias))
        except NotFoundError:
            return []
        return sorted(index for index, entry in response.items() if alias in entry.get("aliases", {}))

    async def update_aliases(self, actions: Sequence[dict[str, Any]]) -> None:
        client = self._require_client()
        await self._call(client.indices.update_aliases(body={"actions": list(actions)}))

    # ── Documents ────────────────────────────────────────────────────────

    async def get(self, index: str, doc_type: str, id: str) -> VersionedDocument:
        client = self._require_client()
        response = await self._call(client.get(index=index, id=id))
        if not response.get("found", True):
            raise NotFoundError(f"[{id}]: document missing")
        return VersionedDocument.from_hit(response)

    async def index(
        self,
        index: str,
        doc_type: str,
        id: str,
        source: dict[str, Any],
        version: int | None = None,
    ) -> WriteResult:
        client = self._require_client()
        body = {**source, DOC_TYPE_FIELD: doc_type}
        response = await self._call(client.index(index=index, id=id, body=body, **self._version_params(version)))
        return self._write_result(response)

    async def update(self, index: str, doc_type: str, id: str, partial: dict[str, Any]) -> WriteResult:
        client = self._require_client()
        response = await self._call(client.update(index=index, id=id, body={"doc": partial}))
        return self._write_result(response)

    async def delete(self, index: str, doc_type: str, id: str, version: int | None = None) -> WriteResult:
        client = self._require_client()
        response = await self._call(client.delete(index=index, id=id, **self._version_params(version)))
        return self._write_result(response)

    async def delete_by_query(self, index: str, doc_type: str | None, query: dict[str, Any]) -> int:
        client = self._require_client()
        response = await self._call(
            client.delete_by_query(index=index, body={"query": self._scoped_query(doc_type, query)})
        )
        return int(response.get("deleted", 0))

    @staticmethod
    def _write_result(response: dict[str, Any]) -> WriteResult:
        return WriteResult(
            index=response.get("_index", ""),
            id=str(response.get("_id", "")),
            version=int(response.get("_version", 0)),
            result=response.get("result", ""),
        )

    @staticmethod
    def _scoped_query(doc_type: str | None, query: dict[str, Any] | None) -> dict[str, Any]:
        if doc_type is None:
            return query or {"match_all": {}}
        clauses: list[dict[str, Any]] = [{"term": {DOC_TYPE_FIELD: doc_type}}]
        if query:
            clauses.append(query)
        return {"bool": {"filter": clauses}}

    # ── Bulk & scan ──────────────────────────────────────────────────────

    async def bulk(self, index: str, operations: Sequence[Operation]) -> list[BulkItemResult]:
        if not operations:
            return []
        client = self._require_client()

        body: list[dict[str, Any]] = []
        for op in operations:
            header: dict[str, Any] = {"_index": index, "_id": op.id, **self._version_params(op.version)}
            body.append({op.kind.value: header})
            if op.kind is OperationKind.INDEX:
                body.append({**op.source, DOC_TYPE_FIELD: op.doc_type})
            elif op.kind is OperationKind.UPDATE:
                body.append({"doc": op.source})

        response = await self._call(client.bulk(body=body))

        results: list[BulkItemResult] = []
        for op, item in zip(operations, response.get("items", []), strict=True):
            entry = item.get(op.kind.value, {})
            status = int(entry.get("status", 500))
            error = entry.get("error")
            if isinstance(error, dict):
                error = error.get("reason") or error.get("type")
            results.append(
                BulkItemResult(
                    action=op.kind,
                    id=str(entry.get("_id", op.id)),
                    index=entry.get("_index", index),
                    status=status,
                    version=entry.get("_version"),
                    result=entry.get("result"),
                    error=str(error) if error else None,
                )
            )
        return results

    async def scan(
        self,
        index: str,
        batch_size: int = 500,
        query: dict[str, Any] | None = None,
    ) -> AsyncIterator[list[VersionedDocument]]:
        client = self._require_client()
        body = {"query": query or {"match_all": {}}}
        batch: list[VersionedDocument] = []
        try:
            async for hit in async_scan(client, query=body, index=index, size=batch_size, version=True):
                batch.append(VersionedDocument.from_hit(hit))
                if len(batch) >= batch_size:
                    yield batch
                    batch = []
        except os_exceptions.NotFoundError as e:
            raise NotFoundError(self._reason(e)) from e
        except os_exceptions.ConnectionTimeout as e:
            raise TransportTimeout(f"OpenSearch scroll timed out: {e}") from e
        except os_exceptions.TransportError as e:
            raise TransportError(self._reason(e)) from e
        except ScanError as e:
            raise TransportError(f"OpenSearch scroll failed: {e}") from e
        if batch:
            yield batch

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, index: str, body: dict[str, Any]) -> dict[str, Any]:
        client = self._require_client()
        return await self._call(client.search(index=index, body=body))

    async def msearch(self, searches: Sequence[tuple[str, dict[str, Any]]]) -> list[dict[str, Any]]:
        if not searches:
            return []
        client = self._require_client()
        body: list[dict[str, Any]] = []
        for index, search_body in searches:
            body.append({"index": index})
            body.append(dict(search_body))
        response = await self._call(client.msearch(body=body))
        return list(response.get("responses", []))

    async def count(self, index: str, doc_type: str | None = None) -> int:
        client = self._require_client()
        body = {"query": self._scoped_query(doc_type, None)}
        response = await self._call(client.count(index=index, body=body))
        return int(response.get("count", 0))
