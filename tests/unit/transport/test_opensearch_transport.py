"""Tests for the OpenSearch transport."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from opensearchpy import exceptions as os_exceptions

from indexkeeper.models.operation import Operation
from indexkeeper.transport.base.exceptions import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    TransportError,
    TransportTimeout,
)
from indexkeeper.transport.opensearch.transport import OpenSearchTransport

# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def client() -> MagicMock:
    mock = MagicMock()
    mock.indices = MagicMock()
    for method in (
        "create",
        "delete",
        "exists",
        "get",
        "refresh",
        "get_mapping",
        "get_settings",
        "get_alias",
        "update_aliases",
    ):
        setattr(mock.indices, method, AsyncMock())
    for method in ("get", "index", "update", "delete", "delete_by_query", "bulk", "search", "msearch", "count", "close"):
        setattr(mock, method, AsyncMock())
    return mock


@pytest.fixture
def transport(client: MagicMock) -> OpenSearchTransport:
    t = OpenSearchTransport(hosts=["https://localhost:9200"])
    t._client = client
    return t


@pytest.fixture
def sample_hit() -> dict[str, Any]:
    return {
        "_index": "users-20261018000000000000",
        "_id": "1",
        "_version": 3,
        "found": True,
        "_source": {"name": "John", "doc_type": "user"},
    }


# ── Properties & lifecycle ───────────────────────────────────────────────────


class TestOpenSearchTransportProperties:
    def test_name(self, transport: OpenSearchTransport) -> None:
        assert transport.name == "opensearch"

    def test_default_hosts(self) -> None:
        t = OpenSearchTransport()
        assert t._hosts == ["https://localhost:9200"]

    async def test_uninitialized_client_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            await OpenSearchTransport().index_exists("users")

    async def test_initialize_passes_auth(self) -> None:
        client = MagicMock()
        client.info = AsyncMock(return_value={"cluster_name": "test", "version": {"number": "2.11.0"}})
        with patch("indexkeeper.transport.opensearch.transport.AsyncOpenSearch", return_value=client) as factory:
            t = OpenSearchTransport(username="admin", password="secret", request_timeout=5)
            await t.initialize()
        kwargs = factory.call_args.kwargs
        assert kwargs["http_auth"] == ("admin", "secret")
        assert kwargs["timeout"] == 5

    async def test_shutdown_closes_client(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        await transport.shutdown()
        client.close.assert_called_once()
        assert transport._client is None

    async def test_health_maps_cluster_status(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.cluster = MagicMock()
        client.cluster.health = AsyncMock(return_value={"status": "yellow", "cluster_name": "c", "number_of_nodes": 1})
        health = await transport.health_check()
        assert health.status == "degraded"


# ── Error translation ────────────────────────────────────────────────────────


class TestErrorTranslation:
    async def test_not_found(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.get.side_effect = os_exceptions.NotFoundError(404, "not_found", {"found": False})
        with pytest.raises(NotFoundError):
            await transport.get("users", "user", "1")

    async def test_version_conflict(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.index.side_effect = os_exceptions.ConflictError(
            409, "version_conflict_engine_exception", {"error": {"reason": "version conflict"}}
        )
        with pytest.raises(ConflictError, match="version conflict"):
            await transport.index("users-1", "user", "1", {}, version=2)

    async def test_index_already_exists(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.indices.create.side_effect = os_exceptions.RequestError(
            400, "resource_already_exists_exception", {}
        )
        with pytest.raises(ConflictError):
            await transport.create_index("users-1", {})

    async def test_timeout(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.search.side_effect = os_exceptions.ConnectionTimeout("TIMEOUT", "timed out", None)
        with pytest.raises(TransportTimeout):
            await transport.search("users", {})

    async def test_other_request_errors(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.indices.create.side_effect = os_exceptions.RequestError(400, "mapper_parsing_exception", {})
        with pytest.raises(TransportError) as exc_info:
            await transport.create_index("users-1", {})
        assert not isinstance(exc_info.value, ConflictError)


# ── Requests ─────────────────────────────────────────────────────────────────


class TestRequests:
    async def test_index_with_external_version(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.index.return_value = {"_index": "users-1", "_id": "1", "_version": 7, "result": "created"}
        result = await transport.index("users-1", "user", "1", {"name": "John"}, version=7)
        client.index.assert_called_once_with(
            index="users-1",
            id="1",
            body={"name": "John", "doc_type": "user"},
            version=7,
            version_type="external",
        )
        assert result.version == 7
        assert result.created

    async def test_get_lifts_doc_type(
        self, transport: OpenSearchTransport, client: MagicMock, sample_hit: dict[str, Any]
    ) -> None:
        client.get.return_value = sample_hit
        doc = await transport.get("users", "user", "1")
        assert doc.doc_type == "user"
        assert doc.version == 3
        assert doc.source == {"name": "John"}

    async def test_get_alias_missing_returns_empty(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.indices.get_alias.side_effect = os_exceptions.NotFoundError(404, "aliases_not_found_exception", {})
        assert await transport.get_alias("users") == []

    async def test_get_alias(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.indices.get_alias.return_value = {
            "users-2": {"aliases": {"users": {}}},
            "users-1": {"aliases": {"users": {}}},
        }
        assert await transport.get_alias("users") == ["users-1", "users-2"]

    async def test_update_aliases_sends_one_request(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        actions = [
            {"remove": {"index": "users-1", "alias": "users", "must_exist": True}},
            {"add": {"index": "users-2", "alias": "users"}},
        ]
        await transport.update_aliases(actions)
        client.indices.update_aliases.assert_called_once_with(body={"actions": actions})

    async def test_bulk_builds_body_and_parses_items(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.bulk.return_value = {
            "errors": True,
            "items": [
                {"index": {"_index": "users-1", "_id": "1", "_version": 4, "result": "created", "status": 201}},
                {"update": {"_index": "users-1", "_id": "2", "_version": 2, "result": "updated", "status": 200}},
                {
                    "delete": {
                        "_index": "users-1",
                        "_id": "3",
                        "status": 409,
                        "error": {"type": "version_conflict_engine_exception", "reason": "conflict"},
                    }
                },
            ],
        }
        results = await transport.bulk(
            "users-1",
            [
                Operation.index("user", 1, {"name": "John"}, version=4),
                Operation.update("user", 2, {"age": 3}),
                Operation.delete("user", 3, version=2),
            ],
        )
        body = client.bulk.call_args.kwargs["body"]
        assert body == [
            {"index": {"_index": "users-1", "_id": "1", "version": 4, "version_type": "external"}},
            {"name": "John", "doc_type": "user"},
            {"update": {"_index": "users-1", "_id": "2"}},
            {"doc": {"age": 3}},
            {"delete": {"_index": "users-1", "_id": "3", "version": 2, "version_type": "external"}},
        ]
        assert [r.status for r in results] == [201, 200, 409]
        assert results[2].conflict
        assert results[2].error == "conflict"

    async def test_bulk_empty_skips_request(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        assert await transport.bulk("users-1", []) == []
        client.bulk.assert_not_called()

    async def test_scan_batches_hits(
        self, transport: OpenSearchTransport, client: MagicMock, sample_hit: dict[str, Any]
    ) -> None:
        hits = [{**sample_hit, "_id": str(i)} for i in range(5)]

        async def fake_scan(*args: Any, **kwargs: Any):
            assert kwargs["version"] is True
            for hit in hits:
                yield hit

        with patch("indexkeeper.transport.opensearch.transport.async_scan", fake_scan):
            batches = [batch async for batch in transport.scan("users-1", batch_size=2)]
        assert [len(b) for b in batches] == [2, 2, 1]
        assert batches[0][0].version == 3

    async def test_msearch_interleaves_headers(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.msearch.return_value = {"responses": [{"hits": {}}, {"hits": {}}]}
        responses = await transport.msearch([("cats", {"size": 1}), ("dogs", {})])
        assert client.msearch.call_args.kwargs["body"] == [{"index": "cats"}, {"size": 1}, {"index": "dogs"}, {}]
        assert len(responses) == 2

    async def test_count_scoped_to_doc_type(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.count.return_value = {"count": 12}
        assert await transport.count("users", "user") == 12
        assert client.count.call_args.kwargs["body"] == {
            "query": {"bool": {"filter": [{"term": {"doc_type": "user"}}]}}
        }

    async def test_list_indices_missing_pattern(self, transport: OpenSearchTransport, client: MagicMock) -> None:
        client.indices.get.side_effect = os_exceptions.NotFoundError(404, "index_not_found_exception", {})
        assert await transport.list_indices("users-*") == []
