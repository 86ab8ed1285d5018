"""Tests for multi search."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from indexkeeper.models.search import SearchResults
from indexkeeper.multi_search import MultiSearch
from indexkeeper.strategies.single_index import SingleIndex
from indexkeeper.transport.memory.transport import MemoryTransport


@pytest.fixture
async def animals(transport: MemoryTransport) -> SingleIndex:
    index = SingleIndex(transport, "cats_and_dogs")
    await index.create()
    await index.index_document("cat", 1, {"name": "Felix", "age": 3})
    await index.index_document("cat", 2, {"name": "Tom", "age": 7})
    await index.index_document("dog", 3, {"name": "Rex", "age": 5})
    await index.flush()
    return index


class TestMultiSearch:
    async def test_results_by_name(self, transport: MemoryTransport, animals: SingleIndex) -> None:
        searches = MultiSearch(transport)
        assert searches.add("cats", "cats_and_dogs", {"query": {"match_all": {}}}, doc_type="cat") == "cats"
        searches.add("dogs", "cats_and_dogs", {"query": {"match_all": {}}}, doc_type="dog")

        cats = await searches.get("cats")
        dogs = searches["dogs"]

        assert cats.total == 2
        assert {doc.source["name"] for doc in cats} == {"Felix", "Tom"}
        assert dogs.total == 1
        assert dogs[0].doc_type == "dog"

    async def test_single_round_trip(self, transport: MemoryTransport, animals: SingleIndex) -> None:
        searches = MultiSearch(transport)
        searches.add("a", "cats_and_dogs", {})
        searches.add("b", "cats_and_dogs", {"query": {"term": {"age": 5}}})

        await searches.get("a")
        await searches.get("b")

        msearches = [call for call in transport.calls if call[0] == "msearch"]
        assert msearches == [("msearch", "cats_and_dogs,cats_and_dogs")]

    async def test_mapper(self, transport: MemoryTransport, animals: SingleIndex) -> None:
        searches = MultiSearch(transport)
        searches.add(
            "names", "cats_and_dogs", {"sort": [{"age": "asc"}]}, mapper=lambda hit: hit["_source"]["name"]
        )

        names = await searches.get("names")

        assert list(names) == ["Felix", "Rex", "Tom"]

    async def test_failed_search_is_reported_per_name(self, transport: MemoryTransport, animals: SingleIndex) -> None:
        searches = MultiSearch(transport)
        searches.add("ok", "cats_and_dogs", {})
        searches.add("missing", "birds", {})

        results = await searches.fetch()

        assert results["ok"].total == 3
        assert results["missing"].error is not None
        assert len(results["missing"]) == 0

    async def test_access_before_fetch(self, transport: MemoryTransport) -> None:
        searches = MultiSearch(transport)
        searches.add("a", "cats_and_dogs", {})
        with pytest.raises(RuntimeError):
            searches["a"]

    async def test_add_after_fetch(self) -> None:
        transport = AsyncMock()
        transport.msearch.return_value = [{"hits": {"total": {"value": 0}, "hits": []}}]
        searches = MultiSearch(transport)
        searches.add("a", "cats_and_dogs", {})
        await searches.fetch()
        with pytest.raises(RuntimeError):
            searches.add("b", "cats_and_dogs", {})


class TestSearchResults:
    def test_from_response(self) -> None:
        response: dict[str, Any] = {
            "took": 4,
            "hits": {
                "total": {"value": 12, "relation": "eq"},
                "hits": [
                    {"_index": "users-1", "_id": "1", "_version": 2, "_source": {"name": "John", "doc_type": "user"}}
                ],
            },
        }
        results = SearchResults.from_response(response)
        assert results.total == 12
        assert results.took_ms == 4
        assert len(results) == 1
        assert results[0].doc_type == "user"
        assert results[0].source == {"name": "John"}

    def test_error_response(self) -> None:
        response = {"error": {"type": "index_not_found_exception", "reason": "no such index"}}
        results = SearchResults.from_response(response)
        assert results.error == "no such index"
        assert results.total == 0
