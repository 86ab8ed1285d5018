"""Tests for the single index strategy."""

from __future__ import annotations

import pytest

from indexkeeper.exceptions import ConcreteIndexMissing, DocumentNotFound, IndexAlreadyExists
from indexkeeper.strategies.single_index import SingleIndex
from indexkeeper.transport.memory.transport import MemoryTransport

DEFINITION = {"mappings": {"properties": {"name": {"type": "text"}, "age": {"type": "integer"}}}}


@pytest.fixture
def animals(transport: MemoryTransport) -> SingleIndex:
    return SingleIndex(transport, "cats_and_dogs", doc_type="cat", definition=DEFINITION)


class TestLifecycle:
    async def test_create_and_missing(self, animals: SingleIndex) -> None:
        assert await animals.missing()
        await animals.create()
        assert not await animals.missing()
        mapping = await animals.mapping()
        assert mapping["properties"]["doc_type"] == {"type": "keyword"}
        assert mapping["properties"]["age"] == {"type": "integer"}

    async def test_create_existing_raises(self, animals: SingleIndex) -> None:
        await animals.create()
        with pytest.raises(IndexAlreadyExists):
            await animals.create()

    async def test_create_if_undefined_is_idempotent(self, animals: SingleIndex) -> None:
        await animals.create_if_undefined()
        await animals.index_document("cat", 1, {"name": "Felix"})
        await animals.create_if_undefined()
        assert await animals.count() == 1

    async def test_recreate_drops_documents(self, animals: SingleIndex) -> None:
        await animals.create()
        await animals.index_document("cat", 1, {"name": "Felix"})
        await animals.recreate()
        assert await animals.count() == 0

    async def test_delete_if_defined(self, animals: SingleIndex) -> None:
        await animals.delete_if_defined()
        await animals.create()
        await animals.delete_if_defined()
        assert await animals.missing()

    async def test_delete_missing_raises(self, animals: SingleIndex) -> None:
        with pytest.raises(ConcreteIndexMissing):
            await animals.delete()

    async def test_remap_is_not_supported(self, animals: SingleIndex) -> None:
        with pytest.raises(NotImplementedError):
            await animals.remap()


class TestDocuments:
    @pytest.fixture(autouse=True)
    async def created(self, animals: SingleIndex) -> None:
        await animals.create()

    async def test_index_get_update_delete(self, animals: SingleIndex) -> None:
        id, created = await animals.index_document("cat", 1, {"name": "Felix", "age": 3})
        assert (id, created) == ("1", True)
        assert await animals.update_document("cat", 1, {"age": 4}) == 2

        doc = await animals.get_document("cat", 1)
        assert doc.source == {"name": "Felix", "age": 4}
        assert doc.doc_type == "cat"

        await animals.delete_document("cat", 1)
        with pytest.raises(DocumentNotFound):
            await animals.get_document("cat", 1)

    async def test_reindex_replaces(self, animals: SingleIndex) -> None:
        await animals.index_document("cat", 1, {"name": "Felix"})
        _, created = await animals.index_document("cat", 1, {"name": "Tom"})
        assert not created

    async def test_missing_documents(self, animals: SingleIndex) -> None:
        with pytest.raises(DocumentNotFound):
            await animals.update_document("cat", 1, {"age": 4})
        with pytest.raises(DocumentNotFound):
            await animals.delete_document("cat", 1)

    async def test_two_types_share_one_index(self, animals: SingleIndex) -> None:
        await animals.index_document("cat", 1, {"name": "Felix"})
        await animals.index_document("dog", 2, {"name": "Rex"})
        await animals.index_document("dog", 3, {"name": "Fido"})
        await animals.flush()

        assert await animals.count() == 3
        assert await animals.count("dog") == 2
        dogs = await animals.search({"query": {"match": {"name": "rex"}}}, doc_type="dog")
        assert dogs.total == 1
        assert dogs[0].source == {"name": "Rex"}
        assert dogs[0].doc_type == "dog"

    async def test_delete_by_query(self, animals: SingleIndex) -> None:
        await animals.index_document("cat", 1, {"name": "Felix", "age": 3})
        await animals.index_document("cat", 2, {"name": "Tom", "age": 9})
        await animals.index_document("dog", 3, {"name": "Rex", "age": 9})

        assert await animals.delete_by_query("cat", {"term": {"age": 9}}) == 1
        assert await animals.count() == 2


class TestBulk:
    @pytest.fixture(autouse=True)
    async def created(self, animals: SingleIndex) -> None:
        await animals.create()

    async def test_bulk_context_manager(self, animals: SingleIndex) -> None:
        async with animals.bulk() as batch:
            batch.index("cat", 1, {"name": "Felix"})
            batch.index("dog", 2, {"name": "Rex"})
            batch.delete("cat", 3)

        assert [r.status for r in animals.last_bulk_results] == [201, 201, 404]
        assert await animals.count() == 2

    async def test_bulk_helpers_with_2000_documents(self, animals: SingleIndex) -> None:
        results = await animals.bulk_index((i, {"name": f"cat {i}", "age": 1}) for i in range(2000))
        assert len(results) == 2000 and all(r.ok for r in results)

        results = await animals.bulk_update((i, {"age": 2}) for i in range(1000))
        assert all(r.ok for r in results)

        results = await animals.bulk_delete(range(1500, 2000))
        assert all(r.ok for r in results)

        await animals.flush()
        assert await animals.count() == 1500
        aged = await animals.search({"query": {"term": {"age": 2}}, "size": 0})
        assert aged.total == 1000
