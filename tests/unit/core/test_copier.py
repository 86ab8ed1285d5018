"""Tests for the snapshot copier."""

from __future__ import annotations

import pytest

from indexkeeper.core.copier import SnapshotCopier
from indexkeeper.core.index import IndexHandle
from indexkeeper.exceptions import CopyPassFailure
from indexkeeper.models.operation import Operation
from indexkeeper.transport.base.exceptions import NotFoundError, TransportError
from indexkeeper.transport.memory.transport import MemoryTransport


@pytest.fixture
async def transport() -> MemoryTransport:
    t = MemoryTransport()
    await t.create_index("users-1", {})
    await t.create_index("users-2", {})
    await t.bulk("users-1", [Operation.index("user", i, {"n": i}) for i in range(250)])
    await t.index("users-1", "user", "0", {"n": 0, "edited": True})
    return t


@pytest.fixture
def copier() -> SnapshotCopier:
    return SnapshotCopier(batch_size=100, max_retries=2, retry_backoff=0)


class TestSnapshotCopier:
    async def test_copies_documents_with_versions(self, copier: SnapshotCopier, transport: MemoryTransport) -> None:
        progress: list[int] = []

        copied = await copier.copy(
            IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2"), on_progress=progress.append
        )

        assert copied == 250
        assert progress == [100, 200, 250]
        assert await transport.count("users-2") == 250
        edited = await transport.get("users-2", "user", "0")
        assert edited.version == 2
        assert edited.source == {"n": 0, "edited": True}

    async def test_second_pass_changes_nothing(self, copier: SnapshotCopier, transport: MemoryTransport) -> None:
        source, target = IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2")
        await copier.copy(source, target)
        before = [d for batch in [b async for b in transport.scan("users-2")] for d in batch]

        await copier.copy(source, target)

        after = [d for batch in [b async for b in transport.scan("users-2")] for d in batch]
        assert after == before

    async def test_newer_target_documents_survive(self, copier: SnapshotCopier, transport: MemoryTransport) -> None:
        await transport.index("users-2", "user", "5", {"n": "live"}, version=9)
        with pytest.raises(NotFoundError):
            await transport.delete("users-2", "user", "6", version=9)

        await copier.copy(IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2"))

        assert (await transport.get("users-2", "user", "5")).source == {"n": "live"}
        assert await transport.count("users-2") == 249

    async def test_transient_bulk_failure_is_retried(self, copier: SnapshotCopier, transport: MemoryTransport) -> None:
        transport.fail_writes("users-2", TransportError("node disconnected"), times=2)

        copied = await copier.copy(IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2"))

        assert copied == 250
        assert await transport.count("users-2") == 250

    async def test_persistent_failure_fails_the_pass(self, copier: SnapshotCopier, transport: MemoryTransport) -> None:
        transport.fail_writes("users-2", TransportError("node disconnected"), times=3)

        with pytest.raises(CopyPassFailure):
            await copier.copy(IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2"))

    async def test_missing_target_fails_the_pass(self, copier: SnapshotCopier, transport: MemoryTransport) -> None:
        with pytest.raises(CopyPassFailure):
            await copier.copy(IndexHandle(transport, "users-1"), IndexHandle(transport, "users-9"))

    async def test_empty_source(self, copier: SnapshotCopier, transport: MemoryTransport) -> None:
        await transport.create_index("orders-1", {})
        assert await copier.copy(IndexHandle(transport, "orders-1"), IndexHandle(transport, "users-2")) == 0

    async def test_scan_failure_restarts_the_pass(
        self, copier: SnapshotCopier, transport: MemoryTransport, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        scan = transport.scan
        failures = iter([TransportError("search context missing")] * 2)

        def flaky_scan(*args, **kwargs):
            error = next(failures, None)
            if error is not None:
                raise error
            return scan(*args, **kwargs)

        monkeypatch.setattr(transport, "scan", flaky_scan)

        assert await copier.copy(IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2")) == 250

    async def test_scan_that_keeps_failing_fails_the_pass(
        self, copier: SnapshotCopier, transport: MemoryTransport, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_scan(*args, **kwargs):
            raise TransportError("search context missing")

        monkeypatch.setattr(transport, "scan", broken_scan)

        with pytest.raises(CopyPassFailure) as exc_info:
            await copier.copy(IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2"))
        assert isinstance(exc_info.value.__cause__, TransportError)


class TestRecopy:
    @pytest.fixture
    async def copied(self, copier: SnapshotCopier, transport: MemoryTransport) -> tuple[IndexHandle, IndexHandle]:
        source, target = IndexHandle(transport, "users-1"), IndexHandle(transport, "users-2")
        await copier.copy(source, target)
        return source, target

    async def test_replays_missed_writes(
        self, copier: SnapshotCopier, transport: MemoryTransport, copied: tuple[IndexHandle, IndexHandle]
    ) -> None:
        await transport.index("users-1", "user", "1", {"n": 1, "late": True})
        await transport.update("users-1", "user", "2", {"late": True})
        deleted = await transport.delete("users-1", "user", "3")

        written = await copier.recopy(
            *copied,
            [
                Operation.index("user", 1, {"n": 1, "late": True}, version=2),
                Operation.update("user", 2, {}),
                Operation.delete("user", 3, version=deleted.version),
            ],
        )

        assert written == 3
        assert (await transport.get("users-2", "user", "1")).source == {"n": 1, "late": True}
        updated = await transport.get("users-2", "user", "2")
        assert (updated.source, updated.version) == ({"n": 2, "late": True}, 2)
        with pytest.raises(NotFoundError):
            await transport.get("users-2", "user", "3")

    async def test_update_of_deleted_document_is_skipped(
        self, copier: SnapshotCopier, transport: MemoryTransport, copied: tuple[IndexHandle, IndexHandle]
    ) -> None:
        await transport.delete("users-1", "user", "4")

        assert await copier.recopy(*copied, [Operation.update("user", 4, {})]) == 0

    async def test_stale_entry_does_not_overwrite_newer_target(
        self, copier: SnapshotCopier, transport: MemoryTransport, copied: tuple[IndexHandle, IndexHandle]
    ) -> None:
        await transport.index("users-2", "user", "5", {"n": "newer"}, version=9)

        await copier.recopy(*copied, [Operation.index("user", 5, {"n": "older"}, version=3)])

        assert (await transport.get("users-2", "user", "5")).source == {"n": "newer"}

    async def test_unwritable_target_fails(
        self, copier: SnapshotCopier, transport: MemoryTransport, copied: tuple[IndexHandle, IndexHandle]
    ) -> None:
        transport.fail_writes("users-2", TransportError("node disconnected"), times=3)

        with pytest.raises(CopyPassFailure):
            await copier.recopy(*copied, [Operation.index("user", 1, {"n": 1}, version=7)])
