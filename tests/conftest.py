"""Shared test fixtures and configuration."""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from indexkeeper.config.settings import MigrationSettings, Settings
from indexkeeper.core.coordinator import RemapCoordinator
from indexkeeper.core.write_guard import WriteGuard
from indexkeeper.strategies.alias_index import AliasIndex
from indexkeeper.transport.memory.transport import MemoryTransport

USER_DEFINITION: dict[str, Any] = {
    "settings": {"number_of_shards": 1},
    "mappings": {
        "properties": {
            "name": {"type": "text"},
            "age": {"type": "integer"},
        }
    },
}

USER_DEFINITION_V2: dict[str, Any] = {
    "settings": {"number_of_shards": 1},
    "mappings": {
        "properties": {
            "name": {"type": "keyword"},
            "age": {"type": "integer"},
            "email": {"type": "keyword"},
        }
    },
}


@pytest.fixture
def settings() -> Settings:
    """Create a test Settings instance backed by the in-memory transport."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        transport={"backend": "memory"},
        migration={"batch_size": 100, "max_retries": 2, "retry_backoff": 0.0, "delete_retries": 1},
    )


@pytest.fixture
def migration_settings(settings: Settings) -> MigrationSettings:
    return settings.migration


@pytest.fixture
def transport() -> MemoryTransport:
    return MemoryTransport()


@pytest.fixture
def guard(transport: MemoryTransport, migration_settings: MigrationSettings) -> WriteGuard:
    return WriteGuard(
        transport,
        max_retries=migration_settings.max_retries,
        retry_backoff=migration_settings.retry_backoff,
    )


@pytest.fixture
def coordinator(
    transport: MemoryTransport, guard: WriteGuard, migration_settings: MigrationSettings
) -> RemapCoordinator:
    return RemapCoordinator(transport, guard, migration_settings)


@pytest.fixture
async def users(transport: MemoryTransport, coordinator: RemapCoordinator) -> AliasIndex:
    """A created, empty ``users`` alias index."""
    index = AliasIndex(transport, "users", doc_type="user", definition=USER_DEFINITION, coordinator=coordinator)
    await index.create()
    return index


async def _seed(index: AliasIndex, count: int, doc_type: str = "user") -> None:
    batch = index.new_batch()
    for i in range(count):
        batch.index(doc_type, i, {"name": f"user {i}", "age": i % 90})
    await batch.execute()
    await index.flush()


@pytest.fixture
def seed() -> Callable[..., Awaitable[None]]:
    """Index ``count`` users with ids ``0..count-1`` in one bulk request."""
    return _seed


@pytest.fixture
def definition_v2() -> dict[str, Any]:
    return copy.deepcopy(USER_DEFINITION_V2)
