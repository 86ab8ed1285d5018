"""Integration test fixtures — A live OpenSearch node.

Point the tests at a disposable node:
    INDEXKEEPER_TEST_HOSTS=http://localhost:9200 pytest -m integration

Every test works on its own randomly named logical index and deletes it
afterwards.
"""

from __future__ import annotations

import os
import uuid

import pytest

from indexkeeper.core.index import generation_pattern
from indexkeeper.transport.opensearch.transport import OpenSearchTransport


@pytest.fixture
def test_hosts() -> list[str]:
    hosts = os.environ.get("INDEXKEEPER_TEST_HOSTS")
    if not hosts:
        pytest.skip("INDEXKEEPER_TEST_HOSTS not set")
    return [h.strip() for h in hosts.split(",") if h.strip()]


@pytest.fixture
async def transport(test_hosts: list[str]):
    t = OpenSearchTransport(
        hosts=test_hosts,
        username=os.environ.get("INDEXKEEPER_TEST_USERNAME"),
        password=os.environ.get("INDEXKEEPER_TEST_PASSWORD"),
        verify_certs=False,
    )
    await t.initialize()
    yield t
    await t.shutdown()


@pytest.fixture
async def logical_name(transport: OpenSearchTransport):
    name = f"indexkeeper-test-{uuid.uuid4().hex[:8]}"
    yield name
    pattern = generation_pattern(name)
    for index in await transport.list_indices(f"{name}-*"):
        if pattern.match(index):
            await transport.delete_index(index)
