##########################################################################################
#
# Script name: conftest.py
#
# Description: Shared fixtures: mock HTTP clients and a temporary SQLite store.
#
##########################################################################################

import httpx
import pytest_asyncio

from feed_discovery.storage import SqliteStorage, init_schema


@pytest_asyncio.fixture
async def make_client():
    clients: list[httpx.AsyncClient] = []

    def _make(handler) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def storage(tmp_path):
    store = SqliteStorage(str(tmp_path / 'discovery.db'))
    await store.open()
    await init_schema(store)
    yield store
    await store.close()
