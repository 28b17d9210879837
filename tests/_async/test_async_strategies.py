from datetime import datetime
from typing import Union
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import anysqlite
import pytest
from inline_snapshot import snapshot
from time_machine import travel

from lantern import (
    AsyncBaseResponseStore,
    AsyncBypass,
    AsyncCacheFirst,
    AsyncNetworkFirstStructured,
    AsyncOpportunisticCache,
    AsyncSqliteResponseStore,
    AsyncSqliteStructuredStore,
    NetworkFailure,
    OfflineConfig,
    Request,
    RequestMode,
)
from tests.conftest import FakeNetwork

CONFIG = OfflineConfig(
    generation_name="v1",
    base_url="https://movies.example.com",
    manifest=["/", "/offline"],
    structured_origins=["https://www.omdbapi.com"],
)

HOME = "https://movies.example.com/"
OFFLINE_PAGE = "https://movies.example.com/offline"
POSTER = "https://img.example.com/posters/batman.jpg"
SEARCH = "https://www.omdbapi.com/?s=batman"


async def make_store(active: bool = True) -> AsyncSqliteResponseStore:
    store = AsyncSqliteResponseStore(connection=await anysqlite.connect(":memory:"))
    await store.open_generation("v1")
    if active:
        await store.activate_generation("v1")
    return store


async def count_entries(store: AsyncSqliteResponseStore) -> int:
    conn = await store._ensure_connection()
    cursor = await conn.cursor()
    await cursor.execute("SELECT COUNT(*) FROM entries")
    row = await cursor.fetchone()
    return int(row[0])


async def drop_table(store: Union[AsyncSqliteResponseStore, AsyncSqliteStructuredStore], table: str) -> None:
    conn = await store._ensure_connection()
    cursor = await conn.cursor()
    await cursor.execute(f"DROP TABLE {table}")


@pytest.mark.anyio
async def test_bypass_never_touches_the_store() -> None:
    network = FakeNetwork({"data:text/plain,hello": (200, b"hello")})
    store = AsyncMock(spec=AsyncBaseResponseStore)
    strategy = AsyncBypass(network.asend, CONFIG, store)

    response = await strategy.serve(Request(method="GET", url="data:text/plain,hello"))

    assert await response.aread() == b"hello"
    assert network.calls == ["data:text/plain,hello"]
    assert store.method_calls == []


@pytest.mark.anyio
async def test_bypass_propagates_network_failures() -> None:
    network = FakeNetwork({})
    strategy = AsyncBypass(network.asend, CONFIG, AsyncMock(spec=AsyncBaseResponseStore))

    with pytest.raises(NetworkFailure):
        await strategy.serve(Request(method="GET", url="blob:https://movies.example.com/0d1f"))


@pytest.mark.anyio
@travel(datetime(2024, 1, 1, 12, 0, 0, tzinfo=ZoneInfo("UTC")), tick=False)
async def test_cache_first_fetches_once_then_serves_from_cache() -> None:
    network = FakeNetwork({HOME: (200, b"<h1>Movie Master</h1>")})
    store = await make_store()
    strategy = AsyncCacheFirst(network.asend, CONFIG, store)
    request = Request(method="GET", url=HOME, mode=RequestMode.NAVIGATE)

    first = await strategy.serve(request)

    assert network.calls == [HOME]
    assert await count_entries(store) == 1
    assert await first.aread() == b"<h1>Movie Master</h1>"
    assert first.metadata == snapshot(
        {"lantern_strategy": "CacheFirst", "lantern_from_cache": False, "lantern_stored": True}
    )

    second = await strategy.serve(request)

    assert network.calls == [HOME]
    assert await count_entries(store) == 1
    assert await second.aread() == b"<h1>Movie Master</h1>"
    assert second.metadata == snapshot(
        {
            "lantern_from_cache": True,
            "lantern_generation": "v1",
            "lantern_created_at": 1704110400.0,
            "lantern_strategy": "CacheFirst",
        }
    )


@pytest.mark.anyio
async def test_cache_first_serves_navigation_fallback_when_offline(caplog: pytest.LogCaptureFixture) -> None:
    network = FakeNetwork({OFFLINE_PAGE: (200, b"You are offline")})
    store = await make_store()
    strategy = AsyncCacheFirst(network.asend, CONFIG, store)
    await strategy.serve(Request(method="GET", url=OFFLINE_PAGE))
    network.online = False

    with caplog.at_level("DEBUG", logger="lantern"):
        response = await strategy.serve(Request(method="GET", url=HOME, mode=RequestMode.NAVIGATE))

    assert response.status_code == 200
    assert await response.aread() == b"You are offline"
    assert response.metadata["lantern_fallback"] is True
    assert caplog.messages == snapshot(
        [
            "Cache miss for https://movies.example.com/",
            "Cache first strategy failed: ConnectError: could not reach https://movies.example.com/",
        ]
    )


@pytest.mark.anyio
async def test_cache_first_without_fallback_propagates_network_failure() -> None:
    network = FakeNetwork({})
    strategy = AsyncCacheFirst(network.asend, CONFIG, await make_store())

    with pytest.raises(NetworkFailure, match="could not reach https://movies.example.com/"):
        await strategy.serve(Request(method="GET", url=HOME, mode=RequestMode.NAVIGATE))


@pytest.mark.anyio
async def test_cache_first_does_not_store_error_responses() -> None:
    network = FakeNetwork({HOME: (404, b"Not found")})
    store = await make_store()
    strategy = AsyncCacheFirst(network.asend, CONFIG, store)

    response = await strategy.serve(Request(method="GET", url=HOME, mode=RequestMode.NAVIGATE))

    assert response.status_code == 404
    assert response.metadata["lantern_stored"] is False
    assert await count_entries(store) == 0


@pytest.mark.anyio
async def test_cache_first_without_active_generation(caplog: pytest.LogCaptureFixture) -> None:
    network = FakeNetwork({HOME: (200, b"<h1>Movie Master</h1>")})
    store = await make_store(active=False)
    strategy = AsyncCacheFirst(network.asend, CONFIG, store)

    with caplog.at_level("DEBUG", logger="lantern"):
        response = await strategy.serve(Request(method="GET", url=HOME, mode=RequestMode.NAVIGATE))

    assert response.status_code == 200
    assert response.metadata["lantern_stored"] is False
    assert await count_entries(store) == 0
    assert caplog.messages == snapshot(
        ["Cache miss for https://movies.example.com/", "No active generation, response not stored"]
    )


@pytest.mark.anyio
async def test_network_first_structured_serves_stored_document_when_offline() -> None:
    network = FakeNetwork({SEARCH: (200, b'{"id":1}')})
    structured_store = AsyncSqliteStructuredStore(connection=await anysqlite.connect(":memory:"))
    strategy = AsyncNetworkFirstStructured(network.asend, CONFIG, await make_store(), structured_store)
    request = Request(method="GET", url=SEARCH, mode=RequestMode.CROSS_ORIGIN_API)

    live = await strategy.serve(request)
    assert live.metadata == snapshot(
        {"lantern_strategy": "NetworkFirstStructured", "lantern_from_cache": False, "lantern_stored": True}
    )
    assert await structured_store.get(SEARCH) == {"id": 1}

    network.online = False
    response = await strategy.serve(request)

    assert response.status_code == 200
    assert response.headers["Content-Type"] == "application/json"
    assert await response.aread() == b'{"id":1}'
    assert response.metadata == snapshot({"lantern_strategy": "NetworkFirstStructured", "lantern_from_cache": True})


@pytest.mark.anyio
async def test_network_first_structured_without_record_returns_empty_collection() -> None:
    network = FakeNetwork({})
    structured_store = AsyncSqliteStructuredStore(connection=await anysqlite.connect(":memory:"))
    strategy = AsyncNetworkFirstStructured(network.asend, CONFIG, await make_store(), structured_store)

    response = await strategy.serve(Request(method="GET", url=SEARCH))

    assert response.status_code == 200
    assert response.headers["Content-Type"] == "application/json"
    assert await response.aread() == b"[]"
    assert response.metadata == snapshot(
        {"lantern_strategy": "NetworkFirstStructured", "lantern_from_cache": False, "lantern_fallback": True}
    )


@pytest.mark.anyio
async def test_network_first_structured_falls_back_on_error_status() -> None:
    network = FakeNetwork({SEARCH: (503, b"Service Unavailable")})
    structured_store = AsyncSqliteStructuredStore(connection=await anysqlite.connect(":memory:"))
    await structured_store.put(SEARCH, {"Search": [{"Title": "Batman"}]})
    strategy = AsyncNetworkFirstStructured(network.asend, CONFIG, await make_store(), structured_store)

    response = await strategy.serve(Request(method="GET", url=SEARCH))

    assert response.status_code == 200
    assert await response.aread() == b'{"Search":[{"Title":"Batman"}]}'


@pytest.mark.anyio
async def test_network_first_structured_keeps_live_response_on_decode_failure(
    caplog: pytest.LogCaptureFixture,
) -> None:
    network = FakeNetwork({SEARCH: (200, b"<html>rate limited</html>")})
    structured_store = AsyncSqliteStructuredStore(connection=await anysqlite.connect(":memory:"))
    strategy = AsyncNetworkFirstStructured(network.asend, CONFIG, await make_store(), structured_store)

    with caplog.at_level("WARNING", logger="lantern"):
        response = await strategy.serve(Request(method="GET", url=SEARCH))

    assert await response.aread() == b"<html>rate limited</html>"
    assert response.metadata["lantern_stored"] is False
    assert await structured_store.get_record(SEARCH) is None
    assert caplog.messages == snapshot(
        [
            "Could not store document for https://www.omdbapi.com/?s=batman: "
            "Response body for 'https://www.omdbapi.com/?s=batman' is not valid JSON"
        ]
    )


@pytest.mark.anyio
async def test_opportunistic_cache_stores_and_serves_when_offline() -> None:
    network = FakeNetwork({POSTER: (200, b"jpeg bytes")})
    store = await make_store()
    strategy = AsyncOpportunisticCache(network.asend, CONFIG, store)
    request = Request(method="GET", url=POSTER, mode=RequestMode.SUBRESOURCE)

    live = await strategy.serve(request)
    assert live.metadata == snapshot(
        {"lantern_strategy": "OpportunisticCache", "lantern_from_cache": False, "lantern_stored": True}
    )
    # The write completed before serve() returned
    assert await count_entries(store) == 1

    network.online = False
    response = await strategy.serve(request)

    assert await response.aread() == b"jpeg bytes"
    assert response.metadata["lantern_from_cache"] is True
    assert "lantern_fallback" not in response.metadata


@pytest.mark.anyio
async def test_opportunistic_cache_returns_error_responses_without_storing() -> None:
    network = FakeNetwork({POSTER: (404, b"Not found")})
    store = await make_store()
    strategy = AsyncOpportunisticCache(network.asend, CONFIG, store)

    response = await strategy.serve(Request(method="GET", url=POSTER))

    assert response.status_code == 404
    assert response.metadata["lantern_stored"] is False
    assert await count_entries(store) == 0


@pytest.mark.anyio
async def test_opportunistic_cache_falls_back_to_generic_then_navigation_page() -> None:
    config = OfflineConfig(
        generation_name="v1",
        base_url="https://movies.example.com",
        generic_fallback_url="/missing.html",
    )
    network = FakeNetwork({OFFLINE_PAGE: (200, b"You are offline")})
    store = await make_store()
    strategy = AsyncOpportunisticCache(network.asend, config, store)
    await strategy.serve(Request(method="GET", url=OFFLINE_PAGE))
    network.online = False

    response = await strategy.serve(Request(method="GET", url=POSTER))

    # The generic fallback is not stored, so the navigation fallback answers
    assert await response.aread() == b"You are offline"
    assert response.metadata["lantern_fallback"] is True


@pytest.mark.anyio
async def test_opportunistic_cache_synthesizes_gateway_timeout(caplog: pytest.LogCaptureFixture) -> None:
    network = FakeNetwork({})
    strategy = AsyncOpportunisticCache(network.asend, CONFIG, await make_store())

    with caplog.at_level("WARNING", logger="lantern"):
        response = await strategy.serve(Request(method="GET", url=POSTER))

    assert response.status_code == 504
    assert await response.aread() == b""
    assert response.metadata == snapshot(
        {"lantern_strategy": "OpportunisticCache", "lantern_from_cache": False, "lantern_fallback": True}
    )
    assert caplog.messages == snapshot(
        [
            "Dynamic caching failed: ConnectError: could not reach https://img.example.com/posters/batman.jpg",
            "No stored response or fallback for https://img.example.com/posters/batman.jpg",
        ]
    )


@pytest.mark.anyio
@pytest.mark.parametrize("table", ["entries", "generations"])
async def test_opportunistic_cache_treats_unreadable_store_as_miss(table: str) -> None:
    network = FakeNetwork({POSTER: (200, b"jpeg bytes")})
    store = await make_store()
    strategy = AsyncOpportunisticCache(network.asend, CONFIG, store)
    await strategy.serve(Request(method="GET", url=POSTER))
    await drop_table(store, table)
    network.online = False

    response = await strategy.serve(Request(method="GET", url=POSTER))

    assert response.status_code == 504
    assert response.metadata["lantern_fallback"] is True


@pytest.mark.anyio
async def test_cache_first_fetches_when_the_active_generation_cannot_be_read() -> None:
    network = FakeNetwork({HOME: (200, b"<h1>Movie Master</h1>")})
    store = await make_store()
    await drop_table(store, "generations")
    strategy = AsyncCacheFirst(network.asend, CONFIG, store)

    response = await strategy.serve(Request(method="GET", url=HOME, mode=RequestMode.NAVIGATE))

    assert await response.aread() == b"<h1>Movie Master</h1>"
    assert response.metadata["lantern_stored"] is False


@pytest.mark.anyio
async def test_network_first_structured_treats_unreadable_store_as_empty(caplog: pytest.LogCaptureFixture) -> None:
    network = FakeNetwork({SEARCH: (200, b'{"Search":[{"Title":"Batman"}]}')})
    structured_store = AsyncSqliteStructuredStore(connection=await anysqlite.connect(":memory:"))
    strategy = AsyncNetworkFirstStructured(network.asend, CONFIG, await make_store(), structured_store)
    await strategy.serve(Request(method="GET", url=SEARCH))
    await drop_table(structured_store, "records")
    network.online = False

    with caplog.at_level("WARNING", logger="lantern.strategies"):
        response = await strategy.serve(Request(method="GET", url=SEARCH))

    assert response.status_code == 200
    assert await response.aread() == b"[]"
    assert response.metadata["lantern_fallback"] is True
    assert caplog.messages[-1] == (
        "Ignoring stored document: Could not read record for 'https://www.omdbapi.com/?s=batman'"
    )
