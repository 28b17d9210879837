from __future__ import annotations

import logging
from typing import Awaitable, Callable

from typing_extensions import assert_never

from lantern._async_lifecycle import AsyncLifecycleManager
from lantern._async_strategies import (
    AsyncBypass,
    AsyncCacheFirst,
    AsyncNetworkFirstStructured,
    AsyncOpportunisticCache,
    AsyncStrategy,
)
from lantern._config import OfflineConfig
from lantern._core._router import StrategyKind, classify
from lantern._core._storages._async_base import AsyncBaseResponseStore, AsyncBaseStructuredStore
from lantern._core._storages._async_sqlite import AsyncSqliteResponseStore, AsyncSqliteStructuredStore
from lantern._core.models import Request, Response

logger = logging.getLogger("lantern.proxy")


class AsyncOfflineProxy:
    """
    Offline-first interception of outgoing requests.

    This class is independent of any specific HTTP library and works only with internal models.
    It delegates network access to a user-provided callable, which must raise `NetworkFailure`
    when a request cannot complete. Each request is classified by the router and served by
    the matching strategy.

    Args:
        request_sender: Callable that sends requests over the network and returns responses.
        config: Static offline configuration.
        response_store: Generational store of raw responses. Defaults to AsyncSqliteResponseStore.
        structured_store: Store of decoded API documents. Defaults to AsyncSqliteStructuredStore.
    """

    def __init__(
        self,
        request_sender: Callable[[Request], Awaitable[Response]],
        config: OfflineConfig,
        response_store: AsyncBaseResponseStore | None = None,
        structured_store: AsyncBaseStructuredStore | None = None,
    ) -> None:
        self.send_request = request_sender
        self.config = config
        self.response_store = response_store if response_store is not None else AsyncSqliteResponseStore()
        self.structured_store = structured_store if structured_store is not None else AsyncSqliteStructuredStore()

        self.bypass = AsyncBypass(request_sender, config, self.response_store)
        self.cache_first = AsyncCacheFirst(request_sender, config, self.response_store)
        self.network_first_structured = AsyncNetworkFirstStructured(
            request_sender, config, self.response_store, self.structured_store
        )
        self.opportunistic_cache = AsyncOpportunisticCache(request_sender, config, self.response_store)
        self.lifecycle = AsyncLifecycleManager(config, self.response_store, request_sender)

    async def handle_request(self, request: Request) -> Response:
        kind = classify(request, self.config)
        logger.debug(f"Handling request with strategy: {kind.value}")
        return await self.strategy_for(kind).serve(request)

    def strategy_for(self, kind: StrategyKind) -> AsyncStrategy:
        if kind is StrategyKind.BYPASS:
            return self.bypass
        elif kind is StrategyKind.NETWORK_FIRST_STRUCTURED:
            return self.network_first_structured
        elif kind is StrategyKind.CACHE_FIRST:
            return self.cache_first
        elif kind is StrategyKind.OPPORTUNISTIC_CACHE:
            return self.opportunistic_cache
        else:
            assert_never(kind)

    async def aclose(self) -> None:
        await self.response_store.close()
        await self.structured_store.close()
