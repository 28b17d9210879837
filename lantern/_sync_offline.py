from __future__ import annotations

import logging
from typing import Callable

from typing_extensions import assert_never

from lantern._sync_lifecycle import SyncLifecycleManager
from lantern._sync_strategies import (
    SyncBypass,
    SyncCacheFirst,
    SyncNetworkFirstStructured,
    SyncOpportunisticCache,
    SyncStrategy,
)
from lantern._config import OfflineConfig
from lantern._core._router import StrategyKind, classify
from lantern._core._storages._sync_base import SyncBaseResponseStore, SyncBaseStructuredStore
from lantern._core._storages._sync_sqlite import SyncSqliteResponseStore, SyncSqliteStructuredStore
from lantern._core.models import Request, Response

logger = logging.getLogger("lantern.proxy")


class SyncOfflineProxy:
    """
    Offline-first interception of outgoing requests.

    This class is independent of any specific HTTP library and works only with internal models.
    It delegates network access to a user-provided callable, which must raise `NetworkFailure`
    when a request cannot complete. Each request is classified by the router and served by
    the matching strategy.

    Args:
        request_sender: Callable that sends requests over the network and returns responses.
        config: Static offline configuration.
        response_store: Generational store of raw responses. Defaults to SyncSqliteResponseStore.
        structured_store: Store of decoded API documents. Defaults to SyncSqliteStructuredStore.
    """

    def __init__(
        self,
        request_sender: Callable[[Request], Response],
        config: OfflineConfig,
        response_store: SyncBaseResponseStore | None = None,
        structured_store: SyncBaseStructuredStore | None = None,
    ) -> None:
        self.send_request = request_sender
        self.config = config
        self.response_store = response_store if response_store is not None else SyncSqliteResponseStore()
        self.structured_store = structured_store if structured_store is not None else SyncSqliteStructuredStore()

        self.bypass = SyncBypass(request_sender, config, self.response_store)
        self.cache_first = SyncCacheFirst(request_sender, config, self.response_store)
        self.network_first_structured = SyncNetworkFirstStructured(
            request_sender, config, self.response_store, self.structured_store
        )
        self.opportunistic_cache = SyncOpportunisticCache(request_sender, config, self.response_store)
        self.lifecycle = SyncLifecycleManager(config, self.response_store, request_sender)

    def handle_request(self, request: Request) -> Response:
        kind = classify(request, self.config)
        logger.debug(f"Handling request with strategy: {kind.value}")
        return self.strategy_for(kind).serve(request)

    def strategy_for(self, kind: StrategyKind) -> SyncStrategy:
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

    def close(self) -> None:
        self.response_store.close()
        self.structured_store.close()
