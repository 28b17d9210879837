from __future__ import annotations

import abc
import json
import logging
from typing import Any, Callable, Optional, Sequence

from lantern._config import OfflineConfig
from lantern._core._headers import Headers
from lantern._core._router import StrategyKind
from lantern._core._storages._sync_base import SyncBaseResponseStore, SyncBaseStructuredStore
from lantern._core.models import Generation, Request, Response, ResponseMetadata
from lantern._exceptions import (
    DecodeFailure,
    NetworkFailure,
    NonSuccessStatus,
    StoreMiss,
    StoreReadFailure,
    StoreWriteFailure,
)
from lantern._utils import generate_http_date, make_sync_iterator

logger = logging.getLogger("lantern.strategies")

__all__ = (
    "SyncStrategy",
    "SyncBypass",
    "SyncCacheFirst",
    "SyncNetworkFirstStructured",
    "SyncOpportunisticCache",
)

EMPTY_COLLECTION = b"[]"


def decode_document(body: bytes, url: str) -> Any:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise DecodeFailure(f"Response body for {url!r} is not valid JSON") from exc


def synthesize_response(status_code: int, body: bytes, content_type: Optional[str] = None) -> Response:
    headers = Headers({"Content-Length": str(len(body)), "Date": generate_http_date()})
    if content_type is not None:
        headers["Content-Type"] = content_type
    response = Response(status_code=status_code, headers=headers, stream=make_sync_iterator([body]))
    setattr(response, "collected_body", body)
    return response


class SyncStrategy(abc.ABC):
    kind: StrategyKind

    def __init__(
        self,
        request_sender: Callable[[Request], Response],
        config: OfflineConfig,
        response_store: SyncBaseResponseStore,
    ) -> None:
        self.send_request = request_sender
        self.config = config
        self.response_store = response_store

    @abc.abstractmethod
    def serve(self, request: Request) -> Response:
        raise NotImplementedError()

    def _fetch(self, request: Request) -> Response:
        """
        Fetch `request`, treating a non-success status as a failure.

        Raises:
            NetworkFailure: the fetch could not complete.
            NonSuccessStatus: the server answered, but not with a 2xx status.
        """
        response = self.send_request(request)
        if not response.is_success:
            raise NonSuccessStatus(response)
        return response

    def _active_generation(self) -> Optional[Generation]:
        try:
            return self.response_store.active_generation()
        except StoreReadFailure as exc:
            logger.warning(f"Serving without a generation: {exc}")
            return None

    def _lookup(self, generation: Optional[Generation], requests: Sequence[Request]) -> Response:
        """
        Return the first stored response among `requests`, in order.

        Raises:
            StoreMiss: no readable snapshot exists for any of them.
        """
        if generation is not None:
            for candidate in requests:
                try:
                    cached = self.response_store.get(generation, candidate)
                except StoreReadFailure:
                    logger.debug(f"Treating unreadable snapshot of {candidate.url} as a miss")
                    continue
                if cached is not None:
                    return cached
        raise StoreMiss(f"No stored response for {requests[0].url!r}")

    def _store_snapshot(self, generation: Optional[Generation], request: Request, response: Response) -> bool:
        if generation is None:
            logger.debug("No active generation, response not stored")
            return False

        response.read()
        try:
            self.response_store.put(generation, request, response.clone())
        except StoreWriteFailure as exc:
            logger.warning(f"Could not store response for {request.url}: {exc}")
            return False
        logger.debug(f"Stored response for {request.url} in generation {generation.name!r}")
        return True

    def _fallback_request(self, url: str) -> Request:
        return Request(method="GET", url=url)

    def _tag(self, response: Response, **metadata: Any) -> Response:
        response.metadata.update(ResponseMetadata(lantern_strategy=self.kind.value, **metadata))  # type: ignore
        return response


class SyncBypass(SyncStrategy):
    """
    Hands the request to the network untouched. No store is read or written.
    """

    kind = StrategyKind.BYPASS

    def serve(self, request: Request) -> Response:
        logger.debug(f"Skipping non-cacheable URL: {request.url}")
        return self.send_request(request)


class SyncCacheFirst(SyncStrategy):
    """
    Serves stored responses without touching the network and stores every miss.

    Stored responses are never revalidated; they live until their generation is
    swept by the next activation. When the network is unreachable the configured
    navigation fallback is served instead.
    """

    kind = StrategyKind.CACHE_FIRST

    def serve(self, request: Request) -> Response:
        generation = self._active_generation()

        try:
            cached = self._lookup(generation, [request])
        except StoreMiss:
            logger.debug(f"Cache miss for {request.url}")
        else:
            logger.debug(f"Serving {request.url} from cache")
            return self._tag(cached)

        try:
            response = self.send_request(request)
        except NetworkFailure as exc:
            logger.warning(f"Cache first strategy failed: {exc}")
            try:
                fallback = self._lookup(generation, [self._fallback_request(self.config.navigation_fallback)])
            except StoreMiss:
                logger.warning("No offline fallback page is stored")
                raise exc
            return self._tag(fallback, lantern_fallback=True)

        stored = False
        if response.is_success:
            stored = self._store_snapshot(generation, request, response)
        return self._tag(response, lantern_from_cache=False, lantern_stored=stored)


class SyncNetworkFirstStructured(SyncStrategy):
    """
    Always asks the network first and keeps the decoded JSON of every successful response.

    When the network fails, or answers with an error status, the last stored document
    for the URL is served as a fresh `200 application/json` response. Only the payload
    survives, the original status line and headers do not. Without a stored document
    an empty JSON array is returned, so listing endpoints degrade to "no data".
    """

    kind = StrategyKind.NETWORK_FIRST_STRUCTURED

    def __init__(
        self,
        request_sender: Callable[[Request], Response],
        config: OfflineConfig,
        response_store: SyncBaseResponseStore,
        structured_store: SyncBaseStructuredStore,
    ) -> None:
        super().__init__(request_sender, config, response_store)
        self.structured_store = structured_store

    def serve(self, request: Request) -> Response:
        try:
            response = self._fetch(request)
        except (NetworkFailure, NonSuccessStatus) as exc:
            logger.warning(f"Network first strategy failed: {exc}")
            return self._serve_stored_document(request)

        body = response.read()
        stored = False
        try:
            self.structured_store.put(request.url, decode_document(body, request.url))
            stored = True
        except (DecodeFailure, StoreWriteFailure) as exc:
            logger.warning(f"Could not store document for {request.url}: {exc}")
        return self._tag(response, lantern_from_cache=False, lantern_stored=stored)

    def _serve_stored_document(self, request: Request) -> Response:
        try:
            document = self.structured_store.get(request.url)
        except (DecodeFailure, StoreReadFailure) as exc:
            logger.warning(f"Ignoring stored document: {exc}")
            document = None

        if document is None:
            logger.debug(f"No stored document for {request.url}, serving an empty collection")
            return self._tag(
                synthesize_response(200, EMPTY_COLLECTION, content_type="application/json"),
                lantern_from_cache=False,
                lantern_fallback=True,
            )

        logger.debug(f"Using stored document for {request.url}")
        body = json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return self._tag(
            synthesize_response(200, body, content_type="application/json"),
            lantern_from_cache=True,
        )


class SyncOpportunisticCache(SyncStrategy):
    """
    Fetches from the network and keeps a snapshot of every successful response.

    The live response is returned whenever the fetch completes, whatever its status.
    When it does not, the stored snapshot of the exact request is served, then the
    generic fallback, then the navigation fallback, and finally an empty `504`.
    Nothing raised by the network or the stores escapes this strategy.
    """

    kind = StrategyKind.OPPORTUNISTIC_CACHE

    def serve(self, request: Request) -> Response:
        generation = self._active_generation()

        try:
            response = self.send_request(request)
        except NetworkFailure as exc:
            logger.warning(f"Dynamic caching failed: {exc}")
            return self._serve_stored(generation, request)

        stored = False
        if response.is_success:
            stored = self._store_snapshot(generation, request, response)
        return self._tag(response, lantern_from_cache=False, lantern_stored=stored)

    def _serve_stored(self, generation: Optional[Generation], request: Request) -> Response:
        try:
            return self._tag(self._lookup(generation, [request]))
        except StoreMiss:
            pass

        fallbacks = [
            self._fallback_request(url)
            for url in dict.fromkeys([self.config.generic_fallback, self.config.navigation_fallback])
        ]
        try:
            fallback = self._lookup(generation, fallbacks)
        except StoreMiss:
            logger.warning(f"No stored response or fallback for {request.url}")
            return self._tag(synthesize_response(504, b""), lantern_from_cache=False, lantern_fallback=True)
        return self._tag(fallback, lantern_fallback=True)
