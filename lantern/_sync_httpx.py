from __future__ import annotations

import ssl
import typing as t
from typing import (
    Iterable,
    Iterator,
    Union,
    cast,
    overload,
)

from httpx import RequestNotRead

from lantern._sync_lifecycle import SyncLifecycleManager
from lantern._sync_offline import SyncOfflineProxy
from lantern._config import OfflineConfig
from lantern._core._headers import Headers
from lantern._core._router import StrategyKind, classify
from lantern._core._storages._sync_base import SyncBaseResponseStore, SyncBaseStructuredStore
from lantern._core.models import Request, RequestMode, Response
from lantern._exceptions import LifecycleError, NetworkFailure
from lantern._utils import filter_mapping, make_sync_iterator

try:
    import httpx
except ImportError as e:
    raise ImportError(
        "httpx is required to use lantern.httpx module. "
        "Please install it with 'pip install httpx'."
    ) from e

# Framing headers, httpx sets them again when the message is sent
EXCLUDED_HEADERS = ("transfer-encoding",)


@overload
def _internal_to_httpx(
    value: Request,
) -> httpx.Request: ...
@overload
def _internal_to_httpx(
    value: Response,
) -> httpx.Response: ...
def _internal_to_httpx(
    value: Union[Request, Response],
) -> Union[httpx.Request, httpx.Response]:
    """
    Convert internal Request/Response to httpx.Request/httpx.Response.
    """
    if isinstance(value, Request):
        return httpx.Request(
            method=value.method,
            url=value.url,
            headers=value.headers.multi_items(),
            stream=_IteratorStream(value._iter_stream()),
            extensions=dict(value.metadata),
        )
    elif isinstance(value, Response):
        return httpx.Response(
            status_code=value.status_code,
            headers=value.headers.multi_items(),
            stream=_IteratorStream(value._iter_stream()),
            extensions=dict(value.metadata),
        )


@overload
def _httpx_to_internal(
    value: httpx.Request,
) -> Request: ...
@overload
def _httpx_to_internal(
    value: httpx.Response,
) -> Response: ...
def _httpx_to_internal(
    value: Union[httpx.Request, httpx.Response],
) -> Union[Request, Response]:
    """
    Convert httpx.Request/httpx.Response to internal Request/Response.
    """
    headers = Headers(
        [(key, val) for key, val in value.headers.multi_items() if key.lower() not in EXCLUDED_HEADERS]
    )
    if isinstance(value, httpx.Request):
        try:
            stream = make_sync_iterator([value.content])
        except RequestNotRead:
            stream = cast(Iterator[bytes], value.stream)

        return Request(
            method=value.method,
            url=str(value.url),
            mode=_request_mode(value),
            headers=headers,
            stream=stream,
            metadata={k: v for k, v in value.extensions.items() if k.startswith("lantern_")},
        )
    elif isinstance(value, httpx.Response):
        stream = make_sync_iterator([value.content]) if value.is_stream_consumed else value.iter_raw()

        if value.is_stream_consumed and "content-encoding" in value.headers:
            # If the stream was consumed and we don't know about
            # the original data and its size, fix the Content-Length
            # header and remove Content-Encoding so we can recreate it later properly.
            headers = Headers(
                {
                    **filter_mapping(
                        headers,
                        ["content-encoding"],
                    ),
                    "content-length": str(len(value.content)),
                }
            )

        return Response(
            status_code=value.status_code,
            headers=headers,
            stream=stream,
            metadata={},
        )


def _request_mode(request: httpx.Request) -> RequestMode:
    mode = request.extensions.get("lantern_mode")
    if mode is not None:
        try:
            return RequestMode(mode)
        except ValueError:
            expected = ", ".join(repr(m.value) for m in RequestMode)
            raise ValueError(f"Unknown lantern_mode {mode!r}, expected one of: {expected}") from None
    return RequestMode.from_fetch_metadata(request.headers.get("Sec-Fetch-Mode"))


class _IteratorStream(httpx.SyncByteStream, httpx.AsyncByteStream):
    def __init__(self, iterator: Iterator[bytes]) -> None:
        self.iterator = iterator

    def __iter__(self) -> Iterator[bytes]:
        assert isinstance(self.iterator, (Iterator, Iterable))
        for chunk in self.iterator:
            yield chunk


class SyncOfflineTransport(httpx.BaseTransport):
    """
    httpx transport that serves requests offline-first.

    Requests with non-fetchable schemes go straight to `next_transport`; every other
    request is classified and served by the matching strategy. Call
    `transport.lifecycle.start()` when the application starts to install and
    activate the generation described by `config`.
    """

    def __init__(
        self,
        next_transport: httpx.BaseTransport,
        config: OfflineConfig,
        response_store: SyncBaseResponseStore | None = None,
        structured_store: SyncBaseStructuredStore | None = None,
    ) -> None:
        self.next_transport = next_transport
        self.config = config
        self._offline_proxy: SyncOfflineProxy = SyncOfflineProxy(
            request_sender=self.request_sender,
            config=config,
            response_store=response_store,
            structured_store=structured_store,
        )
        self.response_store = self._offline_proxy.response_store
        self.structured_store = self._offline_proxy.structured_store
        self.lifecycle = self._offline_proxy.lifecycle

    def handle_request(
        self,
        request: httpx.Request,
    ) -> httpx.Response:
        internal_request = _httpx_to_internal(request)
        if classify(internal_request, self.config) is StrategyKind.BYPASS:
            return self.next_transport.handle_request(request)

        try:
            internal_response = self._offline_proxy.handle_request(internal_request)
        except NetworkFailure as exc:
            # Surface the original httpx error to httpx users
            if isinstance(exc.__cause__, httpx.TransportError):
                raise exc.__cause__
            raise
        return _internal_to_httpx(internal_response)

    def close(self) -> None:
        self.next_transport.close()
        self._offline_proxy.close()
        super().close()

    def request_sender(self, request: Request) -> Response:
        httpx_request = _internal_to_httpx(request)
        try:
            httpx_response = self.next_transport.handle_request(httpx_request)
            httpx_response.read()
        except httpx.TransportError as exc:
            raise NetworkFailure(f"{exc.__class__.__name__}: {exc}") from exc
        return _httpx_to_internal(httpx_response)


class SyncOfflineClient(httpx.Client):
    def __init__(self, *args: t.Any, **kwargs: t.Any) -> None:
        if "config" not in kwargs:
            raise TypeError("SyncOfflineClient requires a 'config' keyword argument")
        self.config: OfflineConfig = kwargs.pop("config")
        self.response_store: SyncBaseResponseStore | None = kwargs.pop("response_store", None)
        self.structured_store: SyncBaseStructuredStore | None = kwargs.pop("structured_store", None)
        super().__init__(*args, **kwargs)

    @property
    def lifecycle(self) -> SyncLifecycleManager:
        transport = self._transport
        if not isinstance(transport, SyncOfflineTransport):
            raise LifecycleError("The client was created with a custom transport, use its lifecycle manager directly")
        return transport.lifecycle

    def _init_transport(
        self,
        verify: ssl.SSLContext | str | bool = True,
        cert: t.Union[str, t.Tuple[str, str], t.Tuple[str, str, str], None] = None,
        trust_env: bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        transport: httpx.BaseTransport | None = None,
        **kwargs: t.Any,
    ) -> httpx.BaseTransport:
        if transport is not None:
            return transport

        return SyncOfflineTransport(
            next_transport=httpx.HTTPTransport(
                verify=verify,
                cert=cert,
                trust_env=trust_env,
                http1=http1,
                http2=http2,
                limits=limits,
            ),
            config=self.config,
            response_store=self.response_store,
            structured_store=self.structured_store,
        )

    def _init_proxy_transport(
        self,
        proxy: httpx.Proxy,
        verify: ssl.SSLContext | str | bool = True,
        cert: t.Union[str, t.Tuple[str, str], t.Tuple[str, str, str], None] = None,
        trust_env: bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        **kwargs: t.Any,
    ) -> httpx.BaseTransport:
        return SyncOfflineTransport(
            next_transport=httpx.HTTPTransport(
                verify=verify,
                cert=cert,
                trust_env=trust_env,
                http1=http1,
                http2=http2,
                limits=limits,
                proxy=proxy,
            ),
            config=self.config,
            response_store=self.response_store,
            structured_store=self.structured_store,
        )
