from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Iterable,
    Iterator,
    Mapping,
    Optional,
    TypedDict,
    cast,
)

from lantern._core._headers import Headers
from lantern._utils import make_async_iterator, make_sync_iterator


class AnyIterable:
    def __init__(self, content: bytes | None = None) -> None:
        self.consumed = False
        self.content = content

    def __next__(self) -> bytes:
        if self.content is not None and not self.consumed:
            self.consumed = True
            return self.content
        raise StopIteration()

    def __iter__(self) -> Iterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        if self.content is not None and not self.consumed:
            self.consumed = True
            return self.content
        raise StopAsyncIteration()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    def __eq__(self, value: Any) -> bool:
        return isinstance(value, AnyIterable)


class RequestMode(str, enum.Enum):
    NAVIGATE = "navigate"
    SUBRESOURCE = "subresource"
    CROSS_ORIGIN_API = "cross-origin-api"
    OTHER = "other"

    @classmethod
    def from_fetch_metadata(cls, sec_fetch_mode: str | None) -> "RequestMode":
        """
        Map a `Sec-Fetch-Mode` header value onto a request mode.

            >>> RequestMode.from_fetch_metadata("navigate")
            <RequestMode.NAVIGATE: 'navigate'>
            >>> RequestMode.from_fetch_metadata("cors")
            <RequestMode.CROSS_ORIGIN_API: 'cross-origin-api'>
        """
        if sec_fetch_mode is None:
            return cls.OTHER
        return _FETCH_MODES.get(sec_fetch_mode.strip().lower(), cls.OTHER)


_FETCH_MODES = {
    "navigate": RequestMode.NAVIGATE,
    "cors": RequestMode.CROSS_ORIGIN_API,
    "no-cors": RequestMode.SUBRESOURCE,
    "same-origin": RequestMode.SUBRESOURCE,
}


@dataclass
class Request:
    method: str
    url: str
    mode: RequestMode = RequestMode.OTHER
    headers: Headers = field(default_factory=lambda: Headers({}))
    stream: Iterator[bytes] | AsyncIterator[bytes] = field(default_factory=lambda: iter(AnyIterable()))
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def _iter_stream(self) -> Iterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, (Iterator, Iterable)):
            yield from self.stream
            return
        raise TypeError("Request stream is not an Iterator")

    async def _aiter_stream(self) -> AsyncIterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, (AsyncIterator, AsyncIterable)):
            async for chunk in self.stream:
                yield chunk
            return
        else:
            raise TypeError("Request stream is not an AsyncIterator")


class ResponseMetadata(TypedDict, total=False):
    # All the names here should be prefixed with "lantern_" to avoid collisions with user data
    lantern_strategy: str
    """Name of the strategy that produced the response."""

    lantern_from_cache: bool
    """Indicates whether the response was served from one of the stores."""

    lantern_fallback: bool
    """Indicates whether the response came from a fallback tier instead of the requested resource."""

    lantern_stored: bool
    """Indicates whether the response (or its decoded payload) was written to a store."""

    lantern_generation: str
    """Name of the generation a cached response was read from."""

    lantern_created_at: float
    """Timestamp when the served snapshot was written."""


@dataclass
class Response:
    status_code: int
    headers: Headers = field(default_factory=lambda: Headers({}))
    stream: Iterator[bytes] | AsyncIterator[bytes] = field(default_factory=lambda: iter(AnyIterable()))
    metadata: ResponseMetadata | Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def _iter_stream(self) -> Iterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, Iterator):
            yield from self.stream
            return
        raise TypeError("Response stream is not an Iterator")

    async def _aiter_stream(self) -> AsyncIterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, AsyncIterator):
            async for chunk in self.stream:
                yield chunk
        else:
            raise TypeError("Response stream is not an AsyncIterator")

    def read(self) -> bytes:
        """
        Synchronously reads the entire response body without consuming the stream.
        """
        if hasattr(self, "collected_body"):
            return cast(bytes, getattr(self, "collected_body"))

        if not isinstance(self.stream, Iterator):
            raise TypeError("Response stream is not an Iterator")

        collected = b"".join([chunk for chunk in self.stream])
        setattr(self, "collected_body", collected)
        self.stream = make_sync_iterator([collected])
        return collected

    async def aread(self) -> bytes:
        """
        Asynchronously reads the entire response body without consuming the stream.
        """
        if hasattr(self, "collected_body"):
            return cast(bytes, getattr(self, "collected_body"))

        if not isinstance(self.stream, AsyncIterator):
            raise TypeError("Response stream is not an AsyncIterator")

        collected = b"".join([chunk async for chunk in self.stream])
        setattr(self, "collected_body", collected)
        self.stream = make_async_iterator([collected])
        return collected

    def clone(self) -> "Response":
        """
        Return an independent copy of an already read response.

        The copy gets its own headers, metadata and a fresh stream of the same kind
        (sync or async), so one copy can be persisted while the other goes back to the caller.
        """
        if not hasattr(self, "collected_body"):
            raise RuntimeError("Response body must be read before the response can be cloned")

        body = cast(bytes, getattr(self, "collected_body"))
        stream: Iterator[bytes] | AsyncIterator[bytes]
        if isinstance(self.stream, AsyncIterator):
            stream = make_async_iterator([body])
        else:
            stream = make_sync_iterator([body])

        cloned = Response(
            status_code=self.status_code,
            headers=self.headers.copy(),
            stream=stream,
            metadata=dict(self.metadata),
        )
        setattr(cloned, "collected_body", body)
        return cloned


@dataclass(frozen=True)
class Generation:
    name: str
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class StructuredRecord:
    url: str
    payload: str
    updated_at: Optional[float] = None


class LifecycleState(enum.Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"
