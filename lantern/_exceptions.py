from __future__ import annotations

import typing as tp

if tp.TYPE_CHECKING:
    from lantern._core.models import Response

__all__ = (
    "LanternError",
    "NetworkFailure",
    "NonSuccessStatus",
    "StoreMiss",
    "StoreReadFailure",
    "StoreWriteFailure",
    "DecodeFailure",
    "InstallAbort",
    "LifecycleError",
)


class LanternError(Exception): ...


class NetworkFailure(LanternError):
    """The fetch could not complete (timeout, refused connection, DNS failure...)."""


class NonSuccessStatus(LanternError):
    def __init__(self, response: "Response") -> None:
        super().__init__(f"Server responded with status {response.status_code}")
        self.response = response


class StoreMiss(LanternError): ...


class StoreReadFailure(LanternError): ...


class StoreWriteFailure(LanternError): ...


class DecodeFailure(LanternError): ...


class InstallAbort(LanternError):
    def __init__(self, reason: str, url: tp.Optional[str] = None) -> None:
        super().__init__(reason if url is None else f"Could not cache manifest entry {url!r}: {reason}")
        self.url = url
        self.reason = reason


class LifecycleError(LanternError): ...
