try:
    import httpx  # noqa: F401
except ImportError as e:
    raise ImportError(
        "httpx is required to use lantern.httpx module. "
        "Please install it with 'pip install httpx'."
    ) from e


from ._async_httpx import AsyncOfflineClient as AsyncOfflineClient, AsyncOfflineTransport as AsyncOfflineTransport
from ._sync_httpx import SyncOfflineClient as SyncOfflineClient, SyncOfflineTransport as SyncOfflineTransport

__all__ = (
    "AsyncOfflineClient",
    "AsyncOfflineTransport",
    "SyncOfflineClient",
    "SyncOfflineTransport",
)
