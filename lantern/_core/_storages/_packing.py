from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Optional, cast

import msgpack

from lantern._core._headers import Headers
from lantern._core.models import Request, Response


def filter_out_lantern_metadata(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if not k.startswith("lantern_")}


class Snapshot(NamedTuple):
    method: str
    url: str
    status_code: int
    headers: Headers
    extra: dict[str, Any]
    created_at: float


def pack(request: Request, response: Response, /, created_at: float) -> bytes:
    """
    Serialize everything about a request/response pair except the response body,
    which is stored next to it as a raw blob.
    """
    return cast(
        bytes,
        msgpack.packb(
            {
                "request": {
                    "method": request.method,
                    "url": request.url,
                },
                "response": {
                    "status_code": response.status_code,
                    "headers": response.headers.multi_items(),
                    "extra": filter_out_lantern_metadata(response.metadata),
                },
                "created_at": created_at,
            }
        ),
    )


def unpack(value: Optional[bytes]) -> Optional[Snapshot]:
    if value is None:
        return None
    data = msgpack.unpackb(value)
    return Snapshot(
        method=data["request"]["method"],
        url=data["request"]["url"],
        status_code=data["response"]["status_code"],
        headers=Headers([(key, val) for key, val in data["response"]["headers"]]),
        extra=data["response"]["extra"],
        created_at=data["created_at"],
    )
