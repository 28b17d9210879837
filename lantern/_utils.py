from __future__ import annotations

import hashlib
import re
import typing as tp
from email.utils import formatdate
from pathlib import Path
from typing import AsyncIterator, Iterable, Iterator
from urllib.parse import SplitResult, quote, urljoin, urlsplit, urlunsplit

T = tp.TypeVar("T")

DEFAULT_PORTS = {"http": 80, "https": 443}

PATH_SAFE = "/%:@!$&'()*+,;="
QUERY_SAFE = PATH_SAFE + "?"
_ESCAPE = re.compile(r"%[0-9a-fA-F]{2}")


def partition(iterable: tp.Iterable[T], predicate: tp.Callable[[T], bool]) -> tp.Tuple[tp.List[T], tp.List[T]]:
    """
    Partition an iterable into two lists: one for matching items and one for non-matching items.

    Example:
        ```
        keep, drop = partition(["v1", "v2"], lambda name: name == "v2")
        ```
    """
    matching, non_matching = [], []
    for item in iterable:
        if predicate(item):
            matching.append(item)
        else:
            non_matching.append(item)
    return matching, non_matching


async def make_async_iterator(
    iterable: Iterable[bytes],
) -> AsyncIterator[bytes]:
    for item in iterable:
        yield item


def make_sync_iterator(iterable: Iterable[bytes]) -> Iterator[bytes]:
    for item in iterable:
        yield item


def filter_mapping(mapping: tp.Mapping[str, T], keys_to_exclude: tp.Iterable[str]) -> tp.Dict[str, T]:
    """
    Filter out specified keys from a string-keyed mapping using case-insensitive comparison.

    Example:
    ```python
        original = {'a': 1, 'B': 2, 'c': 3}
        filtered = filter_mapping(original, ['b'])
        # filtered will be {'a': 1, 'c': 3}
    ```
    """
    exclude_set = {k.lower() for k in keys_to_exclude}
    return {k: v for k, v in mapping.items() if k.lower() not in exclude_set}


def get_scheme(url: str) -> str:
    """
    Return the lower-cased scheme of `url`, or an empty string for relative URLs.

    Works for opaque URLs too:

        >>> get_scheme("blob:https://example.com/0d1f")
        'blob'
        >>> get_scheme("data:text/plain,hello")
        'data'
    """
    return urlsplit(url).scheme.lower()


def _authority(parts: SplitResult) -> str:
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not host.isascii():
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError:
            pass
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return host
    return f"{host}:{port}"


def _quote(component: str, safe: str) -> str:
    # Existing escapes are kept and upper-cased, so quoting twice is a no-op
    return _ESCAPE.sub(lambda match: match.group(0).upper(), quote(component, safe=safe))


def get_origin(url: str) -> str:
    """
    Return the normalized origin (`scheme://host[:port]`) of an absolute URL.

    Host and scheme are lower-cased and default ports are dropped:

        >>> get_origin("HTTPS://WWW.OMDBAPI.COM:443/?s=batman")
        'https://www.omdbapi.com'
        >>> get_origin("http://localhost:8000/movies")
        'http://localhost:8000'
    """
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{_authority(parts)}"


def normalize_url(url: str) -> str:
    """
    Return the canonical spelling of an absolute URL.

    Two spellings of the same resource normalize to the same string: scheme and host
    are lower-cased, default ports dropped, an empty path becomes "/", characters that
    cannot appear in a URL are percent-encoded as UTF-8 and the fragment is removed.

        >>> normalize_url("HTTPS://Movies.Example.com:443")
        'https://movies.example.com/'
        >>> normalize_url("https://movies.example.com/films/amélie#cast")
        'https://movies.example.com/films/am%C3%A9lie'

    URLs without an authority (`data:`, `blob:`, relative references) are returned unchanged.
    """
    parts = urlsplit(url)
    if not parts.netloc:
        return url
    return urlunsplit(
        (
            parts.scheme.lower(),
            _authority(parts),
            _quote(parts.path or "/", PATH_SAFE),
            _quote(parts.query, QUERY_SAFE),
            "",
        )
    )


def resolve_url(url: str, base_url: str | None) -> str:
    if base_url is None:
        return normalize_url(url)
    return normalize_url(urljoin(base_url, url))


def request_identity(method: str, url: str) -> str:
    """
    Build the key a response is stored under: method plus normalized URL, headers excluded.
    """
    return hashlib.sha256(f"{method.upper()} {normalize_url(url)}".encode("utf-8")).hexdigest()


def ensure_cache_dict(base_path: Path | None = None) -> Path:
    _base_path = base_path if base_path is not None else Path(".cache/lantern")
    _gitignore_file = _base_path / ".gitignore"

    _base_path.mkdir(parents=True, exist_ok=True)

    if not _gitignore_file.is_file():
        with open(_gitignore_file, "w", encoding="utf-8") as f:
            f.write("# Automatically created by Lantern\n*")
    return _base_path


def generate_http_date() -> str:
    """
    Generate a Date header value for HTTP responses.
    Returns date in RFC 1123 format (required by HTTP/1.1).

    Example output: 'Sun, 26 Oct 2025 12:34:56 GMT'
    """
    return formatdate(timeval=None, localtime=False, usegmt=True)
