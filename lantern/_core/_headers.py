from __future__ import annotations

from typing import Any, Iterable, Iterator, List, Mapping, MutableMapping, Optional, Tuple, Union


class Headers(MutableMapping[str, str]):
    """
    Case-insensitive, insertion-ordered header mapping.

    A header may carry several values; indexing joins them with ", " the way
    they would be folded on the wire, `get_list` returns them separately.
    """

    def __init__(self, headers: Mapping[str, Union[str, List[str]]] | Iterable[Tuple[str, str]] = ()) -> None:
        self._headers: dict[str, List[str]] = {}
        items = headers.items() if isinstance(headers, Mapping) else headers
        for key, value in items:
            values = [value] if isinstance(value, str) else value[:]
            self._headers.setdefault(key.lower(), []).extend(values)

    def get_list(self, key: str) -> Optional[List[str]]:
        return self._headers.get(key.lower(), None)

    def multi_items(self) -> List[Tuple[str, str]]:
        return [(key, value) for key, values in self._headers.items() for value in values]

    def copy(self) -> "Headers":
        return Headers(self._headers)

    def __getitem__(self, key: str) -> str:
        return ", ".join(self._headers[key.lower()])

    def __setitem__(self, key: str, value: str) -> None:
        self._headers[key.lower()] = [value]

    def __delitem__(self, key: str) -> None:
        del self._headers[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return repr(self._headers)

    def __str__(self) -> str:
        return str(self._headers)

    def __eq__(self, other_headers: Any) -> bool:
        return isinstance(other_headers, Headers) and self._headers == other_headers._headers
