from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Optional, Sequence, Tuple

from lantern._utils import get_origin, get_scheme, resolve_url

__all__ = ("OfflineConfig",)


@dataclass(frozen=True)
class OfflineConfig:
    """
    Static configuration shared by the router, the strategies and the lifecycle manager.

    Attributes:
    ----------
    generation_name : str
        Build or version identifier. Every install writes into the generation with this
        name, and activating it deletes every other generation.

    manifest : Sequence[str]
        Ordered URLs that must be present in a freshly installed generation. Relative
        entries are resolved against `base_url`.

        Example:
        --------
        >>> OfflineConfig(
        ...     generation_name="MOVIE_MASTER_V1",
        ...     base_url="https://movies.example.com",
        ...     manifest=["/", "/imdb-logo.svg", "/offline"],
        ... )  # doctest: +SKIP

    structured_origins : Sequence[str]
        Origin patterns (`scheme://host[:port]`, shell-style wildcards allowed) whose
        responses are cached as decoded JSON documents rather than raw responses.

    base_url : str | None
        Base used to resolve relative manifest and fallback URLs. Required when any of
        them is relative, which includes the default navigation fallback.

    navigation_fallback_url : str
        Response served when a navigation cannot be fetched and is not cached.
        Should be listed in the manifest.

    generic_fallback_url : str | None
        Response served when any other request cannot be fetched and is not cached.
        Defaults to the navigation fallback.

    fetchable_schemes : Sequence[str]
        Schemes the interceptor handles. Everything else bypasses the stores.
    """

    generation_name: str
    manifest: Sequence[str] = ()
    structured_origins: Sequence[str] = ()
    base_url: Optional[str] = None
    navigation_fallback_url: str = "/offline"
    generic_fallback_url: Optional[str] = None
    fetchable_schemes: Sequence[str] = ("http", "https")

    def __post_init__(self) -> None:
        if not self.generation_name:
            raise ValueError("generation_name must be a non-empty string")

        if self.base_url is not None and get_scheme(self.base_url) not in self.fetchable_schemes:
            raise ValueError(f"base_url must be an absolute {'/'.join(self.fetchable_schemes)} URL")

        for url in self.manifest:
            if self.base_url is None and not get_scheme(url):
                raise ValueError(f"Relative URL {url!r} requires a base_url")

        for pattern in self.structured_origins:
            if "://" not in pattern:
                raise ValueError(f"Origin pattern {pattern!r} must look like 'scheme://host[:port]'")

        for url in (self.navigation_fallback_url, self.generic_fallback_url):
            if url is not None and self.base_url is None and not get_scheme(url):
                raise ValueError(f"Relative fallback URL {url!r} requires a base_url")

        # Normalized, immutable copies
        object.__setattr__(self, "manifest", tuple(self.manifest))
        object.__setattr__(self, "structured_origins", tuple(p.lower().rstrip("/") for p in self.structured_origins))
        object.__setattr__(self, "fetchable_schemes", tuple(s.lower() for s in self.fetchable_schemes))

    @property
    def manifest_urls(self) -> Tuple[str, ...]:
        return tuple(resolve_url(url, self.base_url) for url in self.manifest)

    @property
    def navigation_fallback(self) -> str:
        return resolve_url(self.navigation_fallback_url, self.base_url)

    @property
    def generic_fallback(self) -> str:
        if self.generic_fallback_url is None:
            return self.navigation_fallback
        return resolve_url(self.generic_fallback_url, self.base_url)

    def is_structured_origin(self, url: str) -> bool:
        origin = get_origin(url)
        return any(fnmatchcase(origin, pattern) for pattern in self.structured_origins)
