from __future__ import annotations

import enum

from lantern._config import OfflineConfig
from lantern._core.models import Request, RequestMode
from lantern._utils import get_scheme

__all__ = ("StrategyKind", "classify")


class StrategyKind(enum.Enum):
    BYPASS = "Bypass"
    NETWORK_FIRST_STRUCTURED = "NetworkFirstStructured"
    CACHE_FIRST = "CacheFirst"
    OPPORTUNISTIC_CACHE = "OpportunisticCache"


def classify(request: Request, config: OfflineConfig) -> StrategyKind:
    """
    Decide which strategy serves `request`.

    The rules are checked in order and the first match wins:

    1. non-fetchable schemes (`chrome-extension:`, `data:`, `blob:`...) bypass the stores
    2. requests to a structured API origin are network first, with a JSON fallback
    3. navigations are cache first
    4. everything else is fetched and opportunistically cached

    Only the request and the static configuration are consulted.
    """
    if get_scheme(request.url) not in config.fetchable_schemes:
        return StrategyKind.BYPASS

    if config.is_structured_origin(request.url):
        return StrategyKind.NETWORK_FIRST_STRUCTURED

    if request.mode is RequestMode.NAVIGATE:
        return StrategyKind.CACHE_FIRST

    return StrategyKind.OPPORTUNISTIC_CACHE
