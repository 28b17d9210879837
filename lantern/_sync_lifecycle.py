from __future__ import annotations

import logging
from typing import Callable, List, Set, Tuple

from lantern._config import OfflineConfig
from lantern._core._storages._sync_base import SyncBaseResponseStore
from lantern._core.models import Generation, LifecycleState, Request, RequestMode, Response
from lantern._exceptions import InstallAbort, LifecycleError, NetworkFailure, StoreReadFailure, StoreWriteFailure
from lantern._utils import partition

logger = logging.getLogger("lantern.lifecycle")

__all__ = ("SyncLifecycleManager",)


class SyncLifecycleManager:
    """
    Installs and activates Response Store generations.

    The host calls `install()` and `activate()` (or `start()` for both) when the
    process starts. Installing fetches the whole manifest into the generation named
    by the configuration and fails atomically. Activating makes that generation the
    only active one and sweeps every other generation away.

    Args:
        config: Static offline configuration (generation name, manifest).
        response_store: Store holding the generations.
        request_sender: Callable used to fetch manifest entries from the network.
    """

    def __init__(
        self,
        config: OfflineConfig,
        response_store: SyncBaseResponseStore,
        request_sender: Callable[[Request], Response],
    ) -> None:
        self.config = config
        self.response_store = response_store
        self.send_request = request_sender
        self.state = LifecycleState.PARSED
        self.installed: Generation | None = None

    def install(self) -> Generation:
        if self.state in (LifecycleState.INSTALLING, LifecycleState.ACTIVATING):
            raise LifecycleError(f"Cannot install while {self.state.value}")

        self.state = LifecycleState.INSTALLING
        self.installed = None
        name = self.config.generation_name
        logger.debug(f"Installing generation {name!r}")

        existing: Set[str] = set()
        generation: Generation | None = None
        try:
            existing.update(self.response_store.list_generations())
            generation = self.response_store.open_generation(name)
            pairs = self._fetch_manifest()
            self.response_store.put_many(generation, pairs)
        except (InstallAbort, StoreReadFailure, StoreWriteFailure) as exc:
            logger.error(f"Install of generation {name!r} aborted: {exc}")
            self.state = LifecycleState.REDUNDANT
            if generation is not None:
                self._discard(generation, existing)
            if isinstance(exc, InstallAbort):
                raise
            raise InstallAbort(f"Could not store the manifest: {exc}") from exc

        self.state = LifecycleState.INSTALLED
        self.installed = generation
        logger.debug(f"Installed generation {name!r} with {len(pairs)} entries")
        return generation

    def activate(self) -> Generation:
        if self.state is not LifecycleState.INSTALLED or self.installed is None:
            raise LifecycleError(f"Cannot activate from state {self.state.value!r}, install first")

        self.state = LifecycleState.ACTIVATING
        try:
            generation = self.response_store.activate_generation(self.installed.name)
        except StoreWriteFailure:
            self.state = LifecycleState.INSTALLED
            raise
        logger.debug(f"Activated generation {generation.name!r}")

        try:
            names = self.response_store.list_generations()
        except StoreReadFailure as exc:
            # Stale generations stay unreachable and are swept by the next activation
            logger.warning(f"Could not sweep stale generations: {exc}")
            names = []

        _, stale = partition(names, lambda n: n == generation.name)
        for stale_name in stale:
            logger.debug(f"Deleting stale generation {stale_name!r}")
            self.response_store.delete_generation(stale_name)

        self.state = LifecycleState.ACTIVATED
        return generation

    def start(self) -> Generation:
        """
        Install and activate right away, without waiting for older clients to go away.
        """
        self.install()
        return self.activate()

    def _fetch_manifest(self) -> List[Tuple[Request, Response]]:
        pairs: List[Tuple[Request, Response]] = []
        for url in self.config.manifest_urls:
            request = Request(method="GET", url=url, mode=RequestMode.SUBRESOURCE)
            try:
                response = self.send_request(request)
            except NetworkFailure as exc:
                raise InstallAbort(str(exc), url=url) from exc
            if not response.is_success:
                raise InstallAbort(f"server responded with status {response.status_code}", url=url)
            response.read()
            pairs.append((request, response))
        return pairs

    def _discard(self, generation: Generation, existing: Set[str]) -> None:
        if generation.name in existing:
            # Pre-existing generation, the failed write left it as it was
            return
        try:
            self.response_store.delete_generation(generation.name)
        except StoreWriteFailure as exc:
            logger.warning(f"Could not discard generation {generation.name!r}: {exc}")
