"""
Torrent catalog: a polled, full-snapshot cache of the daemon's torrent list.

Polls the gateway periodically, caching results for quick retrieval by the
HTTP layer. Adjusts polling frequency based on activity:
- POLL_IDLE_INTERVAL (60s) when no active downloads
- POLL_ACTIVE_INTERVAL (5s) when downloads are in progress

The catalog also refreshes right after every successful mutation, without
the mutating request waiting for it. Each refresh swaps in a new snapshot
wholesale, so readers never see a half-updated list. A failed refresh keeps
the previous snapshot and is only logged.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .config import Config
from .gateway import ClientGateway, get_gateway
from .logger import logger
from .models import Torrent


@dataclass(frozen=True)
class CatalogSnapshot:
    """Point-in-time copy of every torrent, keyed by upper-case hash."""
    torrents: Dict[str, Torrent] = field(default_factory=dict)
    taken_at: float = 0.0
    has_active_downloads: bool = False


class TorrentCatalog:
    def __init__(self, gateway: ClientGateway):
        self.gateway = gateway
        self._snapshot = CatalogSnapshot()
        self._lock = asyncio.Lock()
        self._refresh_tasks: Set[asyncio.Task] = set()
        self._running = False
        self.error: Optional[str] = None
        gateway.add_mutation_listener(self._on_mutation)

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    async def refresh(self) -> bool:
        """
        Replace the snapshot with the daemon's current torrent list.

        Returns False if the daemon could not be listed; the previous snapshot
        is kept in that case.
        """
        async with self._lock:
            try:
                torrents = await self.gateway.list_torrents()
            except Exception as e:
                logger.error(f"Failed to refresh torrent catalog: {e}")
                self.error = str(e)
                return False

            self._snapshot = CatalogSnapshot(
                torrents={t.hash.upper(): t for t in torrents},
                taken_at=time.time(),
                has_active_downloads=any(t.is_active and not t.is_complete for t in torrents),
            )
            self.error = None
            return True

    def schedule_refresh(self) -> asyncio.Task:
        """Start a refresh in the background and return immediately."""
        task = asyncio.ensure_future(self.refresh())
        # Keep a reference so the task is not garbage collected mid-flight
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        return task

    def _on_mutation(self, operation: str) -> None:
        logger.debug(f"Catalog refresh scheduled after {operation}")
        self.schedule_refresh()

    def get_torrent(self, info_hash: str) -> Optional[Torrent]:
        return self._snapshot.torrents.get(info_hash.strip().upper())

    def list_torrents(self) -> List[Torrent]:
        return list(self._snapshot.torrents.values())

    def get_cache_age(self) -> Optional[float]:
        """Age of the snapshot in seconds, None before the first refresh."""
        if not self._snapshot.taken_at:
            return None
        return time.time() - self._snapshot.taken_at

    def get_poll_interval(self) -> int:
        if self._snapshot.has_active_downloads:
            return Config.POLL_ACTIVE_INTERVAL
        return Config.POLL_IDLE_INTERVAL

    async def run(self) -> None:
        """Main polling loop."""
        self._running = True
        logger.info(
            f"Torrent catalog started (idle: {Config.POLL_IDLE_INTERVAL}s, "
            f"active: {Config.POLL_ACTIVE_INTERVAL}s)"
        )

        while self._running:
            try:
                await self.refresh()

                interval = self.get_poll_interval()
                active_status = "active" if self._snapshot.has_active_downloads else "idle"
                logger.debug(f"Catalog refresh complete ({active_status}), next in {interval}s")

                await asyncio.sleep(interval)

            except asyncio.CancelledError:
                break

        logger.info("Torrent catalog stopped")

    def stop(self) -> None:
        """Signal the polling loop to stop."""
        self._running = False
        for task in list(self._refresh_tasks):
            task.cancel()


# Global catalog instance
_catalog: Optional[TorrentCatalog] = None


def get_catalog() -> TorrentCatalog:
    """Get the global catalog instance, creating it if needed."""
    global _catalog
    if _catalog is None:
        _catalog = TorrentCatalog(get_gateway())
    return _catalog
