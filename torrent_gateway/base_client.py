"""
Abstract base class defining the interface for torrent clients.

RTorrentClient, TransmissionClient and QBittorrentClient implement this
interface, allowing them to be used interchangeably through the client
factory. Every method answers in the canonical model (see models.py) and
raises only errors from errors.py.

Implementations are synchronous; the gateway runs them on a thread pool.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from .errors import BackendUnreachable, GatewayError, NotFound
from .logger import logger
from .models import ClientSettings, ItemResult, Priority, Torrent, TorrentContent, TorrentPeer, TorrentTracker


class BaseTorrentClient(ABC):
    """Abstract base class for torrent client implementations."""

    name = "base"

    @abstractmethod
    def check_connection(self) -> bool:
        """Test if the connection to the torrent server is working."""
        pass

    @abstractmethod
    def list_torrents(self) -> List[Torrent]:
        """Return every torrent known to the daemon."""
        pass

    @abstractmethod
    def add_torrents_by_url(
        self,
        urls: List[str],
        cookies: Dict[str, List[str]],
        destination: str,
        tags: List[str],
        is_base_path: bool = False,
        is_completed: bool = False,
        start: bool = True,
    ) -> List[ItemResult]:
        """
        Add torrents from magnet links or HTTP/HTTPS URLs to .torrent files.

        Args:
            urls: Magnet URIs or URLs
            cookies: Cookie strings keyed by domain, sent when fetching URLs
            destination: Download directory (already validated)
            tags: Tags to set on every added torrent
            is_base_path: Use destination as the final directory
            is_completed: Data is already present, skip re-downloading
            start: Whether to start the torrents immediately

        Returns:
            One ItemResult per URL, in input order
        """
        pass

    @abstractmethod
    def add_torrents_by_file(
        self,
        files: List[bytes],
        destination: str,
        tags: List[str],
        is_base_path: bool = False,
        is_completed: bool = False,
        start: bool = True,
    ) -> List[ItemResult]:
        """Add torrents from raw .torrent payloads. One ItemResult per file."""
        pass

    @abstractmethod
    def start_torrents(self, hashes: List[str]) -> List[ItemResult]:
        """Start/resume torrents."""
        pass

    @abstractmethod
    def stop_torrents(self, hashes: List[str]) -> List[ItemResult]:
        """Stop/pause torrents. Stopping a stopped torrent succeeds."""
        pass

    @abstractmethod
    def check_torrents(self, hashes: List[str]) -> List[ItemResult]:
        """Force a hash re-verification of torrents."""
        pass

    @abstractmethod
    def remove_torrents(self, hashes: List[str], delete_data: bool = False) -> List[ItemResult]:
        """Remove torrents from the client, optionally deleting their data."""
        pass

    @abstractmethod
    def move_torrents(
        self,
        hashes: List[str],
        destination: str,
        move_files: bool = True,
        is_base_path: bool = False,
        is_check_hash: bool = False,
    ) -> List[ItemResult]:
        """
        Point torrents at a new directory.

        Args:
            hashes: Torrents to move
            destination: New directory (already validated)
            move_files: Move the downloaded data as well
            is_base_path: Use destination as the final directory
            is_check_hash: Re-verify the data after the move
        """
        pass

    @abstractmethod
    def set_torrents_priority(self, hashes: List[str], priority: Priority) -> List[ItemResult]:
        """Set the download priority of whole torrents."""
        pass

    @abstractmethod
    def set_torrents_tags(self, hashes: List[str], tags: List[str]) -> List[ItemResult]:
        """Set tags for torrents, replacing any existing tags."""
        pass

    @abstractmethod
    def set_torrents_trackers(self, hashes: List[str], trackers: List[str]) -> List[ItemResult]:
        """Set trackers for torrents, replacing any existing trackers."""
        pass

    @abstractmethod
    def get_torrent_contents(self, info_hash: str) -> List[TorrentContent]:
        """Return the files of a torrent, ordered by index."""
        pass

    @abstractmethod
    def set_torrent_contents_priority(self, info_hash: str, indices: List[int], priority: Priority) -> None:
        """Set the priority of files of a torrent. Unknown indices raise NotFound."""
        pass

    @abstractmethod
    def get_torrent_peers(self, info_hash: str) -> List[TorrentPeer]:
        """Return the peers a torrent is currently connected to."""
        pass

    @abstractmethod
    def get_torrent_trackers(self, info_hash: str) -> List[TorrentTracker]:
        """Return the trackers of a torrent."""
        pass

    @abstractmethod
    def get_client_settings(self) -> ClientSettings:
        """Return daemon defaults, including the default download directory."""
        pass

    def _for_each(self, items: Iterable[str], action: Callable[[str], object]) -> List[ItemResult]:
        """
        Apply action to each item and report one outcome per item.

        Daemon rejections and unknown hashes fail only their own item. A lost
        connection aborts the batch; if earlier items were already applied,
        the remaining items are reported as failed instead of raising, so the
        caller learns about the partial state.
        """
        results = []
        items = list(items)
        for position, item in enumerate(items):
            try:
                action(item)
                results.append(ItemResult(item=item))
            except BackendUnreachable as e:
                if not any(r.success for r in results):
                    raise
                logger.warning(f"{self.name}: connection lost after partial batch: {e}")
                results.extend(ItemResult.failed(rest, e) for rest in items[position:])
                break
            except GatewayError as e:
                logger.warning(f"{self.name}: {item}: {e}")
                results.append(ItemResult.failed(item, e))
        return results

    def _aggregate(
        self,
        hashes: List[str],
        existing: Iterable[str],
        action: Callable[[List[str]], object],
    ) -> List[ItemResult]:
        """
        Report per-hash outcomes for daemons that answer a batch as one result.

        Hashes the daemon does not know are reported as NotFound; the single
        aggregate outcome of action is attributed to every remaining hash.
        """
        known = {h.upper() for h in existing}
        present = [h for h in hashes if h.upper() in known]
        outcome: Dict[str, ItemResult] = {}

        for info_hash in hashes:
            if info_hash.upper() not in known:
                outcome[info_hash] = ItemResult.failed(info_hash, NotFound(f"Torrent {info_hash} not found"))

        if present:
            try:
                action(present)
                for info_hash in present:
                    outcome[info_hash] = ItemResult(item=info_hash)
            except BackendUnreachable:
                raise
            except GatewayError as e:
                logger.warning(f"{self.name}: batch of {len(present)} rejected: {e}")
                for info_hash in present:
                    outcome[info_hash] = ItemResult.failed(info_hash, e)

        return [outcome[h] for h in hashes]


def cookie_header(url: str, cookies: Optional[Dict[str, List[str]]]) -> Optional[str]:
    """Build a Cookie header value for url from cookie strings keyed by domain."""
    if not cookies:
        return None
    hostname = urlparse(url).hostname or ""
    values = []
    for domain, entries in cookies.items():
        domain = domain.lstrip(".").lower()
        if hostname == domain or hostname.endswith("." + domain):
            values.extend(entries)
    return "; ".join(values) if values else None
