"""
Client Gateway: the single asynchronous, backend-agnostic surface over the
configured torrent daemon.

The gateway normalizes its inputs (hashes, tags, priorities, destinations),
runs the synchronous adapter on a thread pool with every call bounded by
CLIENT_TIMEOUT, and tells registered listeners about successful mutations
so the catalog can refresh. It never retries.
"""

import asyncio
import base64
import binascii
import functools
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Union

from .base_client import BaseTorrentClient
from .client_factory import get_client
from .config import Config
from .errors import BackendUnreachable, ValidationError
from .logger import logger
from .models import ClientSettings, ItemResult, Priority, Torrent, TorrentContent, TorrentPeer, TorrentTracker


MutationListener = Callable[[str], object]


def normalize_hashes(hashes: Iterable[str]) -> List[str]:
    """Upper-case, strip and de-duplicate hashes, keeping their order."""
    result = []
    for info_hash in hashes or []:
        if not isinstance(info_hash, str):
            raise ValidationError(f"Invalid torrent hash: {info_hash!r}")
        info_hash = info_hash.strip().upper()
        if info_hash and info_hash not in result:
            result.append(info_hash)
    return result


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Trim tags and drop empty and duplicate ones."""
    result = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in result:
            result.append(tag)
    return result


def normalize_destination(destination: str) -> str:
    if not destination:
        raise ValidationError("Destination is required")
    return destination.replace(os.sep, "/") if os.sep != "/" else destination


def coerce_priority(priority: Union[Priority, int, str]) -> Priority:
    try:
        return Priority.coerce(priority)
    except ValueError as e:
        raise ValidationError(str(e))


class ClientGateway:
    def __init__(
        self,
        client: BaseTorrentClient,
        timeout: Optional[float] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.client = client
        self.timeout = Config.CLIENT_TIMEOUT if timeout is None else timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=4)
        self._listeners: List[MutationListener] = []

    def add_mutation_listener(self, listener: MutationListener) -> None:
        """Register a callable invoked with the operation name after each successful mutation."""
        self._listeners.append(listener)

    def _notify(self, operation: str) -> None:
        for listener in self._listeners:
            try:
                listener(operation)
            except Exception as e:
                logger.error(f"Mutation listener failed after {operation}: {e}")

    async def _run(self, func: Callable, *args, scale: int = 1, **kwargs):
        """Run an adapter method on the thread pool, bounded by the client timeout."""
        loop = asyncio.get_running_loop()
        call = functools.partial(func, *args, **kwargs)
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, call),
                timeout=self.timeout * max(1, scale),
            )
        except asyncio.TimeoutError:
            name = getattr(func, "__name__", "call")
            logger.error(f"{self.client.name}: {name} timed out after {self.timeout * max(1, scale)}s")
            raise BackendUnreachable(f"{self.client.name} did not answer in time")

    async def _mutate(self, operation: str, func: Callable, items: List, *args, **kwargs) -> List[ItemResult]:
        if not items:
            return []
        results = await self._run(func, items, *args, scale=len(items), **kwargs)
        if any(r.success for r in results):
            self._notify(operation)
        return results

    # Queries

    async def check_connection(self) -> bool:
        try:
            return await self._run(self.client.check_connection)
        except BackendUnreachable:
            return False

    async def list_torrents(self) -> List[Torrent]:
        return await self._run(self.client.list_torrents)

    async def get_torrent_contents(self, info_hash: str) -> List[TorrentContent]:
        contents = await self._run(self.client.get_torrent_contents, info_hash.strip().upper())
        return sorted(contents, key=lambda c: c.index)

    async def get_torrent_peers(self, info_hash: str) -> List[TorrentPeer]:
        return await self._run(self.client.get_torrent_peers, info_hash.strip().upper())

    async def get_torrent_trackers(self, info_hash: str) -> List[TorrentTracker]:
        return await self._run(self.client.get_torrent_trackers, info_hash.strip().upper())

    async def get_client_settings(self) -> ClientSettings:
        return await self._run(self.client.get_client_settings)

    async def get_torrent_details(self, info_hash: str) -> Dict[str, list]:
        """Contents, peers and trackers of a torrent, fetched concurrently."""
        contents, peers, trackers = await asyncio.gather(
            self.get_torrent_contents(info_hash),
            self.get_torrent_peers(info_hash),
            self.get_torrent_trackers(info_hash),
        )
        return {"contents": contents, "peers": peers, "trackers": trackers}

    # Mutations

    async def add_torrents_by_url(
        self,
        urls: List[str],
        cookies: Optional[Dict[str, List[str]]] = None,
        destination: str = "",
        tags: Optional[List[str]] = None,
        is_base_path: bool = False,
        is_completed: bool = False,
        start: bool = False,
    ) -> List[ItemResult]:
        """
        Add torrents from magnet links or .torrent URLs.

        A blank URL fails only its own item; results keep the input order.
        """
        destination = normalize_destination(destination)
        results: Dict[int, ItemResult] = {}
        accepted = []
        positions = []
        for position, url in enumerate(urls or []):
            url = url.strip() if isinstance(url, str) else ""
            if url:
                accepted.append(url)
                positions.append(position)
            else:
                results[position] = ItemResult.failed(f"url:{position}", ValidationError("URL is empty"))

        if accepted:
            added = await self._mutate(
                "add", self.client.add_torrents_by_url, accepted,
                cookies or {}, destination, normalize_tags(tags),
                is_base_path=is_base_path, is_completed=is_completed, start=start,
            )
            for position, result in zip(positions, added):
                results[position] = result

        return [results[position] for position in sorted(results)]

    async def add_torrents_by_file(
        self,
        files: List[str],
        destination: str = "",
        tags: Optional[List[str]] = None,
        is_base_path: bool = False,
        is_completed: bool = False,
        start: bool = False,
    ) -> List[ItemResult]:
        """
        Add base64-encoded .torrent payloads.

        A payload that is not valid base64 fails only its own item; results
        are reported as file:<position> in input order.
        """
        destination = normalize_destination(destination)
        results: Dict[int, ItemResult] = {}
        decoded = []
        positions = []
        for position, payload in enumerate(files or []):
            try:
                decoded.append(base64.b64decode(payload, validate=True))
                positions.append(position)
            except (binascii.Error, ValueError, TypeError):
                results[position] = ItemResult.failed(
                    f"file:{position}", ValidationError("File is not valid base64")
                )

        if decoded:
            added = await self._mutate(
                "add", self.client.add_torrents_by_file, decoded,
                destination, normalize_tags(tags),
                is_base_path=is_base_path, is_completed=is_completed, start=start,
            )
            # The adapter numbers the decoded payloads; map back to input positions
            for position, result in zip(positions, added):
                result.item = f"file:{position}"
                results[position] = result

        return [results[position] for position in sorted(results)]

    async def start_torrents(self, hashes: List[str]) -> List[ItemResult]:
        return await self._mutate("start", self.client.start_torrents, normalize_hashes(hashes))

    async def stop_torrents(self, hashes: List[str]) -> List[ItemResult]:
        return await self._mutate("stop", self.client.stop_torrents, normalize_hashes(hashes))

    async def check_torrents(self, hashes: List[str]) -> List[ItemResult]:
        return await self._mutate("check", self.client.check_torrents, normalize_hashes(hashes))

    async def remove_torrents(self, hashes: List[str], delete_data: bool = False) -> List[ItemResult]:
        return await self._mutate(
            "remove", self.client.remove_torrents, normalize_hashes(hashes), delete_data=delete_data
        )

    async def move_torrents(
        self,
        hashes: List[str],
        destination: str,
        move_files: bool = True,
        is_base_path: bool = False,
        is_check_hash: bool = False,
    ) -> List[ItemResult]:
        """Move torrents to destination, which the caller has already validated."""
        return await self._mutate(
            "move", self.client.move_torrents, normalize_hashes(hashes),
            normalize_destination(destination),
            move_files=move_files, is_base_path=is_base_path, is_check_hash=is_check_hash,
        )

    async def set_torrents_priority(self, hashes: List[str], priority) -> List[ItemResult]:
        return await self._mutate(
            "priority", self.client.set_torrents_priority, normalize_hashes(hashes), coerce_priority(priority)
        )

    async def set_torrents_tags(self, hashes: List[str], tags: List[str]) -> List[ItemResult]:
        """Replace the tags of torrents; an empty list clears them."""
        return await self._mutate("tags", self.client.set_torrents_tags, normalize_hashes(hashes), normalize_tags(tags))

    async def set_torrents_trackers(self, hashes: List[str], trackers: List[str]) -> List[ItemResult]:
        """Replace the trackers of torrents, keeping the given order."""
        urls = normalize_tags(trackers)
        return await self._mutate("trackers", self.client.set_torrents_trackers, normalize_hashes(hashes), urls)

    async def set_torrent_contents_priority(self, info_hash: str, indices: List[int], priority) -> None:
        info_hash = info_hash.strip().upper()
        indices = sorted({int(i) for i in indices})
        if not indices:
            return
        await self._run(self.client.set_torrent_contents_priority, info_hash, indices, coerce_priority(priority))
        self._notify("contents")


# Global gateway instance
_gateway: Optional[ClientGateway] = None


def get_gateway() -> ClientGateway:
    """Get the global gateway instance, creating it (and its client) if needed."""
    global _gateway
    if _gateway is None:
        _gateway = ClientGateway(get_client())
    return _gateway
