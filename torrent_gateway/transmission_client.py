"""
Transmission RPC client for managing torrents.

Provides the TransmissionClient class for interacting with Transmission via
its JSON-RPC API, implementing the same interface as RTorrentClient for
interchangeable use.

Transmission answers a batch (start, stop, verify, remove, move, change) as
one aggregate result. The client first resolves which hashes exist, reports
the missing ones individually and attributes the aggregate outcome to the
rest. It cannot skip verification of already-present data, so completed
torrents are added and then verified.
"""

import posixpath
from contextlib import contextmanager
from typing import List, Optional

from transmission_rpc import Client as TransmissionRPCClient
from transmission_rpc.error import TransmissionAuthError, TransmissionConnectError, TransmissionError

from .base_client import BaseTorrentClient, cookie_header
from .errors import BackendRejected, BackendUnreachable, NotFound, ValidationError
from .logger import logger
from .models import ClientSettings, ItemResult, Priority, Torrent, TorrentContent, TorrentPeer, TorrentStatus, TorrentTracker
from .torrent_file import TorrentFile, TorrentFileError


CHECKING_STATES = ("check pending", "checking")
SEEDING_STATES = ("seed pending", "seeding")


class TransmissionClient(BaseTorrentClient):
    name = "transmission"

    def __init__(
        self,
        protocol: str = "http",
        host: str = "localhost",
        port: int = 9091,
        path: str = "/transmission/rpc",
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10,
    ):
        self.host = host
        self.port = port
        self._options = dict(
            protocol=protocol,
            host=host,
            port=port,
            path=path,
            username=username or None,
            password=password or None,
            timeout=timeout,
        )
        self._client: Optional[TransmissionRPCClient] = None

    @property
    def client(self) -> TransmissionRPCClient:
        # The RPC client negotiates a session on construction, so connect lazily
        if self._client is None:
            with self._translate_errors():
                self._client = TransmissionRPCClient(**self._options)
        return self._client

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except TransmissionConnectError as e:
            logger.error(f"Failed to connect to Transmission at {self.host}:{self.port}: {e}")
            raise BackendUnreachable(f"Failed to connect to Transmission: {e}")
        except TransmissionAuthError as e:
            raise BackendRejected(f"Transmission refused credentials: {e}")
        except TransmissionError as e:
            logger.error(f"Transmission rejected call: {e}")
            raise BackendRejected(f"Transmission: {e}")

    def check_connection(self) -> bool:
        """Test if the connection to Transmission is working."""
        try:
            with self._translate_errors():
                self.client.session_stats()
            return True
        except (BackendUnreachable, BackendRejected):
            return False

    def _get_torrents(self, hashes: Optional[List[str]] = None, arguments: Optional[List[str]] = None):
        ids = [h.lower() for h in hashes] if hashes is not None else None
        with self._translate_errors():
            return self.client.get_torrents(ids=ids, arguments=arguments)

    def _get_torrent_by_hash(self, info_hash: str):
        torrents = self._get_torrents([info_hash])
        if not torrents:
            raise NotFound(f"No torrent found with hash {info_hash}")
        return torrents[0]

    def _existing(self, hashes: List[str]) -> List[str]:
        return [t.hashString for t in self._get_torrents(hashes, arguments=["id", "hashString"])]

    def _batch(self, hashes: List[str], action) -> List[ItemResult]:
        def run(present):
            with self._translate_errors():
                action([h.lower() for h in present])

        return self._aggregate(hashes, self._existing(hashes), run)

    def list_torrents(self) -> List[Torrent]:
        return [self._to_torrent(t) for t in self._get_torrents()]

    def _to_torrent(self, torrent) -> Torrent:
        fields = torrent.fields
        if fields.get("error"):
            status = TorrentStatus.ERROR
        elif torrent.status in CHECKING_STATES:
            status = TorrentStatus.CHECKING
        elif torrent.status == "stopped":
            status = TorrentStatus.STOPPED
        elif torrent.status in SEEDING_STATES:
            status = TorrentStatus.SEEDING
        else:
            status = TorrentStatus.DOWNLOADING

        return Torrent(
            hash=torrent.hashString.upper(),
            name=torrent.name,
            directory=torrent.download_dir,
            status=status,
            size=torrent.total_size,
            progress=torrent.progress / 100,
            tags=list(fields.get("labels") or []),
            trackers=[t["announce"] for t in fields.get("trackers") or []],
            date_created=fields.get("dateCreated") or None,
            date_added=fields.get("addedDate") or None,
            download_rate=torrent.rate_download,
            upload_rate=torrent.rate_upload,
            ratio=max(torrent.ratio, 0),
            message=fields.get("errorString") or "",
        )

    def _add(self, source, destination, tags, is_base_path, is_completed, start, cookies=None, tf=None):
        download_dir = destination
        rename_to = None
        # Transmission always creates the torrent's root folder; emulate base path mode by renaming it
        if is_base_path and tf is not None and tf.is_multi_file:
            download_dir = posixpath.dirname(destination.rstrip("/")) or "/"
            rename_to = posixpath.basename(destination.rstrip("/"))

        with self._translate_errors():
            torrent = self.client.add_torrent(
                source,
                download_dir=download_dir,
                paused=not start or is_completed,
                labels=tags or None,
                cookies=cookies,
            )
            if torrent is None:
                raise BackendRejected("Transmission did not accept the torrent")
            if rename_to and torrent.name != rename_to:
                self.client.rename_torrent_path(torrent.id, torrent.name, rename_to)
            if is_completed:
                self.client.verify_torrent(torrent.id)
                if start:
                    self.client.start_torrent(torrent.id)
        logger.debug(f"Added torrent to Transmission: {torrent.name}")

    def add_torrents_by_url(self, urls, cookies, destination, tags,
                            is_base_path=False, is_completed=False, start=True) -> List[ItemResult]:
        def add(url):
            if not url.startswith(("magnet:", "http://", "https://")):
                raise ValidationError("URL must be a magnet link or HTTP/HTTPS URL")
            self._add(url, destination, tags, is_base_path, is_completed, start,
                      cookies=cookie_header(url, cookies))

        return self._for_each(urls, add)

    def add_torrents_by_file(self, files, destination, tags,
                             is_base_path=False, is_completed=False, start=True) -> List[ItemResult]:
        payloads = {f"file:{position}": data for position, data in enumerate(files)}

        def add(item):
            try:
                tf = TorrentFile(payloads[item])
            except TorrentFileError as e:
                raise ValidationError(f"Invalid torrent file: {e}")
            self._add(payloads[item], destination, tags, is_base_path, is_completed, start, tf=tf)

        return self._for_each(payloads, add)

    def start_torrents(self, hashes) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.start_torrent(ids))

    def stop_torrents(self, hashes) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.stop_torrent(ids))

    def check_torrents(self, hashes) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.verify_torrent(ids))

    def remove_torrents(self, hashes, delete_data=False) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.remove_torrent(ids, delete_data=delete_data))

    def move_torrents(self, hashes, destination, move_files=True,
                      is_base_path=False, is_check_hash=False) -> List[ItemResult]:
        def move(ids):
            self.client.move_torrent_data(ids, destination, move=move_files)
            if is_check_hash:
                self.client.verify_torrent(ids)

        return self._batch(hashes, move)

    def set_torrents_priority(self, hashes, priority) -> List[ItemResult]:
        def set_priority(info_hash):
            torrent = self._get_torrent_by_hash(info_hash)
            file_ids = list(range(len(torrent.get_files())))
            with self._translate_errors():
                self._change_files(torrent.id, file_ids, priority)

        return self._for_each(hashes, set_priority)

    def _change_files(self, torrent_id, file_ids: List[int], priority: Priority):
        if priority == Priority.OFF:
            self.client.change_torrent(torrent_id, files_unwanted=file_ids)
        elif priority == Priority.NORMAL:
            self.client.change_torrent(torrent_id, files_wanted=file_ids, priority_normal=file_ids)
        elif priority == Priority.HIGH:
            self.client.change_torrent(torrent_id, files_wanted=file_ids, priority_high=file_ids)

    def set_torrents_tags(self, hashes, tags) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.change_torrent(ids, labels=tags))

    def set_torrents_trackers(self, hashes, trackers) -> List[ItemResult]:
        # One tracker per tier, in the given order
        tiers = [[url] for url in trackers]
        return self._batch(hashes, lambda ids: self.client.change_torrent(ids, tracker_list=tiers))

    def get_torrent_contents(self, info_hash) -> List[TorrentContent]:
        torrent = self._get_torrent_by_hash(info_hash)
        contents = []
        for i, file in enumerate(torrent.get_files()):
            if not file.selected:
                priority = Priority.OFF
            elif file.priority > 0:
                priority = Priority.HIGH
            else:
                priority = Priority.NORMAL
            contents.append(TorrentContent(
                index=i,
                path=file.name,
                size=file.size,
                priority=priority,
                bytes_completed=file.completed,
            ))
        return contents

    def set_torrent_contents_priority(self, info_hash, indices, priority) -> None:
        torrent = self._get_torrent_by_hash(info_hash)
        count = len(torrent.get_files())
        unknown = [i for i in indices if i < 0 or i >= count]
        if unknown:
            raise NotFound(f"Torrent {info_hash} has no content at indices {unknown}")
        with self._translate_errors():
            self._change_files(torrent.id, list(indices), priority)

    def get_torrent_peers(self, info_hash) -> List[TorrentPeer]:
        torrent = self._get_torrent_by_hash(info_hash)
        return [
            TorrentPeer(
                address=peer.get("address", ""),
                client_version=peer.get("clientName", ""),
                download_rate=peer.get("rateToClient", 0),
                upload_rate=peer.get("rateToPeer", 0),
                progress=peer.get("progress", 0),
                is_encrypted=bool(peer.get("isEncrypted")),
            )
            for peer in torrent.fields.get("peers") or []
        ]

    def get_torrent_trackers(self, info_hash) -> List[TorrentTracker]:
        torrent = self._get_torrent_by_hash(info_hash)
        trackers = []
        for stats in torrent.fields.get("trackerStats") or []:
            if not stats.get("hasAnnounced"):
                status = "not contacted"
            elif stats.get("lastAnnounceSucceeded"):
                status = "working"
            else:
                status = stats.get("lastAnnounceResult") or "failed"
            trackers.append(TorrentTracker(url=stats["announce"], tier=stats.get("tier", 0), status=status))
        return trackers

    def get_client_settings(self) -> ClientSettings:
        with self._translate_errors():
            session = self.client.get_session()
        return ClientSettings(directory_default=session.download_dir or None)
