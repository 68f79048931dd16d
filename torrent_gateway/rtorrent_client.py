"""
RTorrent XMLRPC client with error translation and configurable timeouts.

Provides the RTorrentClient class for interacting with rTorrent via XMLRPC:
adding torrents from files/URLs/magnets, bulk state changes, priorities,
tags, trackers and per-torrent queries, all answered in the canonical model.

Supports both HTTP and HTTPS connections with automatic selection of the
appropriate transport layer based on the URL scheme. Every call is made
per hash, so batch outcomes are always attributed to individual items.

Tags are stored in d.custom1 (ruTorrent compatible) as comma-separated values.
"""

import http.client
import os
import shutil
import time
from contextlib import contextmanager
from typing import Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit
from xmlrpc import client

import requests

from .base_client import BaseTorrentClient, cookie_header
from .errors import BackendRejected, BackendUnreachable, NotFound, ValidationError
from .logger import logger
from .models import ClientSettings, ItemResult, Priority, Torrent, TorrentContent, TorrentPeer, TorrentStatus, TorrentTracker
from .paths import is_within
from .torrent_file import TorrentFile, TorrentFileError


# rTorrent answers unknown hashes with this fault code
FAULT_NOT_FOUND = -501

# d.priority is 0 (off) .. 3 (high); f.priority is 0 (off) .. 2 (high)
TORRENT_PRIORITY = {Priority.OFF: 0, Priority.NORMAL: 2, Priority.HIGH: 3}
FILE_PRIORITY = {Priority.OFF: 0, Priority.NORMAL: 1, Priority.HIGH: 2}

DOWNLOAD_TIMEOUT = 30


class TimeoutTransport(client.Transport):
    """Custom transport with configurable timeout for HTTP XMLRPC connections."""
    def __init__(self, timeout=10, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.timeout = timeout

    def make_connection(self, host):
        conn = super().make_connection(host)
        conn.timeout = self.timeout
        return conn


class TimeoutSafeTransport(client.SafeTransport):
    """Custom transport with configurable timeout for HTTPS XMLRPC connections."""
    def __init__(self, timeout=10, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.timeout = timeout

    def make_connection(self, host):
        conn = super().make_connection(host)
        conn.timeout = self.timeout
        return conn


def _quote(value: str) -> str:
    """Quote a value for use inside an rTorrent command string."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _redact(url: str) -> str:
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class RTorrentClient(BaseTorrentClient):
    name = "rtorrent"

    def __init__(self, url: str, view: str = "main", timeout: float = 10):
        self.url = url
        self.display_url = _redact(url)
        self.timeout = timeout
        # Use SafeTransport for HTTPS, Transport for HTTP
        if url.startswith('https://'):
            transport = TimeoutSafeTransport(timeout=timeout)
        else:
            transport = TimeoutTransport(timeout=timeout)
        self.client = client.ServerProxy(url, transport=transport)
        self.view = view

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except client.Fault as e:
            if e.faultCode == FAULT_NOT_FOUND or "info-hash" in str(e.faultString):
                raise NotFound(f"rTorrent: {e.faultString}")
            logger.error(f"rTorrent rejected call: {e.faultString}")
            raise BackendRejected(f"rTorrent: {e.faultString}")
        except client.ProtocolError as e:
            logger.error(f"rTorrent at {self.display_url} returned HTTP {e.errcode}: {e.errmsg}")
            raise BackendRejected(f"rTorrent returned HTTP {e.errcode}: {e.errmsg}")
        except (OSError, http.client.HTTPException) as e:
            logger.error(f"Failed to connect to rTorrent at {self.display_url}: {e}")
            raise BackendUnreachable(f"Failed to connect to rTorrent: {e}")

    def check_connection(self) -> bool:
        """Test if the connection to rTorrent is working."""
        try:
            with self._translate_errors():
                self.client.system.client_version()
            return True
        except (BackendUnreachable, BackendRejected):
            return False

    def list_torrents(self) -> List[Torrent]:
        with self._translate_errors():
            rows = self.client.d.multicall2("", self.view,
                "d.hash=",
                "d.name=",
                "d.directory=",
                "d.size_bytes=",
                "d.bytes_done=",
                "d.state=",
                "d.is_active=",
                "d.complete=",
                "d.hashing=",
                "d.message=",
                "d.custom1=",
                "d.custom=addtime",
                "d.creation_date=",
                "d.ratio=",
                "d.up.rate=",
                "d.down.rate=",
                'cat="$t.multicall=d.hash=,t.url=,cat={|}"',
            )
        return [self._to_torrent(row) for row in rows]

    def _to_torrent(self, row) -> Torrent:
        (info_hash, name, directory, size, bytes_done, state, is_active, complete,
         hashing, message, custom1, added, created, ratio, up_rate, down_rate, tracker_urls) = row

        if hashing:
            status = TorrentStatus.CHECKING
        elif message and not is_active:
            status = TorrentStatus.ERROR
        elif not state or not is_active:
            status = TorrentStatus.STOPPED
        elif complete:
            status = TorrentStatus.SEEDING
        else:
            status = TorrentStatus.DOWNLOADING

        return Torrent(
            hash=info_hash.upper(),
            name=name,
            directory=directory,
            status=status,
            size=size,
            progress=bytes_done / size if size > 0 else 0,
            tags=self._split_tags(custom1),
            trackers=[u for u in tracker_urls.split("|") if u and not u.startswith("dht://")],
            date_created=created or None,
            date_added=int(added) if str(added).isdigit() else None,
            download_rate=down_rate,
            upload_rate=up_rate,
            ratio=ratio / 1000,
            message=message,
        )

    @staticmethod
    def _split_tags(label_str: str) -> List[str]:
        if not label_str:
            return []
        return [l.strip() for l in label_str.split(',') if l.strip()]

    def _load_commands(self, destination: str, tags: List[str], is_base_path: bool) -> List[str]:
        directory_method = "d.directory_base.set" if is_base_path else "d.directory.set"
        commands = [
            f"{directory_method}={_quote(destination)}",
            f"d.custom.set=addtime,{int(time.time())}",
        ]
        if tags:
            commands.append(f"d.custom1.set={_quote(','.join(tags))}")
        return commands

    def _load_raw(self, data: bytes, destination: str, tags: List[str],
                  is_base_path: bool, is_completed: bool, start: bool) -> str:
        try:
            tf = TorrentFile(data)
        except TorrentFileError as e:
            raise ValidationError(f"Invalid torrent file: {e}")

        if is_completed:
            if tf.is_multi_file:
                base = destination if is_base_path else os.path.join(destination, tf.name)
            else:
                base = destination
            data = tf.with_fast_resume(base)

        commands = self._load_commands(destination, tags, is_base_path)
        method = self.client.load.raw_start if start else self.client.load.raw
        with self._translate_errors():
            result = method("", client.Binary(data), *commands)
        if result != 0:
            raise BackendRejected(f"rTorrent refused torrent {tf.info_hash()}")
        logger.debug(f"Added torrent to rTorrent: {tf.info_hash()}")
        return tf.info_hash()

    def _download_torrent_file(self, url: str, cookies: Optional[Dict[str, List[str]]]) -> bytes:
        """Download a .torrent file from a URL, sending the cookies of its domain.

        Note: For private trackers that validate IP addresses, the torrent server's
        IP must be registered with the tracker, or use file upload instead.
        """
        headers = {}
        cookie = cookie_header(url, cookies)
        if cookie:
            headers["Cookie"] = cookie
        try:
            response = requests.get(url, headers=headers, timeout=DOWNLOAD_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ValidationError(f"Failed to fetch torrent from {url}: {e}")
        return response.content

    def add_torrents_by_url(self, urls, cookies, destination, tags,
                            is_base_path=False, is_completed=False, start=True) -> List[ItemResult]:
        def add(url):
            if url.startswith("magnet:"):
                commands = self._load_commands(destination, tags, is_base_path)
                method = self.client.load.start if start else self.client.load.normal
                with self._translate_errors():
                    result = method("", url, *commands)
                if result != 0:
                    raise BackendRejected("rTorrent rejected magnet")
            elif url.startswith("http://") or url.startswith("https://"):
                data = self._download_torrent_file(url, cookies)
                self._load_raw(data, destination, tags, is_base_path, is_completed, start)
            else:
                raise ValidationError("URL must be a magnet link or HTTP/HTTPS URL")

        return self._for_each(urls, add)

    def add_torrents_by_file(self, files, destination, tags,
                             is_base_path=False, is_completed=False, start=True) -> List[ItemResult]:
        payloads = {f"file:{position}": data for position, data in enumerate(files)}
        return self._for_each(
            payloads,
            lambda item: self._load_raw(payloads[item], destination, tags, is_base_path, is_completed, start),
        )

    def start_torrents(self, hashes) -> List[ItemResult]:
        def start(info_hash):
            with self._translate_errors():
                self.client.d.open(info_hash)
                self.client.d.start(info_hash)

        return self._for_each(hashes, start)

    def stop_torrents(self, hashes) -> List[ItemResult]:
        def stop(info_hash):
            with self._translate_errors():
                self.client.d.stop(info_hash)
                self.client.d.close(info_hash)

        return self._for_each(hashes, stop)

    def check_torrents(self, hashes) -> List[ItemResult]:
        def check(info_hash):
            with self._translate_errors():
                self.client.d.check_hash(info_hash)

        return self._for_each(hashes, check)

    def remove_torrents(self, hashes, delete_data=False) -> List[ItemResult]:
        def remove(info_hash):
            if not delete_data:
                with self._translate_errors():
                    self.client.d.erase(info_hash)
                return
            with self._translate_errors():
                directory = self.client.d.directory(info_hash)
                is_multi_file = self.client.d.is_multi_file(info_hash) == 1
            paths = [os.path.join(directory, c.path) for c in self.get_torrent_contents(info_hash)]
            with self._translate_errors():
                self.client.d.erase(info_hash)
            self._delete_data(directory, paths, remove_root=is_multi_file)

        return self._for_each(hashes, remove)

    def _delete_data(self, directory: str, paths: List[str], remove_root: bool) -> None:
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")
        # Prune directories left empty, deepest first; single-file torrents share their directory
        for path in sorted({os.path.dirname(p) for p in paths}, key=len, reverse=True):
            while is_within(path, directory) and (path != directory or remove_root):
                try:
                    os.rmdir(path)
                except OSError:
                    break
                if path == directory:
                    break
                path = os.path.dirname(path)

    def move_torrents(self, hashes, destination, move_files=True,
                      is_base_path=False, is_check_hash=False) -> List[ItemResult]:
        def move(info_hash):
            with self._translate_errors():
                was_active = self.client.d.is_active(info_hash) == 1
                is_multi_file = self.client.d.is_multi_file(info_hash) == 1
                directory = self.client.d.directory(info_hash)
                name = self.client.d.name(info_hash)
                self.client.d.stop(info_hash)
                self.client.d.close(info_hash)

            if is_multi_file:
                source = directory
                target = destination if is_base_path else os.path.join(destination, name)
            else:
                source = os.path.join(directory, name)
                target = os.path.join(destination, name)

            if move_files and os.path.abspath(source) != os.path.abspath(target):
                try:
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    shutil.move(source, target)
                except OSError as e:
                    raise BackendRejected(f"Failed to move data of {info_hash}: {e}")

            with self._translate_errors():
                if is_multi_file and is_base_path:
                    self.client.d.directory_base.set(info_hash, destination)
                else:
                    self.client.d.directory.set(info_hash, destination)
                if is_check_hash:
                    self.client.d.check_hash(info_hash)
                if was_active:
                    self.client.d.open(info_hash)
                    self.client.d.start(info_hash)
            logger.info(f"Moved torrent {info_hash} to {destination}")

        return self._for_each(hashes, move)

    def set_torrents_priority(self, hashes, priority) -> List[ItemResult]:
        def set_priority(info_hash):
            with self._translate_errors():
                self.client.d.priority.set(info_hash, TORRENT_PRIORITY[priority])

        return self._for_each(hashes, set_priority)

    def set_torrents_tags(self, hashes, tags) -> List[ItemResult]:
        label_str = ','.join(tags)

        def set_tags(info_hash):
            with self._translate_errors():
                self.client.d.custom1.set(info_hash, label_str)

        return self._for_each(hashes, set_tags)

    def set_torrents_trackers(self, hashes, trackers) -> List[ItemResult]:
        def set_trackers(info_hash):
            with self._translate_errors():
                existing = self.client.t.multicall(info_hash, "", "t.url=")
                # rTorrent cannot delete trackers; disable the old ones instead
                for index in range(len(existing)):
                    self.client.t.is_enabled.set(f"{info_hash}:t{index}", 0)
                for tier, url in enumerate(trackers):
                    self.client.d.tracker.insert(info_hash, str(tier), url)
                self.client.d.save_full_session(info_hash)

        return self._for_each(hashes, set_trackers)

    def _call(self, method: str, *args):
        target = self.client
        for part in method.split("."):
            target = getattr(target, part)
        with self._translate_errors():
            return target(*args)

    def get_torrent_contents(self, info_hash) -> List[TorrentContent]:
        file_data = self._call("f.multicall", info_hash, "",
                               "f.path=", "f.size_bytes=", "f.size_chunks=", "f.completed_chunks=", "f.priority=")
        contents = []
        for i, f in enumerate(file_data):
            path, size, size_chunks, completed_chunks, priority = f
            progress = completed_chunks / size_chunks if size_chunks > 0 else 0
            contents.append(TorrentContent(
                index=i,
                path=path.replace(os.sep, "/"),
                size=size,
                priority=Priority(min(priority, Priority.HIGH)),
                bytes_completed=min(size, int(size * progress)),
            ))
        return contents

    def set_torrent_contents_priority(self, info_hash, indices, priority) -> None:
        count = len(self._call("f.multicall", info_hash, "", "f.path="))
        unknown = [i for i in indices if i < 0 or i >= count]
        if unknown:
            raise NotFound(f"Torrent {info_hash} has no content at indices {unknown}")
        with self._translate_errors():
            for index in indices:
                self.client.f.priority.set(f"{info_hash}:f{index}", FILE_PRIORITY[priority])
            self.client.d.update_priorities(info_hash)

    def get_torrent_peers(self, info_hash) -> List[TorrentPeer]:
        rows = self._call("p.multicall", info_hash, "",
                          "p.address=", "p.client_version=", "p.down_rate=", "p.up_rate=",
                          "p.completed_percent=", "p.is_encrypted=")
        return [
            TorrentPeer(
                address=address,
                client_version=version,
                download_rate=down_rate,
                upload_rate=up_rate,
                progress=completed / 100,
                is_encrypted=encrypted == 1,
            )
            for address, version, down_rate, up_rate, completed, encrypted in rows
        ]

    def get_torrent_trackers(self, info_hash) -> List[TorrentTracker]:
        rows = self._call("t.multicall", info_hash, "",
                          "t.url=", "t.group=", "t.is_enabled=", "t.failed_counter=", "t.success_counter=")
        trackers = []
        for url, group, enabled, failed, succeeded in rows:
            if url.startswith("dht://"):
                continue
            if not enabled:
                status = "disabled"
            elif succeeded:
                status = "working"
            elif failed:
                status = "failed"
            else:
                status = "not contacted"
            trackers.append(TorrentTracker(url=url, tier=group, status=status))
        return trackers

    def get_client_settings(self) -> ClientSettings:
        directory = self._call("directory.default")
        return ClientSettings(directory_default=directory or None)
