"""
qBittorrent Web API client for managing torrents.

Provides the QBittorrentClient class for interacting with qBittorrent's
REST API (session-cookie authenticated, via qbittorrent-api), implementing
the same interface as RTorrentClient.

qBittorrent silently ignores unknown hashes in bulk calls, so the client
checks which hashes exist first and reports the missing ones individually.
"""

from contextlib import contextmanager
from typing import List, Optional

import qbittorrentapi

from .base_client import BaseTorrentClient, cookie_header
from .errors import BackendRejected, BackendUnreachable, NotFound, ValidationError
from .logger import logger
from .models import ClientSettings, ItemResult, Priority, Torrent, TorrentContent, TorrentPeer, TorrentStatus, TorrentTracker


# File priorities: 0 (do not download), 1 (normal), 6 (high), 7 (maximal)
FILE_PRIORITY = {Priority.OFF: 0, Priority.NORMAL: 1, Priority.HIGH: 6}

TRACKER_STATUS = {
    0: "disabled",
    1: "not contacted",
    2: "working",
    3: "updating",
    4: "failed",
}

ERROR_STATES = ("error", "missingFiles")
STOPPED_STATES = ("pausedDL", "pausedUP", "stoppedDL", "stoppedUP")
CHECKING_STATES = ("checkingDL", "checkingUP", "checkingResumeData", "moving")
SEEDING_STATES = ("uploading", "stalledUP", "forcedUP", "queuedUP")


class QBittorrentClient(BaseTorrentClient):
    name = "qbittorrent"

    def __init__(
        self,
        url: str = "http://localhost:8080",
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10,
        verify_cert: bool = True,
    ):
        self.url = url
        self.client = qbittorrentapi.Client(
            host=url,
            username=username or None,
            password=password or None,
            VERIFY_WEBUI_CERTIFICATE=verify_cert,
            REQUESTS_ARGS={"timeout": timeout},
        )

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except qbittorrentapi.LoginFailed as e:
            raise BackendRejected(f"qBittorrent login failed: {e}")
        except qbittorrentapi.NotFound404Error as e:
            raise NotFound(f"qBittorrent: {e or 'torrent not found'}")
        except qbittorrentapi.HTTPError as e:
            logger.error(f"qBittorrent rejected call: {e}")
            raise BackendRejected(f"qBittorrent: {e}")
        except qbittorrentapi.APIConnectionError as e:
            logger.error(f"Failed to connect to qBittorrent at {self.url}: {e}")
            raise BackendUnreachable(f"Failed to connect to qBittorrent: {e}")
        except qbittorrentapi.APIError as e:
            raise BackendRejected(f"qBittorrent: {e}")

    def check_connection(self) -> bool:
        """Test if the connection to qBittorrent is working."""
        try:
            with self._translate_errors():
                self.client.app_version()
            return True
        except (BackendUnreachable, BackendRejected):
            return False

    def _info(self, hashes: Optional[List[str]] = None):
        with self._translate_errors():
            if hashes is None:
                return self.client.torrents_info()
            return self.client.torrents_info(torrent_hashes=[h.lower() for h in hashes])

    def _batch(self, hashes: List[str], action) -> List[ItemResult]:
        existing = [t["hash"] for t in self._info(hashes)]

        def run(present):
            with self._translate_errors():
                action([h.lower() for h in present])

        return self._aggregate(hashes, existing, run)

    def _require(self, info_hash: str) -> None:
        if not self._info([info_hash]):
            raise NotFound(f"No torrent found with hash {info_hash}")

    def list_torrents(self) -> List[Torrent]:
        return [self._to_torrent(t) for t in self._info()]

    def _to_torrent(self, info) -> Torrent:
        state = info.get("state", "")
        if state in ERROR_STATES:
            status = TorrentStatus.ERROR
        elif state in STOPPED_STATES:
            status = TorrentStatus.STOPPED
        elif state in CHECKING_STATES:
            status = TorrentStatus.CHECKING
        elif state in SEEDING_STATES:
            status = TorrentStatus.SEEDING
        else:
            status = TorrentStatus.DOWNLOADING

        tracker = info.get("tracker")
        return Torrent(
            hash=info["hash"].upper(),
            name=info.get("name", ""),
            directory=info.get("save_path", ""),
            status=status,
            size=info.get("total_size", info.get("size", 0)),
            progress=info.get("progress", 0),
            tags=[t.strip() for t in (info.get("tags") or "").split(",") if t.strip()],
            trackers=[tracker] if tracker else [],
            date_added=info.get("added_on") or None,
            download_rate=info.get("dlspeed", 0),
            upload_rate=info.get("upspeed", 0),
            ratio=info.get("ratio", 0),
        )

    def _add(self, destination, tags, is_base_path, is_completed, start, **source) -> None:
        with self._translate_errors():
            result = self.client.torrents_add(
                save_path=destination,
                is_paused=not start,
                tags=tags or None,
                is_skip_checking=is_completed,
                content_layout="NoSubfolder" if is_base_path else None,
                **source,
            )
        if result != "Ok.":
            raise BackendRejected(f"qBittorrent did not accept the torrent: {result}")

    def add_torrents_by_url(self, urls, cookies, destination, tags,
                            is_base_path=False, is_completed=False, start=True) -> List[ItemResult]:
        def add(url):
            if not url.startswith(("magnet:", "http://", "https://")):
                raise ValidationError("URL must be a magnet link or HTTP/HTTPS URL")
            self._add(destination, tags, is_base_path, is_completed, start,
                      urls=url, cookie=cookie_header(url, cookies))

        return self._for_each(urls, add)

    def add_torrents_by_file(self, files, destination, tags,
                             is_base_path=False, is_completed=False, start=True) -> List[ItemResult]:
        payloads = {f"file:{position}": data for position, data in enumerate(files)}
        return self._for_each(
            payloads,
            lambda item: self._add(destination, tags, is_base_path, is_completed, start,
                                   torrent_files=payloads[item]),
        )

    def start_torrents(self, hashes) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.torrents_resume(torrent_hashes=ids))

    def stop_torrents(self, hashes) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.torrents_pause(torrent_hashes=ids))

    def check_torrents(self, hashes) -> List[ItemResult]:
        return self._batch(hashes, lambda ids: self.client.torrents_recheck(torrent_hashes=ids))

    def remove_torrents(self, hashes, delete_data=False) -> List[ItemResult]:
        return self._batch(
            hashes,
            lambda ids: self.client.torrents_delete(delete_files=delete_data, torrent_hashes=ids),
        )

    def move_torrents(self, hashes, destination, move_files=True,
                      is_base_path=False, is_check_hash=False) -> List[ItemResult]:
        # qBittorrent always moves the data along with the location
        def move(ids):
            self.client.torrents_set_location(location=destination, torrent_hashes=ids)
            if is_check_hash:
                self.client.torrents_recheck(torrent_hashes=ids)

        return self._batch(hashes, move)

    def set_torrents_priority(self, hashes, priority) -> List[ItemResult]:
        def set_priority(info_hash):
            file_ids = [c.index for c in self.get_torrent_contents(info_hash)]
            with self._translate_errors():
                self.client.torrents_file_priority(
                    torrent_hash=info_hash.lower(),
                    file_ids=file_ids,
                    priority=FILE_PRIORITY[priority],
                )

        return self._for_each(hashes, set_priority)

    def set_torrents_tags(self, hashes, tags) -> List[ItemResult]:
        def replace(ids):
            self.client.torrents_remove_tags(torrent_hashes=ids)
            if tags:
                self.client.torrents_add_tags(tags=tags, torrent_hashes=ids)

        return self._batch(hashes, replace)

    def set_torrents_trackers(self, hashes, trackers) -> List[ItemResult]:
        def replace(info_hash):
            existing = [t.url for t in self.get_torrent_trackers(info_hash)]
            with self._translate_errors():
                if existing:
                    self.client.torrents_remove_trackers(torrent_hash=info_hash.lower(), urls=existing)
                if trackers:
                    self.client.torrents_add_trackers(torrent_hash=info_hash.lower(), urls=trackers)

        return self._for_each(hashes, replace)

    def get_torrent_contents(self, info_hash) -> List[TorrentContent]:
        with self._translate_errors():
            files = self.client.torrents_files(torrent_hash=info_hash.lower())
        contents = []
        for position, file in enumerate(files):
            native = file.get("priority", 1)
            if native == 0:
                priority = Priority.OFF
            elif native >= FILE_PRIORITY[Priority.HIGH]:
                priority = Priority.HIGH
            else:
                priority = Priority.NORMAL
            size = file.get("size", 0)
            contents.append(TorrentContent(
                index=file.get("index", position),
                path=file["name"],
                size=size,
                priority=priority,
                bytes_completed=int(size * file.get("progress", 0)),
            ))
        return sorted(contents, key=lambda c: c.index)

    def set_torrent_contents_priority(self, info_hash, indices, priority) -> None:
        known = {c.index for c in self.get_torrent_contents(info_hash)}
        unknown = [i for i in indices if i not in known]
        if unknown:
            raise NotFound(f"Torrent {info_hash} has no content at indices {unknown}")
        with self._translate_errors():
            self.client.torrents_file_priority(
                torrent_hash=info_hash.lower(),
                file_ids=list(indices),
                priority=FILE_PRIORITY[priority],
            )

    def get_torrent_peers(self, info_hash) -> List[TorrentPeer]:
        with self._translate_errors():
            data = self.client.sync_torrent_peers(torrent_hash=info_hash.lower(), rid=0)
        return [
            TorrentPeer(
                address=peer.get("ip", address),
                client_version=peer.get("client", ""),
                download_rate=peer.get("dl_speed", 0),
                upload_rate=peer.get("up_speed", 0),
                progress=peer.get("progress", 0),
                is_encrypted="E" in (peer.get("flags") or ""),
            )
            for address, peer in (data.get("peers") or {}).items()
        ]

    def get_torrent_trackers(self, info_hash) -> List[TorrentTracker]:
        with self._translate_errors():
            rows = self.client.torrents_trackers(torrent_hash=info_hash.lower())
        return [
            TorrentTracker(
                url=row["url"],
                tier=row.get("tier", 0) if isinstance(row.get("tier"), int) else 0,
                status=TRACKER_STATUS.get(row.get("status"), "unknown"),
            )
            for row in rows
            # DHT, PeX and LSD appear as pseudo trackers
            if not row["url"].startswith("** [")
        ]

    def get_client_settings(self) -> ClientSettings:
        with self._translate_errors():
            preferences = self.client.app_preferences()
        return ClientSettings(directory_default=preferences.get("save_path") or None)
