import pytest
from peewee import SqliteDatabase

from torrent_gateway.base_client import BaseTorrentClient
from torrent_gateway.config import Config
from torrent_gateway.errors import BackendRejected, BackendUnreachable, NotFound, ValidationError
from torrent_gateway.gateway import ClientGateway
from torrent_gateway.models import (
    ClientSettings, Priority, Torrent, TorrentContent, TorrentPeer, TorrentStatus, TorrentTracker,
)
from torrent_gateway.polling import TorrentCatalog
from torrent_gateway.settings import SettingService, TorrentDestination


class FakeClient(BaseTorrentClient):
    """In-memory daemon used by gateway, catalog and API tests."""

    name = "fake"

    def __init__(self):
        self.torrents = {}
        self.contents = {}
        self.peers = {}
        self.trackers = {}
        self.priorities = {}
        self.directory_default = "/downloads"
        self.added = []
        self.list_calls = 0
        self.unreachable = False
        # Hashes whose next operation loses the connection
        self.drop_connection_on = set()

    def seed(self, info_hash, name="Example", directory="/downloads", status=TorrentStatus.SEEDING,
             contents=None, progress=1.0):
        torrent = Torrent(hash=info_hash, name=name, directory=directory, status=status, size=100, progress=progress)
        self.torrents[info_hash] = torrent
        self.contents[info_hash] = list(contents or [])
        return torrent

    def _check(self, item=None):
        if self.unreachable or item in self.drop_connection_on:
            raise BackendUnreachable("fake daemon is down")

    def _get(self, info_hash):
        self._check(info_hash)
        if info_hash not in self.torrents:
            raise NotFound(f"Torrent {info_hash} not found")
        return self.torrents[info_hash]

    def check_connection(self):
        return not self.unreachable

    def list_torrents(self):
        self._check()
        self.list_calls += 1
        return list(self.torrents.values())

    def add_torrents_by_url(self, urls, cookies, destination, tags,
                            is_base_path=False, is_completed=False, start=True):
        def add(url):
            self._check(url)
            if not url.startswith(("magnet:", "http://", "https://")):
                raise ValidationError("URL must be a magnet link or HTTP/HTTPS URL")
            self.added.append(dict(item=url, cookies=cookies, destination=destination, tags=tags,
                                   is_base_path=is_base_path, is_completed=is_completed, start=start))

        return self._for_each(urls, add)

    def add_torrents_by_file(self, files, destination, tags,
                             is_base_path=False, is_completed=False, start=True):
        payloads = {f"file:{position}": data for position, data in enumerate(files)}

        def add(item):
            self._check()
            if payloads[item] == b"rejected":
                raise BackendRejected("invalid torrent")
            self.added.append(dict(item=payloads[item], destination=destination, tags=tags,
                                   is_base_path=is_base_path, is_completed=is_completed, start=start))

        return self._for_each(payloads, add)

    def _set(self, hashes, **changes):
        def apply(info_hash):
            torrent = self._get(info_hash)
            for key, value in changes.items():
                setattr(torrent, key, value)

        return self._for_each(hashes, apply)

    def start_torrents(self, hashes):
        return self._set(hashes, status=TorrentStatus.DOWNLOADING)

    def stop_torrents(self, hashes):
        return self._set(hashes, status=TorrentStatus.STOPPED)

    def check_torrents(self, hashes):
        return self._set(hashes, status=TorrentStatus.CHECKING)

    def remove_torrents(self, hashes, delete_data=False):
        return self._for_each(hashes, lambda h: self.torrents.pop(self._get(h).hash))

    def move_torrents(self, hashes, destination, move_files=True, is_base_path=False, is_check_hash=False):
        return self._set(hashes, directory=destination)

    def set_torrents_priority(self, hashes, priority):
        def apply(info_hash):
            self._get(info_hash)
            self.priorities[info_hash] = priority

        return self._for_each(hashes, apply)

    def set_torrents_tags(self, hashes, tags):
        return self._set(hashes, tags=list(tags))

    def set_torrents_trackers(self, hashes, trackers):
        return self._set(hashes, trackers=list(trackers))

    def get_torrent_contents(self, info_hash):
        self._get(info_hash)
        return list(self.contents[info_hash])

    def set_torrent_contents_priority(self, info_hash, indices, priority):
        contents = {c.index: c for c in self.get_torrent_contents(info_hash)}
        unknown = [i for i in indices if i not in contents]
        if unknown:
            raise NotFound(f"Torrent {info_hash} has no content at indices {unknown}")
        for index in indices:
            contents[index].priority = priority

    def get_torrent_peers(self, info_hash):
        self._get(info_hash)
        return self.peers.get(info_hash, [])

    def get_torrent_trackers(self, info_hash):
        self._get(info_hash)
        return self.trackers.get(info_hash, [])

    def get_client_settings(self):
        self._check()
        return ClientSettings(directory_default=self.directory_default)


HASH_A = "A" * 40
HASH_B = "B" * 40


@pytest.fixture(autouse=True)
def isolate_paths(tmp_path, monkeypatch):
    """Keep temporary storage inside the test directory and lift the allow-list."""
    monkeypatch.setattr(Config, "TEMP_PATH", str(tmp_path / "gateway-tmp"))
    monkeypatch.setattr(Config, "ALLOWED_PATHS", [])


@pytest.fixture(autouse=True)
def setup_test_db():
    """Bind the settings store to an in-memory database for each test."""
    from torrent_gateway import dbs

    test_db = SqliteDatabase(':memory:')
    models_list = [TorrentDestination]
    test_db.bind(models_list, bind_refs=False, bind_backrefs=False)
    test_db.connect()
    test_db.create_tables(models_list)

    yield test_db

    test_db.drop_tables(models_list)
    test_db.close()
    for model in models_list:
        model._meta.database = dbs.sdb


@pytest.fixture
def fake_client():
    client = FakeClient()
    client.seed(HASH_A, name="Alpha", contents=[
        TorrentContent(index=0, path="Alpha/a.txt", size=10),
        TorrentContent(index=1, path="Alpha/b.txt", size=20, priority=Priority.HIGH),
    ])
    client.seed(HASH_B, name="Beta", status=TorrentStatus.STOPPED, progress=0.5)
    client.peers[HASH_A] = [TorrentPeer(address="10.0.0.2", client_version="qBittorrent 4.6")]
    client.trackers[HASH_A] = [TorrentTracker(url="http://tracker.example/announce", status="working")]
    return client


@pytest.fixture
def gateway(fake_client):
    return ClientGateway(fake_client, timeout=5)


@pytest.fixture
def catalog(gateway):
    return TorrentCatalog(gateway)


@pytest.fixture
def setting_service(setup_test_db):
    return SettingService()
