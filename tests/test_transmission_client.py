from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from transmission_rpc.error import TransmissionConnectError, TransmissionError

from torrent_gateway.errors import BackendRejected, BackendUnreachable, NotFound
from torrent_gateway.models import Priority, TorrentStatus
from torrent_gateway.transmission_client import TransmissionClient


HASH_A = "A" * 40
HASH_B = "B" * 40


def make_torrent(info_hash=HASH_A, status="seeding", error=0, files=None, **fields):
    defaults = {
        "error": error,
        "errorString": "tracker error" if error else "",
        "labels": ["movies"],
        "trackers": [{"announce": "http://t.example/announce"}],
        "dateCreated": 1690000000,
        "addedDate": 1700000000,
    }
    defaults.update(fields)
    return SimpleNamespace(
        id=1,
        hashString=info_hash.lower(),
        name="Alpha",
        download_dir="/downloads",
        status=status,
        total_size=1000,
        progress=50.0,
        rate_download=10,
        rate_upload=20,
        ratio=-1,
        fields=defaults,
        get_files=lambda: files or [],
    )


def make_file(name, selected=True, priority=0, size=100, completed=50):
    return SimpleNamespace(name=name, selected=selected, priority=priority, size=size, completed=completed)


@pytest.fixture
def rpc():
    with patch("torrent_gateway.transmission_client.TransmissionRPCClient") as factory:
        yield factory.return_value


@pytest.fixture
def transmission(rpc):
    return TransmissionClient(host="localhost", port=9091, username="admin", password="secret")


class TestTransmissionClient:
    def test_connects_lazily(self):
        with patch("torrent_gateway.transmission_client.TransmissionRPCClient") as factory:
            client = TransmissionClient(host="nas", port=9092, path="/rpc")
            factory.assert_not_called()
            client.list_torrents()

        options = factory.call_args[1]
        assert options["host"] == "nas"
        assert options["path"] == "/rpc"
        assert options["username"] is None

    def test_connect_error_is_unreachable(self):
        with patch("torrent_gateway.transmission_client.TransmissionRPCClient",
                   side_effect=TransmissionConnectError("connection refused")):
            client = TransmissionClient()
            with pytest.raises(BackendUnreachable):
                client.list_torrents()
            assert client.check_connection() is False

    def test_list_torrents(self, transmission, rpc):
        rpc.get_torrents.return_value = [
            make_torrent(),
            make_torrent(HASH_B, status="stopped"),
            make_torrent("C" * 40, status="checking"),
            make_torrent("D" * 40, status="downloading", error=2),
        ]

        torrents = transmission.list_torrents()

        alpha = torrents[0]
        assert alpha.hash == HASH_A
        assert alpha.status == TorrentStatus.SEEDING
        assert alpha.progress == 0.5
        assert alpha.tags == ["movies"]
        assert alpha.trackers == ["http://t.example/announce"]
        assert alpha.ratio == 0
        assert [t.status for t in torrents[1:]] == [
            TorrentStatus.STOPPED, TorrentStatus.CHECKING, TorrentStatus.ERROR,
        ]
        assert torrents[3].message == "tracker error"

    def test_batch_reports_missing_hashes(self, transmission, rpc):
        rpc.get_torrents.return_value = [SimpleNamespace(hashString=HASH_A.lower())]

        results = transmission.start_torrents([HASH_A, HASH_B])

        assert results[0].success
        assert results[1].code == "ENOENT"
        rpc.start_torrent.assert_called_once_with([HASH_A.lower()])

    def test_aggregate_rejection_fails_every_present_hash(self, transmission, rpc):
        rpc.get_torrents.return_value = [
            SimpleNamespace(hashString=HASH_A.lower()),
            SimpleNamespace(hashString=HASH_B.lower()),
        ]
        rpc.stop_torrent.side_effect = TransmissionError("invalid argument")

        results = transmission.stop_torrents([HASH_A, HASH_B])

        assert [r.code for r in results] == ["EREJECTED", "EREJECTED"]

    def test_aggregate_connection_loss_raises(self, transmission, rpc):
        rpc.get_torrents.return_value = [SimpleNamespace(hashString=HASH_A.lower())]
        rpc.verify_torrent.side_effect = TransmissionConnectError("timed out")

        with pytest.raises(BackendUnreachable):
            transmission.check_torrents([HASH_A])

    def test_remove_with_data(self, transmission, rpc):
        rpc.get_torrents.return_value = [SimpleNamespace(hashString=HASH_A.lower())]

        transmission.remove_torrents([HASH_A], delete_data=True)

        rpc.remove_torrent.assert_called_once_with([HASH_A.lower()], delete_data=True)

    def test_move_and_verify(self, transmission, rpc):
        rpc.get_torrents.return_value = [SimpleNamespace(hashString=HASH_A.lower())]

        transmission.move_torrents([HASH_A], "/srv/new", move_files=False, is_check_hash=True)

        rpc.move_torrent_data.assert_called_once_with([HASH_A.lower()], "/srv/new", move=False)
        rpc.verify_torrent.assert_called_once_with([HASH_A.lower()])

    def test_tags_and_trackers_replace(self, transmission, rpc):
        rpc.get_torrents.return_value = [SimpleNamespace(hashString=HASH_A.lower())]

        transmission.set_torrents_tags([HASH_A], ["a", "b"])
        transmission.set_torrents_trackers([HASH_A], ["http://one/announce", "http://two/announce"])

        rpc.change_torrent.assert_any_call([HASH_A.lower()], labels=["a", "b"])
        rpc.change_torrent.assert_any_call(
            [HASH_A.lower()], tracker_list=[["http://one/announce"], ["http://two/announce"]],
        )

    def test_add_url_passes_cookies(self, transmission, rpc):
        rpc.add_torrent.return_value = SimpleNamespace(id=7, name="Alpha")

        results = transmission.add_torrents_by_url(
            ["https://tracker.example/1.torrent", "ftp://nope"],
            {"tracker.example": ["uid=1"]}, "/downloads", ["tv"], start=False,
        )

        assert results[0].success
        assert results[1].code == "EINVAL"
        rpc.add_torrent.assert_called_once_with(
            "https://tracker.example/1.torrent",
            download_dir="/downloads", paused=True, labels=["tv"], cookies="uid=1",
        )

    def test_add_completed_verifies_then_starts(self, transmission, rpc):
        rpc.add_torrent.return_value = SimpleNamespace(id=7, name="Alpha")

        transmission.add_torrents_by_url(["magnet:?xt=urn:btih:" + HASH_A], {}, "/downloads", [], is_completed=True)

        assert rpc.add_torrent.call_args[1]["paused"] is True
        rpc.verify_torrent.assert_called_once_with(7)
        rpc.start_torrent.assert_called_once_with(7)

    def test_add_invalid_file(self, transmission, rpc):
        results = transmission.add_torrents_by_file([b"not a torrent"], "/downloads", [])

        assert results[0].item == "file:0"
        assert results[0].code == "EINVAL"
        rpc.add_torrent.assert_not_called()

    def test_contents(self, transmission, rpc):
        rpc.get_torrents.return_value = [make_torrent(files=[
            make_file("Alpha/a.txt", selected=False),
            make_file("Alpha/b.txt", priority=1),
            make_file("Alpha/c.txt", priority=-1),
        ])]

        contents = transmission.get_torrent_contents(HASH_A)

        assert [c.priority for c in contents] == [Priority.OFF, Priority.HIGH, Priority.NORMAL]
        assert contents[0].bytes_completed == 50

    def test_contents_unknown_torrent(self, transmission, rpc):
        rpc.get_torrents.return_value = []

        with pytest.raises(NotFound):
            transmission.get_torrent_contents(HASH_A)

    def test_contents_priority(self, transmission, rpc):
        rpc.get_torrents.return_value = [make_torrent(files=[make_file("a"), make_file("b")])]

        with pytest.raises(NotFound):
            transmission.set_torrent_contents_priority(HASH_A, [2], Priority.HIGH)

        transmission.set_torrent_contents_priority(HASH_A, [1], Priority.OFF)
        rpc.change_torrent.assert_called_once_with(1, files_unwanted=[1])

    def test_torrent_priority_applies_to_all_files(self, transmission, rpc):
        rpc.get_torrents.return_value = [make_torrent(files=[make_file("a"), make_file("b")])]

        transmission.set_torrents_priority([HASH_A], Priority.HIGH)

        rpc.change_torrent.assert_called_once_with(1, files_wanted=[0, 1], priority_high=[0, 1])

    def test_peers_and_trackers(self, transmission, rpc):
        rpc.get_torrents.return_value = [make_torrent(
            peers=[{"address": "10.0.0.2", "clientName": "qBittorrent", "progress": 0.5, "isEncrypted": True}],
            trackerStats=[
                {"announce": "http://a/announce", "tier": 0, "hasAnnounced": True, "lastAnnounceSucceeded": True},
                {"announce": "http://b/announce", "tier": 1, "hasAnnounced": False},
            ],
        )]

        peer = transmission.get_torrent_peers(HASH_A)[0]
        trackers = transmission.get_torrent_trackers(HASH_A)

        assert peer.address == "10.0.0.2"
        assert peer.is_encrypted
        assert [(t.url, t.status) for t in trackers] == [
            ("http://a/announce", "working"),
            ("http://b/announce", "not contacted"),
        ]

    def test_client_settings(self, transmission, rpc):
        rpc.get_session.return_value = SimpleNamespace(download_dir="/downloads")

        assert transmission.get_client_settings().directory_default == "/downloads"

    def test_rejected_settings_call(self, transmission, rpc):
        rpc.get_session.side_effect = TransmissionError("forbidden")

        with pytest.raises(BackendRejected):
            transmission.get_client_settings()
