"""
Torrent file parsing, creation and fast-resume with comprehensive error handling.

Provides the TorrentFile class for parsing bencoded torrent payloads,
extracting metadata and generating info hashes, plus create_torrent() for
building a new torrent from files on disk.

Custom exceptions:
- TorrentFileError: Base exception for all torrent file errors
- InvalidTorrentFileError: Raised when data is not valid bencode format
- MissingRequiredKeyError: Raised when required keys are missing
"""

import hashlib
import math
import os
import time
from typing import Dict, List, Optional

import bencodepy

from .logger import logger


CREATED_BY = "torrent-gateway"

# Piece length bounds for created torrents
MIN_PIECE_LENGTH = 16 * 1024
MAX_PIECE_LENGTH = 16 * 1024 * 1024
TARGET_PIECES = 1500


class TorrentFileError(Exception):
    """Base exception for torrent file parsing errors."""
    pass


class InvalidTorrentFileError(TorrentFileError):
    """Raised when torrent data is not valid bencode format."""
    pass


class MissingRequiredKeyError(TorrentFileError):
    """Raised when torrent data is missing required keys."""
    pass


class TorrentFile:
    def __init__(self, data: bytes):
        # Try to decode bencode
        try:
            torrent_data_raw = bencodepy.decode(data)
        except bencodepy.DecodingError as e:
            raise InvalidTorrentFileError(f"Invalid bencode format: {e}")
        except Exception as e:
            raise InvalidTorrentFileError(f"Failed to decode torrent file: {e}")

        # Validate torrent structure
        if not isinstance(torrent_data_raw, dict):
            raise InvalidTorrentFileError("Torrent data is not a dictionary")

        if b'info' not in torrent_data_raw:
            raise MissingRequiredKeyError("Torrent file missing required 'info' dictionary")

        # Raw data is kept for re-encoding; the info hash needs the original bytes
        self._raw = torrent_data_raw
        self._raw_info = torrent_data_raw[b'info']

        # Normalize keys: bencodepy returns byte keys, convert to strings for easier access
        self.torrent_data = self._normalize_dict(torrent_data_raw)
        self.info = self.torrent_data['info']

        # Validate info dictionary
        if not isinstance(self.info, dict):
            raise InvalidTorrentFileError("'info' field is not a dictionary")
        for key in ('name', 'piece length', 'pieces'):
            if key not in self.info:
                raise MissingRequiredKeyError(f"Torrent info missing required '{key}' key")

        self.is_multi_file = 'files' in self.info

    @classmethod
    def from_path(cls, torrent_path: str) -> "TorrentFile":
        try:
            with open(torrent_path, 'rb') as f:
                return cls(f.read())
        except FileNotFoundError:
            raise TorrentFileError(f"Torrent file not found: {torrent_path}")
        except PermissionError:
            raise TorrentFileError(f"Permission denied reading torrent file: {torrent_path}")

    def _normalize_dict(self, d):
        """Recursively convert byte keys to strings, preserving byte values needed for hashing."""
        if isinstance(d, dict):
            result = {}
            for k, v in d.items():
                key = k.decode('utf-8', errors='ignore') if isinstance(k, bytes) else k

                if isinstance(v, dict):
                    value = self._normalize_dict(v)
                elif isinstance(v, list):
                    value = [self._normalize_list_item(item) for item in v]
                elif isinstance(v, bytes) and key not in ['pieces']:  # Don't decode binary data like pieces
                    try:
                        value = v.decode('utf-8')
                    except UnicodeDecodeError:
                        value = v
                else:
                    value = v

                result[key] = value
            return result
        return d

    def _normalize_list_item(self, item):
        if isinstance(item, dict):
            return self._normalize_dict(item)
        if isinstance(item, list):
            return [self._normalize_list_item(i) for i in item]
        if isinstance(item, bytes):
            try:
                return item.decode('utf-8')
            except UnicodeDecodeError:
                return item
        return item

    @property
    def name(self) -> str:
        return self.info['name']

    def files(self) -> List[str]:
        """Relative file paths, posix-style, rooted at the torrent name for multi-file torrents."""
        if self.is_multi_file:
            return ["/".join([self.info['name'], *file['path']]) for file in self.info['files']]
        else:
            return [self.info['name']]

    def info_hash(self) -> str:
        # Use raw info dict to ensure hash is correct (needs original bytes)
        return hashlib.sha1(bencodepy.encode(self._raw_info)).hexdigest().upper()

    def size(self) -> int:
        return sum(self.sizes())

    def sizes(self) -> List[int]:
        if self.is_multi_file:
            return [file['length'] for file in self.info['files']]
        else:
            return [self.info['length']]

    def piece_length(self) -> int:
        return self.info['piece length']

    def num_pieces(self) -> int:
        return len(self.info['pieces']) // 20

    def trackers(self) -> List[str]:
        if 'announce-list' in self.torrent_data:
            return [tracker for tier in self.torrent_data['announce-list'] for tracker in tier]
        elif 'announce' in self.torrent_data:
            return [self.torrent_data['announce']]
        else:
            return []

    def with_fast_resume(self, base_path: str) -> bytes:
        """
        Return the torrent re-encoded with rTorrent fast-resume data.

        base_path is the directory holding the data: the torrent's own folder
        for multi-file torrents, the parent directory for single-file ones.
        Every piece is marked complete and each file carries its on-disk mtime.
        If a file is missing the torrent is returned unchanged, so rTorrent
        falls back to a regular hash check.
        """
        piece_length = self.piece_length()
        if self.is_multi_file:
            paths = [os.path.join(base_path, *file['path']) for file in self.info['files']]
        else:
            paths = [os.path.join(base_path, self.info['name'])]

        resume_files = []
        offset = 0
        for path, length in zip(paths, self.sizes()):
            try:
                mtime = int(os.stat(path).st_mtime)
            except OSError:
                logger.debug(f"Skipping fast-resume, missing file: {path}")
                return bencodepy.encode(self._raw)
            first_piece = offset // piece_length
            last_piece = max(first_piece, math.ceil((offset + length) / piece_length))
            resume_files.append({
                b'priority': 1,
                b'mtime': mtime,
                b'completed': last_piece - first_piece,
            })
            offset += length

        raw = dict(self._raw)
        raw[b'libtorrent_resume'] = {
            b'bitfield': self.num_pieces(),
            b'files': resume_files,
            b'uncertain_pieces.timestamp': int(time.time()),
        }
        return bencodepy.encode(raw)


def _piece_length_for(total_size: int) -> int:
    piece_length = MIN_PIECE_LENGTH
    while piece_length < MAX_PIECE_LENGTH and total_size / piece_length > TARGET_PIECES:
        piece_length *= 2
    return piece_length


def _collect_files(source_path: str) -> List[Dict]:
    """Regular files under source_path, sorted, with their relative path parts."""
    if os.path.isfile(source_path):
        return [{'path': source_path, 'parts': [], 'length': os.path.getsize(source_path)}]

    entries = []
    for root, dirs, names in os.walk(source_path, followlinks=False):
        dirs.sort()
        for name in sorted(names):
            full = os.path.join(root, name)
            if os.path.islink(full) or not os.path.isfile(full):
                continue
            rel = os.path.relpath(full, source_path)
            entries.append({'path': full, 'parts': rel.split(os.sep), 'length': os.path.getsize(full)})
    return entries


def create_torrent(
    source_path: str,
    trackers: Optional[List[str]] = None,
    name: Optional[str] = None,
    comment: Optional[str] = None,
    info_source: Optional[str] = None,
    is_private: bool = False,
) -> bytes:
    """
    Build a bencoded torrent for a file or directory.

    Files are hashed in one continuous stream, as the BitTorrent v1 format
    requires, so pieces may span file boundaries.

    Raises:
        TorrentFileError: If source_path has no regular files
    """
    entries = _collect_files(source_path)
    if not entries:
        raise TorrentFileError(f"No files to add under {source_path}")

    total_size = sum(e['length'] for e in entries)
    piece_length = _piece_length_for(total_size)

    pieces = []
    buffer = b''
    for entry in entries:
        with open(entry['path'], 'rb') as f:
            while True:
                chunk = f.read(piece_length - len(buffer))
                if not chunk:
                    break
                buffer += chunk
                if len(buffer) == piece_length:
                    pieces.append(hashlib.sha1(buffer).digest())
                    buffer = b''
    if buffer:
        pieces.append(hashlib.sha1(buffer).digest())

    torrent_name = name or os.path.basename(os.path.normpath(source_path))
    info = {
        b'name': torrent_name.encode('utf-8'),
        b'piece length': piece_length,
        b'pieces': b''.join(pieces),
    }
    if os.path.isfile(source_path):
        info[b'length'] = total_size
    else:
        info[b'files'] = [
            {b'length': e['length'], b'path': [p.encode('utf-8') for p in e['parts']]}
            for e in entries
        ]
    if is_private:
        info[b'private'] = 1
    if info_source:
        info[b'source'] = info_source.encode('utf-8')

    torrent = {
        b'info': info,
        b'created by': CREATED_BY.encode('utf-8'),
        b'creation date': int(time.time()),
    }
    trackers = [t for t in (trackers or []) if t]
    if trackers:
        torrent[b'announce'] = trackers[0].encode('utf-8')
        torrent[b'announce-list'] = [[t.encode('utf-8') for t in trackers]]
    if comment:
        torrent[b'comment'] = comment.encode('utf-8')

    logger.debug(f"Created torrent {torrent_name} ({len(pieces)} pieces of {piece_length} bytes)")
    return bencodepy.encode(torrent)
