"""
Secure content delivery: serve a torrent's files over HTTP.

A request names a torrent hash and a selection of content indices (a
comma-separated list, or "all"). Every selected file is joined onto the
torrent's directory, sanitized and checked against the allow-list; paths
that fail, escape the torrent directory or do not exist are dropped.

- one surviving file is streamed inline, with browser-friendly MIME types
- several files are streamed as an uncompressed tar built on the fly
- no surviving file is a 404
"""

import mimetypes
import os
import posixpath
import stat
import tarfile
from typing import AsyncIterator, Iterable, List, Optional, Tuple
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool
from starlette.responses import FileResponse, Response, StreamingResponse

from .errors import NotFound, ValidationError
from .gateway import ClientGateway
from .logger import logger
from .models import Torrent, TorrentContent
from .paths import is_allowed_path, is_within, sanitize_path
from .polling import TorrentCatalog


ALL_CONTENTS = "all"
CHUNK_SIZE = 64 * 1024

# Containers browsers can play when advertised under a different type
MIME_OVERRIDES = {
    ".mkv": "video/webm",
    ".flac": "audio/flac",
}

# (absolute path on disk, path inside the archive)
ContentPath = Tuple[str, str]


def parse_indices(value: Optional[str]) -> Optional[List[int]]:
    """
    Parse "0,2,5" into [0, 2, 5]. "all" (or nothing) selects every file and
    returns None.

    Raises:
        ValidationError: If an index is not a non-negative integer
    """
    if value is None or not value.strip() or value.strip().lower() == ALL_CONTENTS:
        return None
    indices = []
    for part in value.split(","):
        part = part.strip()
        if not part.isdigit():
            raise ValidationError(f"Invalid content index: {part!r}")
        if int(part) not in indices:
            indices.append(int(part))
    return indices


def select_contents(contents: List[TorrentContent], indices: Optional[List[int]]) -> List[TorrentContent]:
    if indices is None:
        return list(contents)
    by_index = {c.index: c for c in contents}
    return [by_index[i] for i in indices if i in by_index]


def mime_type_for(path: str) -> str:
    extension = os.path.splitext(path)[1].lower()
    if extension in MIME_OVERRIDES:
        return MIME_OVERRIDES[extension]
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or "application/octet-stream"


def content_disposition(disposition: str, filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"{disposition}; filename*=utf-8''{quoted}"
    return f'{disposition}; filename="{filename}"'


def resolve_content_paths(
    torrent: Torrent,
    contents: Iterable[TorrentContent],
    allowed_paths: Optional[Iterable[str]] = None,
) -> List[ContentPath]:
    """Surviving (disk path, archive name) pairs for the selected contents."""
    try:
        root = sanitize_path(torrent.directory)
    except ValueError:
        logger.warning(f"Torrent {torrent.hash} has no usable directory")
        return []

    resolved = []
    for content in contents:
        try:
            path = sanitize_path(os.path.join(root, *content.path.split("/")))
        except ValueError:
            continue
        if not is_within(path, root) or not is_allowed_path(path, allowed_paths):
            logger.warning(f"Dropped content path outside allowed paths: {path}")
            continue
        if not (os.path.isfile(path) or os.path.islink(path)):
            logger.debug(f"Dropped missing content path: {path}")
            continue
        resolved.append((path, os.path.relpath(path, root).replace(os.sep, "/")))
    return resolved


def _tar_header(path: str, arcname: str) -> tarfile.TarInfo:
    st = os.lstat(path)
    info = tarfile.TarInfo(posixpath.normpath(arcname))
    info.mode = stat.S_IMODE(st.st_mode)
    info.mtime = int(st.st_mtime)
    # Portable archive: no owner information
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    if stat.S_ISLNK(st.st_mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(path)
        info.size = 0
    else:
        info.type = tarfile.REGTYPE
        info.size = st.st_size
    return info


async def iter_tar(entries: List[ContentPath], chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """
    Yield an uncompressed tar archive of entries, one chunk at a time.

    Symlinks are stored as links rather than followed. A file that cannot be
    opened is skipped before its header is written. A file that shrinks
    while it is streamed is padded with zeros so the archive stays valid.
    """
    written = 0
    for path, arcname in entries:
        f = None
        try:
            info = await run_in_threadpool(_tar_header, path, arcname)
            if info.type == tarfile.REGTYPE and info.size:
                f = await run_in_threadpool(open, path, "rb")
        except OSError as e:
            logger.warning(f"Skipping {path} in archive: {e}")
            continue

        header = info.tobuf(tarfile.PAX_FORMAT)
        written += len(header)
        yield header

        if f is not None:
            try:
                remaining = info.size
                while remaining > 0:
                    chunk = await run_in_threadpool(f.read, min(chunk_size, remaining))
                    if not chunk:
                        chunk = tarfile.NUL * remaining
                    remaining -= len(chunk)
                    written += len(chunk)
                    yield chunk
            finally:
                await run_in_threadpool(f.close)

            padding = -info.size % tarfile.BLOCKSIZE
            if padding:
                written += padding
                yield tarfile.NUL * padding

    # End-of-archive marker, then pad to a full record like tarfile does
    trailer = tarfile.BLOCKSIZE * 2
    trailer += -(written + trailer) % tarfile.RECORDSIZE
    yield tarfile.NUL * trailer


def file_response(path: str) -> Response:
    filename = os.path.basename(path)
    return FileResponse(
        path,
        media_type=mime_type_for(path),
        headers={"Content-Disposition": content_disposition("inline", filename)},
    )


def archive_response(name: str, entries: List[ContentPath]) -> Response:
    return StreamingResponse(
        iter_tar(entries),
        media_type="application/x-tar",
        headers={"Content-Disposition": content_disposition("attachment", f"{name}.tar")},
    )


class ContentDelivery:
    def __init__(
        self,
        gateway: ClientGateway,
        catalog: TorrentCatalog,
        allowed_paths: Optional[Iterable[str]] = None,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.allowed_paths = allowed_paths

    async def resolve(self, info_hash: str, indices: Optional[str]) -> Tuple[Torrent, List[ContentPath]]:
        """
        Look up the torrent and its selected, surviving content paths.

        Raises:
            NotFound: Unknown hash, no contents, or no surviving paths
            ValidationError: Malformed index list
        """
        selection = parse_indices(indices)

        torrent = self.catalog.get_torrent(info_hash)
        if torrent is None:
            raise NotFound(f"Torrent {info_hash} not found")

        contents = await self.gateway.get_torrent_contents(torrent.hash)
        if not contents:
            raise NotFound(f"Torrent {info_hash} has no contents")

        selected = select_contents(contents, selection)
        entries = await run_in_threadpool(resolve_content_paths, torrent, selected, self.allowed_paths)
        if not entries:
            raise NotFound("No requested file is available")
        return torrent, entries

    async def deliver(self, info_hash: str, indices: Optional[str]) -> Response:
        torrent, entries = await self.resolve(info_hash, indices)
        if len(entries) == 1:
            path, _ = entries[0]
            logger.debug(f"Streaming {path}")
            return file_response(path)
        logger.debug(f"Streaming {len(entries)} files of {torrent.name} as tar")
        return archive_response(torrent.name, entries)
