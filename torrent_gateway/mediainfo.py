"""
Media inspection of torrent content with the external mediainfo tool.

The helper runs as a subprocess with a time bound and an output bound. It
is terminated (and killed if it ignores SIGTERM) on every exit path: when
it times out, when the requesting client disconnects, and when the request
task is cancelled.
"""

import asyncio
import os
from typing import Awaitable, Callable, Iterable, Optional

from .config import Config
from .errors import AccessDenied, HelperTimeout, InternalError
from .logger import logger
from .models import Torrent
from .paths import is_allowed_path, sanitize_path


DisconnectCheck = Callable[[], Awaitable[bool]]

DISCONNECT_POLL_INTERVAL = 0.5
TERMINATE_GRACE = 2


async def _read_bounded(stream: asyncio.StreamReader, limit: int) -> bytes:
    data = bytearray()
    while True:
        chunk = await stream.read(64 * 1024)
        if not chunk:
            return bytes(data)
        data.extend(chunk)
        if len(data) > limit:
            raise InternalError(f"mediainfo output exceeds {limit} bytes")


async def _wait_for_disconnect(is_disconnected: DisconnectCheck) -> None:
    while not await is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), TERMINATE_GRACE)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
    except ProcessLookupError:
        return
    logger.info(f"Terminated mediainfo process {process.pid}")


async def run_mediainfo(
    path: str,
    is_disconnected: Optional[DisconnectCheck] = None,
    timeout: Optional[float] = None,
    max_output: Optional[int] = None,
) -> str:
    """
    Run mediainfo on path and return its text output.

    Raises:
        HelperTimeout: If mediainfo does not finish within timeout seconds
        InternalError: If it cannot start, writes to stderr, exits non-zero,
            produces too much output or the client disconnects first
    """
    timeout = Config.MEDIAINFO_TIMEOUT if timeout is None else timeout
    max_output = Config.MEDIAINFO_MAX_OUTPUT if max_output is None else max_output

    try:
        process = await asyncio.create_subprocess_exec(
            Config.MEDIAINFO_PATH, path,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise InternalError(f"Failed to start mediainfo: {e}")

    work = asyncio.ensure_future(asyncio.gather(
        _read_bounded(process.stdout, max_output),
        _read_bounded(process.stderr, max_output),
        process.wait(),
    ))
    watcher = asyncio.ensure_future(_wait_for_disconnect(is_disconnected)) if is_disconnected else None

    try:
        pending = {work, watcher} if watcher else {work}
        done, _ = await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if work not in done:
            if watcher is not None and watcher in done:
                raise InternalError("Client disconnected before mediainfo finished")
            raise HelperTimeout(f"mediainfo did not finish within {timeout}s")
        stdout, stderr, returncode = work.result()
    finally:
        for task in (work, watcher):
            if task is not None and not task.done():
                task.cancel()
        await _terminate(process)

    if stderr:
        raise InternalError(stderr.decode("utf-8", errors="replace").strip())
    if returncode != 0:
        raise InternalError(f"mediainfo exited with status {returncode}")
    return stdout.decode("utf-8", errors="replace")


def content_path(torrent: Torrent) -> str:
    """The torrent's own file or folder if present, else its directory."""
    candidate = os.path.join(torrent.directory, torrent.name)
    return candidate if os.path.exists(candidate) else torrent.directory


async def inspect_torrent(
    torrent: Torrent,
    is_disconnected: Optional[DisconnectCheck] = None,
    allowed_paths: Optional[Iterable[str]] = None,
) -> str:
    try:
        path = sanitize_path(content_path(torrent))
    except ValueError:
        raise AccessDenied()
    if not is_allowed_path(path, allowed_paths):
        raise AccessDenied()
    return await run_mediainfo(path, is_disconnected)
