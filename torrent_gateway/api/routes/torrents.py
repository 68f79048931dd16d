import base64
import os
import uuid
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from torrent_gateway.delivery import ContentDelivery, content_disposition
from torrent_gateway.destination import DestinationResolver
from torrent_gateway.errors import AccessDenied, GatewayError, InternalError, NotFound, ValidationError
from torrent_gateway.gateway import ClientGateway, get_gateway
from torrent_gateway.logger import logger
from torrent_gateway.mediainfo import inspect_torrent
from torrent_gateway.models import ItemResult
from torrent_gateway.paths import get_temp_path
from torrent_gateway.polling import TorrentCatalog, get_catalog
from torrent_gateway.torrent_file import TorrentFileError, create_torrent
from ..dependencies import get_delivery, get_resolver
from ..schemas import (
    AddTorrentsByFileRequest,
    AddTorrentsByURLRequest,
    CreateTorrentRequest,
    DeleteTorrentsRequest,
    MoveTorrentsRequest,
    SetTorrentContentsPriorityRequest,
    SetTorrentsPriorityRequest,
    SetTorrentsTagsRequest,
    SetTorrentsTrackersRequest,
    TorrentHashesRequest,
)

router = APIRouter(prefix="/api/torrents", tags=["torrents"])


def batch_response(results: List[ItemResult]) -> dict:
    return {"results": [r.to_dict() for r in results]}


@router.get("")
async def list_torrents(catalog: TorrentCatalog = Depends(get_catalog)):
    """
    List all torrents of the configured daemon.

    Returns the catalog snapshot from the background polling service rather
    than making a live RPC call, so the list may lag a mutation slightly.
    """
    snapshot = catalog.snapshot
    return {
        "torrents": {h: t.to_dict() for h, t in snapshot.torrents.items()},
        "updatedAt": snapshot.taken_at or None,
        "error": catalog.error,
    }


@router.post("/add-urls")
async def add_torrents_by_url(
    request: AddTorrentsByURLRequest,
    gateway: ClientGateway = Depends(get_gateway),
    resolver: DestinationResolver = Depends(get_resolver),
):
    """Add torrents from magnet links or HTTP/HTTPS URLs to .torrent files."""
    destination = await resolver.require(request.destination, request.tags)
    results = await gateway.add_torrents_by_url(
        request.urls,
        cookies=request.cookies,
        destination=destination,
        tags=request.tags,
        is_base_path=request.is_base_path,
        is_completed=request.is_completed,
        start=request.start,
    )
    return batch_response(results)


@router.post("/add-files")
async def add_torrents_by_file(
    request: AddTorrentsByFileRequest,
    gateway: ClientGateway = Depends(get_gateway),
    resolver: DestinationResolver = Depends(get_resolver),
):
    """Add torrents from base64-encoded .torrent files."""
    destination = await resolver.require(request.destination, request.tags)
    results = await gateway.add_torrents_by_file(
        request.files,
        destination=destination,
        tags=request.tags,
        is_base_path=request.is_base_path,
        is_completed=request.is_completed,
        start=request.start,
    )
    return batch_response(results)


def _stage_torrent(data: bytes) -> str:
    path = os.path.join(get_temp_path("torrents/"), f"{uuid.uuid4().hex}.torrent")
    with open(path, "wb") as f:
        f.write(data)
    return path


async def _seed_created_torrent(gateway: ClientGateway, data: bytes, destination: str, tags: List[str], start: bool):
    try:
        results = await gateway.add_torrents_by_file(
            [base64.b64encode(data).decode("ascii")],
            destination=destination,
            tags=tags,
            is_base_path=True,
            is_completed=True,
            start=start,
        )
    except GatewayError as e:
        logger.error(f"Failed to add created torrent from {destination}: {e}")
        return
    for result in results:
        if not result.success:
            logger.error(f"Daemon refused created torrent from {destination}: {result.message}")


@router.post("/create")
async def create_torrent_file(
    request: CreateTorrentRequest,
    background_tasks: BackgroundTasks,
    gateway: ClientGateway = Depends(get_gateway),
    resolver: DestinationResolver = Depends(get_resolver),
):
    """
    Create a .torrent for a file or directory on disk and return it.

    The new torrent is also added to the daemon in the background, pointed at
    the existing data so it seeds straight away.
    """
    source_path = resolver.validate(request.source_path)
    if source_path is None:
        raise AccessDenied()
    if not os.path.exists(source_path):
        raise NotFound(f"No such file or directory: {source_path}")

    try:
        data = await run_in_threadpool(
            create_torrent,
            source_path,
            trackers=request.trackers,
            name=request.name,
            comment=request.comment,
            info_source=request.info_source,
            is_private=request.is_private,
        )
    except TorrentFileError as e:
        raise ValidationError(str(e))

    try:
        staged = await run_in_threadpool(_stage_torrent, data)
    except OSError as e:
        logger.error(f"Failed to stage created torrent: {e}")
        raise InternalError(f"Failed to write torrent file: {e}")
    logger.info(f"Created torrent for {source_path} at {staged}")

    destination = source_path if os.path.isdir(source_path) else os.path.dirname(source_path)
    background_tasks.add_task(_seed_created_torrent, gateway, data, destination, request.tags, request.start)

    name = request.name or os.path.basename(os.path.normpath(source_path))
    return Response(
        content=data,
        media_type="application/x-bittorrent",
        headers={"Content-Disposition": content_disposition("attachment", f"{name}.torrent")},
    )


@router.post("/start")
async def start_torrents(request: TorrentHashesRequest, gateway: ClientGateway = Depends(get_gateway)):
    return batch_response(await gateway.start_torrents(request.hashes))


@router.post("/stop")
async def stop_torrents(request: TorrentHashesRequest, gateway: ClientGateway = Depends(get_gateway)):
    return batch_response(await gateway.stop_torrents(request.hashes))


@router.post("/check-hash")
async def check_torrents(request: TorrentHashesRequest, gateway: ClientGateway = Depends(get_gateway)):
    """Force a hash re-verification."""
    return batch_response(await gateway.check_torrents(request.hashes))


@router.post("/move")
async def move_torrents(
    request: MoveTorrentsRequest,
    gateway: ClientGateway = Depends(get_gateway),
    resolver: DestinationResolver = Depends(get_resolver),
):
    destination = resolver.validate(request.destination)
    if destination is None:
        raise AccessDenied()
    results = await gateway.move_torrents(
        request.hashes,
        destination,
        move_files=request.move_files,
        is_base_path=request.is_base_path,
        is_check_hash=request.is_check_hash,
    )
    return batch_response(results)


@router.post("/delete")
async def remove_torrents(request: DeleteTorrentsRequest, gateway: ClientGateway = Depends(get_gateway)):
    return batch_response(await gateway.remove_torrents(request.hashes, delete_data=request.delete_data))


@router.patch("/priority")
async def set_torrents_priority(request: SetTorrentsPriorityRequest, gateway: ClientGateway = Depends(get_gateway)):
    return batch_response(await gateway.set_torrents_priority(request.hashes, request.priority))


@router.patch("/tags")
async def set_torrents_tags(request: SetTorrentsTagsRequest, gateway: ClientGateway = Depends(get_gateway)):
    """Replace the tags of torrents."""
    return batch_response(await gateway.set_torrents_tags(request.hashes, request.tags))


@router.patch("/trackers")
async def set_torrents_trackers(request: SetTorrentsTrackersRequest, gateway: ClientGateway = Depends(get_gateway)):
    """Replace the trackers of torrents."""
    return batch_response(await gateway.set_torrents_trackers(request.hashes, request.trackers))


@router.get("/{info_hash}/contents")
async def get_torrent_contents(info_hash: str, gateway: ClientGateway = Depends(get_gateway)):
    return [c.to_dict() for c in await gateway.get_torrent_contents(info_hash)]


@router.patch("/{info_hash}/contents")
async def set_torrent_contents_priority(
    info_hash: str,
    request: SetTorrentContentsPriorityRequest,
    gateway: ClientGateway = Depends(get_gateway),
):
    await gateway.set_torrent_contents_priority(info_hash, request.indices, request.priority)
    return {"message": "Priority updated"}


@router.get("/{info_hash}/contents/{indices}/data")
async def get_torrent_contents_data(
    info_hash: str,
    indices: str,
    delivery: ContentDelivery = Depends(get_delivery),
):
    """
    Stream the selected files of a torrent.

    indices is a comma-separated list of content indices or "all". One file
    is served inline; several files are served as a tar archive.
    """
    return await delivery.deliver(info_hash, indices)


@router.get("/{info_hash}/details")
async def get_torrent_details(info_hash: str, gateway: ClientGateway = Depends(get_gateway)):
    details = await gateway.get_torrent_details(info_hash)
    return {key: [item.to_dict() for item in items] for key, items in details.items()}


@router.get("/{info_hash}/mediainfo")
async def get_torrent_mediainfo(
    info_hash: str,
    request: Request,
    catalog: TorrentCatalog = Depends(get_catalog),
):
    torrent = catalog.get_torrent(info_hash)
    if torrent is None:
        raise NotFound(f"Torrent {info_hash} not found")
    output = await inspect_torrent(torrent, is_disconnected=request.is_disconnected)
    return {"output": output}


@router.get("/{info_hash}/peers")
async def get_torrent_peers(info_hash: str, gateway: ClientGateway = Depends(get_gateway)):
    return [p.to_dict() for p in await gateway.get_torrent_peers(info_hash)]


@router.get("/{info_hash}/trackers")
async def get_torrent_trackers(info_hash: str, gateway: ClientGateway = Depends(get_gateway)):
    return [t.to_dict() for t in await gateway.get_torrent_trackers(info_hash)]
