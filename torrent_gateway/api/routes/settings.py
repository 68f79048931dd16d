from fastapi import APIRouter, Depends

from torrent_gateway.settings import SettingService, get_setting_service
from ..schemas import SetTorrentDestinationsRequest

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/torrent-destinations")
async def get_torrent_destinations(settings: SettingService = Depends(get_setting_service)):
    """Preferred download directory per tag."""
    return {"torrentDestinations": settings.get_torrent_destinations()}


@router.patch("/torrent-destinations")
async def set_torrent_destinations(
    request: SetTorrentDestinationsRequest,
    settings: SettingService = Depends(get_setting_service),
):
    """
    Replace the preferred destinations. They are checked against the allowed
    paths when a torrent is added, not here.
    """
    return {"torrentDestinations": settings.set_torrent_destinations(request.torrent_destinations)}
