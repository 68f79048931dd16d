from fastapi import Depends

from torrent_gateway.delivery import ContentDelivery
from torrent_gateway.destination import DestinationResolver
from torrent_gateway.gateway import ClientGateway, get_gateway
from torrent_gateway.polling import TorrentCatalog, get_catalog
from torrent_gateway.settings import SettingService, get_setting_service


def get_resolver(
    gateway: ClientGateway = Depends(get_gateway),
    settings: SettingService = Depends(get_setting_service),
) -> DestinationResolver:
    return DestinationResolver(gateway, settings)


def get_delivery(
    gateway: ClientGateway = Depends(get_gateway),
    catalog: TorrentCatalog = Depends(get_catalog),
) -> ContentDelivery:
    return ContentDelivery(gateway, catalog)
