"""
Factory for creating torrent client instances.

Provides a function to create the appropriate client (RTorrentClient,
TransmissionClient or QBittorrentClient) from the connection settings in
the environment. A deployment talks to exactly one daemon.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from .base_client import BaseTorrentClient
from .config import Config
from .qbittorrent_client import QBittorrentClient
from .rtorrent_client import RTorrentClient
from .transmission_client import TransmissionClient


CLIENT_TYPES = ("rtorrent", "transmission", "qbittorrent")


@dataclass
class ConnectionSettings:
    client_type: str
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    rpc_path: Optional[str] = None
    use_ssl: bool = False
    timeout: float = 10

    @classmethod
    def from_config(cls) -> "ConnectionSettings":
        return cls(
            client_type=Config.CLIENT_TYPE,
            host=Config.CLIENT_HOST,
            port=Config.CLIENT_PORT,
            username=Config.CLIENT_USERNAME or None,
            password=Config.CLIENT_PASSWORD or None,
            rpc_path=Config.CLIENT_RPC_PATH or None,
            use_ssl=Config.CLIENT_USE_SSL,
            timeout=Config.CLIENT_TIMEOUT,
        )


def get_client(settings: Optional[ConnectionSettings] = None) -> BaseTorrentClient:
    """
    Create a torrent client instance for the given connection settings.

    Args:
        settings: Connection details, read from Config when omitted

    Returns:
        An instance of RTorrentClient, TransmissionClient or QBittorrentClient

    Raises:
        ValueError: If the client type is not supported
    """
    settings = settings or ConnectionSettings.from_config()
    protocol = "https" if settings.use_ssl else "http"

    if settings.client_type == "rtorrent":
        rpc_path = settings.rpc_path or "/RPC2"

        # Build URL with embedded credentials if provided
        if settings.username and settings.password:
            # URL-encode the password to handle special characters
            encoded_password = quote(settings.password, safe='')
            url = f"{protocol}://{settings.username}:{encoded_password}@{settings.host}:{settings.port}{rpc_path}"
        else:
            url = f"{protocol}://{settings.host}:{settings.port}{rpc_path}"

        return RTorrentClient(url=url, timeout=settings.timeout)

    elif settings.client_type == "transmission":
        return TransmissionClient(
            protocol=protocol,
            host=settings.host,
            port=settings.port,
            path=settings.rpc_path or "/transmission/rpc",
            username=settings.username,
            password=settings.password,
            timeout=settings.timeout,
        )

    elif settings.client_type == "qbittorrent":
        url = f"{protocol}://{settings.host}:{settings.port}{settings.rpc_path or ''}"
        return QBittorrentClient(
            url=url,
            username=settings.username,
            password=settings.password,
            timeout=settings.timeout,
        )

    else:
        raise ValueError(f"Unknown client type: {settings.client_type}")
