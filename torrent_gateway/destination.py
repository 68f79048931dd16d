"""
Destination resolution for added and created torrents.

The first non-empty candidate wins:
1. the destination given with the request
2. the preferred destination for the request's first tag
3. the daemon's default download directory
4. a process-owned temporary download directory

The winning candidate is sanitized and checked against the allow-list.
If that fails the result is denied (None); resolution never falls through
to the next candidate after a non-empty one was rejected.
"""

from typing import Iterable, List, Optional

from peewee import PeeweeException

from .errors import AccessDenied, GatewayError
from .gateway import ClientGateway
from .logger import logger
from .paths import get_temp_path, is_allowed_path, sanitize_path
from .settings import SettingService


class DestinationResolver:
    def __init__(
        self,
        gateway: ClientGateway,
        settings: SettingService,
        allowed_paths: Optional[Iterable[str]] = None,
    ):
        self.gateway = gateway
        self.settings = settings
        self.allowed_paths = allowed_paths

    def validate(self, path: Optional[str]) -> Optional[str]:
        """Sanitized path if it lies inside the allow-list, None otherwise."""
        try:
            sanitized = sanitize_path(path)
        except ValueError as e:
            logger.warning(f"Rejected destination {path!r}: {e}")
            return None
        if not is_allowed_path(sanitized, self.allowed_paths):
            logger.warning(f"Destination outside allowed paths: {sanitized}")
            return None
        return sanitized

    async def _candidate(self, destination: Optional[str], tags: List[str]) -> str:
        if destination:
            return destination

        tag = tags[0].strip() if tags else ""
        if tag:
            try:
                preferred = self.settings.get_torrent_destination(tag)
            except PeeweeException as e:
                logger.error(f"Failed to read preferred destination for tag '{tag}': {e}")
                preferred = None
            if preferred:
                return preferred

        try:
            settings = await self.gateway.get_client_settings()
            if settings.directory_default:
                return settings.directory_default
        except GatewayError as e:
            logger.warning(f"Could not read default directory from {self.gateway.client.name}: {e}")

        return get_temp_path("download/")

    async def resolve(self, destination: Optional[str] = None, tags: Optional[List[str]] = None) -> Optional[str]:
        """Resolve the directory for a new torrent, or None if it is denied."""
        return self.validate(await self._candidate(destination, tags or []))

    async def require(self, destination: Optional[str] = None, tags: Optional[List[str]] = None) -> str:
        """Like resolve(), but raises AccessDenied instead of returning None."""
        resolved = await self.resolve(destination, tags)
        if resolved is None:
            raise AccessDenied()
        return resolved
