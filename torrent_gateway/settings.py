"""
User settings consulted by the destination resolver.

Only one setting exists: torrentDestinations, a mapping from tag to the
preferred download directory for torrents added with that tag.
"""

import datetime
from typing import Dict, Optional

from peewee import CharField, DateTimeField, Model

from .dbs import sdb as db
from .logger import logger


class BaseModel(Model):
    class Meta:
        database = db


class TorrentDestination(BaseModel):
    tag = CharField(primary_key=True)
    destination = CharField()
    updated_at = DateTimeField(default=datetime.datetime.now)


class SettingService:
    def __init__(self):
        TorrentDestination.create_table(safe=True)

    def get_torrent_destinations(self) -> Dict[str, str]:
        return {row.tag: row.destination for row in TorrentDestination.select()}

    def get_torrent_destination(self, tag: str) -> Optional[str]:
        row = TorrentDestination.get_or_none(TorrentDestination.tag == tag)
        return row.destination if row else None

    def set_torrent_destination(self, tag: str, destination: str) -> None:
        (TorrentDestination
         .insert(tag=tag, destination=destination, updated_at=datetime.datetime.now())
         .on_conflict_replace()
         .execute())
        logger.info(f"Preferred destination for tag '{tag}' set to {destination}")

    def remove_torrent_destination(self, tag: str) -> bool:
        return TorrentDestination.delete().where(TorrentDestination.tag == tag).execute() > 0

    def set_torrent_destinations(self, destinations: Dict[str, str]) -> Dict[str, str]:
        """Replace every preferred destination with the given mapping."""
        with TorrentDestination._meta.database.atomic():
            TorrentDestination.delete().execute()
            for tag, destination in destinations.items():
                self.set_torrent_destination(tag, destination)
        return self.get_torrent_destinations()


# Global settings service instance
_service: Optional[SettingService] = None


def get_setting_service() -> SettingService:
    """Get the global settings service, creating its table if needed."""
    global _service
    if _service is None:
        _service = SettingService()
    return _service
