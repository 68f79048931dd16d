"""
Canonical torrent model shared by every backend adapter.

Adapters decode their daemon's answers into these shapes so the gateway,
the catalog cache and the HTTP layer never see a daemon-specific field.
Priorities use the 0/1/2 scale (off/normal/high) and paths are posix-style.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Union


class TorrentStatus(str, Enum):
    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    STOPPED = "stopped"
    CHECKING = "checking"
    ERROR = "error"


class Priority(IntEnum):
    OFF = 0
    NORMAL = 1
    HIGH = 2

    @classmethod
    def coerce(cls, value: Union["Priority", int, str]) -> "Priority":
        """Accept a Priority, its integer value or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            if name in cls.__members__:
                return cls[name]
            if name.isdigit():
                return cls(int(name))
            raise ValueError(f"Unknown priority: {value!r}")
        return cls(value)


@dataclass
class TorrentTracker:
    url: str
    tier: int = 0
    status: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "tier": self.tier, "status": self.status}


@dataclass
class Torrent:
    hash: str
    name: str
    directory: str
    status: TorrentStatus
    size: int = 0
    progress: float = 0.0
    tags: List[str] = field(default_factory=list)
    trackers: List[str] = field(default_factory=list)
    date_created: Optional[int] = None
    date_added: Optional[int] = None
    download_rate: int = 0
    upload_rate: int = 0
    ratio: float = 0.0
    message: str = ""

    @property
    def is_active(self) -> bool:
        return self.status in (TorrentStatus.DOWNLOADING, TorrentStatus.SEEDING)

    @property
    def is_complete(self) -> bool:
        return self.progress >= 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "name": self.name,
            "directory": self.directory,
            "status": self.status.value,
            "sizeBytes": self.size,
            "percentComplete": round(self.progress * 100, 2),
            "tags": list(self.tags),
            "trackerURIs": list(self.trackers),
            "dateCreated": self.date_created,
            "dateAdded": self.date_added,
            "downRate": self.download_rate,
            "upRate": self.upload_rate,
            "ratio": self.ratio,
            "message": self.message,
        }


@dataclass
class TorrentContent:
    """A single file of a torrent; index is assigned by the daemon."""
    index: int
    path: str
    size: int
    priority: Priority = Priority.NORMAL
    bytes_completed: int = 0

    @property
    def filename(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def progress(self) -> float:
        return self.bytes_completed / self.size if self.size > 0 else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "path": self.path,
            "filename": self.filename,
            "sizeBytes": self.size,
            "priority": int(self.priority),
            "percentComplete": round(self.progress * 100, 2),
        }


@dataclass
class TorrentPeer:
    address: str
    client_version: str = ""
    download_rate: int = 0
    upload_rate: int = 0
    progress: float = 0.0
    is_encrypted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "clientVersion": self.client_version,
            "downloadRate": self.download_rate,
            "uploadRate": self.upload_rate,
            "completedPercent": round(self.progress * 100, 2),
            "isEncrypted": self.is_encrypted,
        }


@dataclass
class ClientSettings:
    directory_default: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"directoryDefault": self.directory_default}


@dataclass
class ItemResult:
    """Outcome of one item (hash, URL or file) inside a batch operation."""
    item: str
    success: bool = True
    code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def failed(cls, item: str, error: Exception) -> "ItemResult":
        return cls(
            item=item,
            success=False,
            code=getattr(error, "code", "EINTERNAL"),
            message=str(error),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"item": self.item, "success": self.success}
        if not self.success:
            data["code"] = self.code
            data["message"] = self.message
        return data
