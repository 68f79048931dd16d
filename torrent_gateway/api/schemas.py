from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request body accepting camelCase keys (snake_case works too)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AddTorrentsByURLRequest(CamelModel):
    urls: List[str] = Field(..., min_length=1)
    cookies: Optional[Dict[str, List[str]]] = None  # Cookie strings keyed by domain
    destination: Optional[str] = None
    tags: List[str] = []
    is_base_path: bool = False
    is_completed: bool = False
    start: bool = False


class AddTorrentsByFileRequest(CamelModel):
    files: List[str] = Field(..., min_length=1)  # Base64-encoded .torrent payloads
    destination: Optional[str] = None
    tags: List[str] = []
    is_base_path: bool = False
    is_completed: bool = False
    start: bool = False


class CreateTorrentRequest(CamelModel):
    source_path: str
    trackers: List[str] = []
    name: Optional[str] = None
    comment: Optional[str] = None
    info_source: Optional[str] = None
    is_private: bool = False
    tags: List[str] = []
    start: bool = False


class TorrentHashesRequest(CamelModel):
    hashes: List[str]


class DeleteTorrentsRequest(TorrentHashesRequest):
    delete_data: bool = False


class MoveTorrentsRequest(TorrentHashesRequest):
    destination: str
    move_files: bool = True
    is_base_path: bool = False
    is_check_hash: bool = False


class SetTorrentsPriorityRequest(TorrentHashesRequest):
    priority: Union[int, str]  # 0/1/2 or off/normal/high


class SetTorrentsTagsRequest(TorrentHashesRequest):
    tags: List[str]


class SetTorrentsTrackersRequest(TorrentHashesRequest):
    trackers: List[str]


class SetTorrentContentsPriorityRequest(CamelModel):
    indices: List[int]
    priority: Union[int, str]


class SetTorrentDestinationsRequest(CamelModel):
    torrent_destinations: Dict[str, str]  # tag -> directory
