"""
Filesystem boundary helpers.

sanitize_path() turns user- or daemon-supplied paths into absolute, normalized
paths; is_allowed_path() checks them against the configured allow-list.
The process-owned temporary directory is always inside the boundary.
"""

import os
import re
from typing import Iterable, List, Optional

from .config import Config


CONTROL_CHARS = re.compile(r"[\x00-\x1f\x80-\x9f]")


def sanitize_path(path) -> str:
    """
    Expand ~, strip control characters and resolve . and .. segments.

    Raises:
        ValueError: If path is not a non-empty string
    """
    if not isinstance(path, str) or not path.strip():
        raise ValueError("Path must be a non-empty string")
    cleaned = CONTROL_CHARS.sub("", path)
    return os.path.abspath(os.path.expanduser(cleaned))


def get_temp_path(*parts: str) -> str:
    """Return a path inside the process temporary directory, creating the directory."""
    root = os.path.abspath(Config.TEMP_PATH)
    os.makedirs(root, exist_ok=True)
    if not parts:
        return root
    path = os.path.join(root, *parts)
    if path.endswith(os.sep):
        os.makedirs(path, exist_ok=True)
    return path


def allowed_roots(allowed_paths: Optional[Iterable[str]] = None) -> List[str]:
    """Resolved allow-list roots; an empty list means every path is allowed."""
    paths = list(Config.ALLOWED_PATHS if allowed_paths is None else allowed_paths)
    if not paths:
        return []
    paths.append(Config.TEMP_PATH)
    return [os.path.realpath(os.path.expanduser(p)) for p in paths]


def is_within(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Different drives or a mix of absolute and relative paths
        return False


def is_allowed_path(path: str, allowed_paths: Optional[Iterable[str]] = None) -> bool:
    """
    Check that path resolves (symlinks included) under one of the allowed roots.
    """
    roots = allowed_roots(allowed_paths)
    if not roots:
        return True
    real = os.path.realpath(path)
    return any(is_within(real, root) for root in roots)
