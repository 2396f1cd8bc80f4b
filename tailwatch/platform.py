"""
Filesystem identity helpers for Tailwatch.
"""

import os
from pathlib import Path
from typing import IO, Any

from tailwatch.logging_config import get_logger

logger = get_logger(__name__)

Fingerprint = tuple[int, int]


def _fingerprint(stat_info: os.stat_result) -> Fingerprint:
    # On Windows st_ino holds the NTFS file index, so (st_dev, st_ino)
    # identifies a file on every platform Python supports.
    return (stat_info.st_dev, stat_info.st_ino)


def get_file_fingerprint(path: str | Path) -> Fingerprint | None:
    """
    Get a fingerprint for the file currently at a path.

    The fingerprint is stable across renames and changes when a new file
    is created at the same path.

    Args:
        path: The path to the file.

    Returns:
        (device, inode), or None if nothing can be stat'ed at the path.
    """
    try:
        return _fingerprint(os.stat(path))
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("Cannot stat %s: %s", path, e)
        return None


def get_handle_fingerprint(handle: IO[Any]) -> tuple[Fingerprint, int]:
    """
    Get the fingerprint and current size of an open file.

    Args:
        handle: An open file object.

    Returns:
        ((device, inode), size)
    """
    stat_info = os.fstat(handle.fileno())
    return _fingerprint(stat_info), stat_info.st_size


def check_readable(path: str | Path) -> str | None:
    """
    Check whether a path names a readable regular file.

    Returns:
        None if readable, otherwise a short reason.
    """
    path_obj = Path(path)
    if not path_obj.exists():
        return "file not found"
    if not path_obj.is_file():
        return "not a regular file"
    try:
        with path_obj.open("rb"):
            pass
    except OSError as e:
        return e.strerror or str(e)
    return None
