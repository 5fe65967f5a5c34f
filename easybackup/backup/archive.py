"""
Backup archive model and naming convention.

Archives are flat files named after their creation time:
YYYY-MM-DD_HHMMSS.zip
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .errors import InvalidName


ARCHIVE_NAME_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}_\d{6}\.zip$')
ARCHIVE_TIME_FORMAT = '%Y-%m-%d_%H%M%S'
ARCHIVE_EXTENSION = 'zip'

BYTES_PER_MB = 1048576


class Location(str, Enum):
    LOCAL = 'local'
    REMOTE = 'remote'
    BOTH = 'both'


@dataclass(frozen=True)
class Archive:
    """One backup artifact as seen in a single listing."""

    name: str
    size_bytes: int
    modified_at: int
    location: Location = Location.LOCAL

    @property
    def size_mb(self) -> float:
        return round(self.size_bytes / BYTES_PER_MB, 3)

    @property
    def sort_key(self):
        # Names embed the timestamp, so they break mtime ties in the same order
        return (self.modified_at, self.name)

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'size_mb': self.size_mb,
            'modified_at': self.modified_at,
            'location': self.location.value
        }


def is_archive_name(name: str) -> bool:
    """Check whether a basename follows the archive naming pattern."""
    return bool(name) and ARCHIVE_NAME_PATTERN.match(name) is not None


def validate_archive_name(name: str) -> str:
    """
    Validate an archive name.

    Args:
        name: Candidate archive basename

    Returns:
        The name unchanged

    Raises:
        InvalidName: If the name does not match YYYY-MM-DD_HHMMSS.zip
    """
    if not is_archive_name(name):
        raise InvalidName(f"Invalid archive name: {name!r}")
    return name


def generate_archive_name(now: Optional[datetime] = None) -> str:
    """
    Generate an archive filename for the given moment.

    Format: YYYY-MM-DD_HHMMSS.zip
    """
    now = now or datetime.now()
    return f"{now.strftime(ARCHIVE_TIME_FORMAT)}.{ARCHIVE_EXTENSION}"


def archive_timestamp(name: str) -> int:
    """
    Unix time embedded in an archive name, read as local time.

    Raises:
        InvalidName: If the name does not match YYYY-MM-DD_HHMMSS.zip
    """
    validate_archive_name(name)
    stem = name[:-len(ARCHIVE_EXTENSION) - 1]
    try:
        return int(datetime.strptime(stem, ARCHIVE_TIME_FORMAT).timestamp())
    except ValueError as e:
        raise InvalidName(f"Invalid archive timestamp in {name!r}: {e}")


def newest_first(archives: Iterable[Archive]) -> List[Archive]:
    """Sort archives by modification time descending, name breaking ties."""
    return sorted(archives, key=lambda a: a.sort_key, reverse=True)


def dedupe_by_name(archives: Iterable[Archive]) -> List[Archive]:
    """
    Drop invalid names and duplicate names, keeping the newest entry per name.

    Returns:
        Archives sorted newest first
    """
    seen = set()
    unique = []
    for archive in newest_first(archives):
        if archive.name in seen or not is_archive_name(archive.name):
            continue
        seen.add(archive.name)
        unique.append(archive)
    return unique


def merge_locations(local: Iterable[Archive], remote: Iterable[Archive]) -> List[Archive]:
    """
    Combine local and remote listings into one view.

    Archives present on both sides are reported once with Location.BOTH,
    using the local size and mtime.
    """
    merged = {a.name: a for a in dedupe_by_name(remote)}
    for archive in dedupe_by_name(local):
        if archive.name in merged:
            merged[archive.name] = replace(archive, location=Location.BOTH)
        else:
            merged[archive.name] = archive
    return newest_first(merged.values())
