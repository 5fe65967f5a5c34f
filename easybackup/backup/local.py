"""
Local archive repository.

Archives live flat in one backup directory:
{backup_dir}/YYYY-MM-DD_HHMMSS.zip
"""

import os
import shutil
import logging
import tempfile
from pathlib import Path
from typing import List, Optional

from .archive import (
    Archive,
    Location,
    archive_timestamp,
    generate_archive_name,
    is_archive_name,
    newest_first,
    validate_archive_name
)
from .compression import create_zip_archive, PARTIAL_SUFFIX
from .errors import LocalIOError
from .sources import create_sources


logger = logging.getLogger(__name__)


class LocalArchiveRepository:
    """
    Handler for archives in the local backup directory.

    Only files matching the archive naming pattern are considered; anything
    else in the directory is left alone.
    """

    def __init__(self, backup_dir: str, paths: Optional[List[str]] = None,
                 dump_command: Optional[str] = None, exclude_patterns: Optional[List[str]] = None):
        """
        Initialize local repository.

        Args:
            backup_dir: Directory holding the archives
            paths: Filesystem paths included in new archives
            dump_command: Database dump command included in new archives
            exclude_patterns: Glob patterns excluded from filesystem paths

        Raises:
            LocalIOError: If the backup directory cannot be created
        """
        self.base_path = Path(backup_dir)
        self.paths = paths or []
        self.dump_command = dump_command
        self.exclude_patterns = exclude_patterns or []

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(f"Failed to create backup directory {self.base_path}: {e}")

    def path_for(self, name: str) -> str:
        validate_archive_name(name)
        return str(self.base_path / name)

    def exists(self, name: str) -> bool:
        return is_archive_name(name) and (self.base_path / name).is_file()

    def list(self) -> List[Archive]:
        """
        List archives in the backup directory.

        Returns:
            Archives sorted newest first

        Raises:
            LocalIOError: If the directory cannot be read
        """
        try:
            archives = []

            with os.scandir(self.base_path) as entries:
                for entry in entries:
                    if not entry.is_file() or not is_archive_name(entry.name):
                        continue

                    stat = entry.stat()
                    archives.append(Archive(
                        name=entry.name,
                        size_bytes=stat.st_size,
                        modified_at=int(stat.st_mtime),
                        location=Location.LOCAL
                    ))

            return newest_first(archives)

        except OSError as e:
            raise LocalIOError(f"Failed to list local archives: {e}")

    def create(self, name: Optional[str] = None) -> str:
        """
        Create a new archive from the configured sources.

        Args:
            name: Archive name; generated from the current time if omitted

        Returns:
            Full path of the created archive

        Raises:
            InvalidName: If name does not follow the naming pattern
            LocalIOError: If an archive with that name already exists
            SourceError: If a source cannot be acquired
            CompressionError: If the archive cannot be written
        """
        name = validate_archive_name(name or generate_archive_name())
        archive_path = self.path_for(name)

        if os.path.exists(archive_path):
            raise LocalIOError(f"Archive already exists: {name}")

        sources = create_sources(self.paths, self.dump_command, self.exclude_patterns)
        if not sources:
            raise LocalIOError("Nothing to back up: no paths or dump command configured")

        staging_dir = tempfile.mkdtemp(prefix='easybackup_')
        try:
            acquired = []
            for source in sources:
                acquired.extend(source.acquire(staging_dir))

            create_zip_archive(acquired, archive_path)
            logger.info(f"Created archive {name} ({len(acquired)} items)")
            return archive_path
        finally:
            shutil.rmtree(staging_dir, ignore_errors=True)

    def store(self, name: str, data: bytes, modified_at: Optional[int] = None) -> str:
        """
        Write archive contents (e.g. downloaded from remote) under name.

        The file mtime is set to modified_at, or to the time embedded in the
        name, so a fetched archive keeps its place in retention order.

        Returns:
            Full path of the stored archive

        Raises:
            InvalidName: If name does not follow the naming pattern
            LocalIOError: If the file cannot be written
        """
        archive_path = self.path_for(name)
        partial_path = archive_path + PARTIAL_SUFFIX
        if modified_at is None:
            modified_at = archive_timestamp(name)

        try:
            with open(partial_path, 'wb') as f:
                f.write(data)
            os.utime(partial_path, (modified_at, modified_at))
            os.replace(partial_path, archive_path)
            return archive_path
        except OSError as e:
            if os.path.exists(partial_path):
                os.remove(partial_path)
            raise LocalIOError(f"Failed to store archive {name}: {e}")

    def delete(self, name: str):
        """
        Delete an archive. A missing archive is not an error.

        Raises:
            LocalIOError: If deletion fails
        """
        full_path = Path(self.path_for(name))

        try:
            full_path.unlink()
        except FileNotFoundError:
            logger.debug(f"Local archive already absent: {name}")
        except PermissionError as e:
            raise LocalIOError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise LocalIOError(f"Failed to delete local archive {name}: {e}")
