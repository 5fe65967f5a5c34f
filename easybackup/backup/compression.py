"""
Zip archive creation for backups.

Archives are written to a temporary ".part" file next to the destination and
renamed into place, so an interrupted write never leaves a file that matches
the archive naming pattern.
"""

import os
import zipfile
from pathlib import Path
from typing import List


PARTIAL_SUFFIX = '.part'


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_zip_archive(source_paths: List[str], archive_path: str) -> str:
    """
    Create a zip archive from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        archive_path: Final path of the archive

    Returns:
        archive_path

    Raises:
        CompressionError: If archive creation fails
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    partial_path = archive_path + PARTIAL_SUFFIX

    try:
        with zipfile.ZipFile(partial_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
            for source_path in source_paths:
                source = Path(source_path)

                if source.is_file():
                    zipf.write(source, source.name)
                elif source.is_dir():
                    _add_directory_to_zip(zipf, source)
                else:
                    raise CompressionError(f"Invalid path type: {source_path}")

        os.replace(partial_path, archive_path)
        return archive_path

    except Exception as e:
        if os.path.exists(partial_path):
            try:
                os.remove(partial_path)
            except OSError:
                pass
        if isinstance(e, CompressionError):
            raise
        raise CompressionError(f"Failed to create archive: {e}")


def _add_directory_to_zip(zipf: zipfile.ZipFile, directory: Path):
    """Recursively add a directory, keeping its own name as the top level."""
    for item in directory.rglob('*'):
        if item.is_file():
            zipf.write(item, item.relative_to(directory.parent))

