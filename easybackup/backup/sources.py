"""
Source handlers for backup archives.

Supports:
- LocalSource: Copy configured files/directories into a staging directory
- DatabaseDumpSource: Run the configured dump command and capture its output
"""

import os
import re
import shlex
import shutil
import logging
import subprocess
from pathlib import Path
from typing import List, Optional
from fnmatch import fnmatch


logger = logging.getLogger(__name__)

DUMP_FILENAME = 'database_dump.sql'
DEFAULT_DUMP_TIMEOUT = 3600


class SourceError(Exception):
    """Raised when source acquisition fails."""
    pass


def split_paths(value: Optional[str]) -> List[str]:
    """
    Split a colon/semicolon-delimited path list.

    Empty entries are dropped.
    """
    if not value:
        return []
    return [p.strip() for p in re.split(r'[:;]', value) if p.strip()]


class LocalSource:
    """
    Handler for local filesystem sources.

    Copies files/directories from the local filesystem to a staging directory
    for archiving.
    """

    def __init__(self, paths: List[str], exclude_patterns: List[str] = None):
        """
        Initialize local source handler.

        Args:
            paths: List of file/directory paths to backup
            exclude_patterns: List of glob patterns to exclude (e.g., *.pyc, __pycache__)
        """
        self.paths = paths
        self.exclude_patterns = exclude_patterns or []

    def _should_exclude(self, path: Path) -> bool:
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            # Match against full path or just the name
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def acquire(self, staging_dir: str) -> List[str]:
        """
        Copy source files to staging directory.

        Args:
            staging_dir: Directory to copy files into

        Returns:
            List of paths in staging_dir that were copied

        Raises:
            SourceError: If any path cannot be accessed
        """
        acquired_paths = []

        for path in self.paths:
            source_path = Path(path).expanduser().resolve()

            if not source_path.exists():
                raise SourceError(f"Path does not exist: {path}")

            dest_path = Path(staging_dir) / source_path.name

            try:
                if source_path.is_file():
                    if not self._should_exclude(source_path):
                        shutil.copy2(source_path, dest_path)
                        acquired_paths.append(str(dest_path))
                elif source_path.is_dir():
                    def ignore_patterns(directory, files):
                        return [
                            name for name in files
                            if self._should_exclude(Path(directory) / name)
                        ]

                    shutil.copytree(source_path, dest_path, symlinks=False, ignore=ignore_patterns)
                    acquired_paths.append(str(dest_path))
                else:
                    raise SourceError(f"Unsupported path type: {path}")
            except SourceError:
                raise
            except PermissionError as e:
                raise SourceError(f"Permission denied accessing {path}: {e}")
            except Exception as e:
                raise SourceError(f"Failed to copy {path}: {e}")

        return acquired_paths


class DatabaseDumpSource:
    """
    Handler for database dumps.

    Runs the configured dump command (e.g. mysqldump) and writes its standard
    output to a SQL file in the staging directory.
    """

    def __init__(self, command: str, timeout: float = DEFAULT_DUMP_TIMEOUT):
        self.command = command
        self.timeout = timeout

    def acquire(self, staging_dir: str) -> List[str]:
        """
        Run the dump command.

        Returns:
            Single-element list with the dump file path

        Raises:
            SourceError: If the command cannot be run or exits non-zero
        """
        dump_path = os.path.join(staging_dir, DUMP_FILENAME)

        try:
            args = shlex.split(self.command)
        except ValueError as e:
            raise SourceError(f"Invalid dump command: {e}")

        if not args:
            raise SourceError("Dump command is empty")

        logger.info(f"Running database dump: {args[0]}")

        try:
            with open(dump_path, 'wb') as out:
                result = subprocess.run(
                    args,
                    stdout=out,
                    stderr=subprocess.PIPE,
                    timeout=self.timeout,
                    check=False
                )
        except FileNotFoundError:
            raise SourceError(f"Dump command not found: {args[0]}")
        except subprocess.TimeoutExpired:
            raise SourceError(f"Dump command timed out after {self.timeout}s")
        except OSError as e:
            raise SourceError(f"Failed to run dump command: {e}")

        if result.returncode != 0:
            stderr = result.stderr.decode('utf-8', errors='replace').strip()
            raise SourceError(f"Dump command failed (exit {result.returncode}): {stderr}")

        return [dump_path]


def create_sources(paths: List[str], dump_command: Optional[str] = None,
                   exclude_patterns: List[str] = None) -> list:
    """
    Build the source handlers for one archive.

    Args:
        paths: Filesystem paths to include
        dump_command: Database dump command, or None to skip the dump
        exclude_patterns: Glob patterns to exclude from filesystem paths

    Returns:
        List of source handlers
    """
    sources = []
    if dump_command:
        sources.append(DatabaseDumpSource(dump_command))
    if paths:
        sources.append(LocalSource(paths, exclude_patterns))
    return sources
