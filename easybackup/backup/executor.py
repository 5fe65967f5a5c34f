"""
Backup executor - runs a complete backup/sync cycle inside the Flask app.

Workflow:
1. Create SyncRun record (status: running)
2. Create a fresh local archive (if requested)
3. Reconcile local archives against remote storage
4. Update SyncRun (status: completed / completed_with_errors / failed)

Only one run may be active per backup directory at a time, across processes.
"""

import os
import json
import fcntl
import logging
from datetime import datetime
from typing import Optional

from flask import current_app

from easybackup import db
from easybackup.models import SyncRun
from easybackup.settings import BackupSettings, NOT_SET
from .compression import CompressionError
from .errors import StorageError, LocalIOError
from .local import LocalArchiveRepository
from .orchestrator import SyncOrchestrator, RunState, Operation
from .sources import SourceError
from .storage import create_object_store


logger = logging.getLogger(__name__)


class RunInProgress(Exception):
    """Raised when a run is requested while another one is active."""
    pass


LOCK_FILENAME = ".easybackup.lock"


class RunLock:
    """
    Exclusive lock on a backup directory, held through a lock file.

    The lock is taken with flock, so it excludes other gunicorn workers and
    other RunLock instances in the same process.
    """

    def __init__(self, directory: str):
        self.path = os.path.join(directory, LOCK_FILENAME)
        self._file = None

    def acquire(self):
        """
        Take the lock without waiting.

        Raises:
            RunInProgress: If another holder has the lock
            LocalIOError: If the lock file cannot be opened
        """
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            lock_file = open(self.path, "a")
        except OSError as e:
            raise LocalIOError(f"Cannot open lock file {self.path}: {e}") from e

        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            raise RunInProgress("A backup run is already in progress")
        except OSError as e:
            lock_file.close()
            raise LocalIOError(f"Cannot lock {self.path}: {e}") from e

        self._file = lock_file

    def release(self):
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


def resolve_backup_dir(settings: BackupSettings, app_config) -> str:
    backup_dir = settings.backup_dir
    if backup_dir == NOT_SET:
        backup_dir = app_config['LOCAL_BACKUP_DIR']
    return backup_dir


def build_local_repository(settings: BackupSettings, app_config) -> LocalArchiveRepository:
    return LocalArchiveRepository(
        resolve_backup_dir(settings, app_config),
        paths=settings.backup_paths(),
        dump_command=settings.dump_command(),
        exclude_patterns=app_config.get('BACKUP_EXCLUDE_PATTERNS')
    )


def build_object_store(settings: BackupSettings, app_config):
    return create_object_store(settings.remote_config(app_config))


class BackupExecutor:
    """
    Orchestrates a backup run and records it as a SyncRun.
    """

    def __init__(self, settings: Optional[BackupSettings] = None, trigger: str = 'manual'):
        """
        Initialize backup executor.

        Args:
            settings: Backup settings; read from the database when omitted
            trigger: What started the run ('manual' or 'scheduled')
        """
        self.settings = settings or BackupSettings()
        self.trigger = trigger
        self.history_record = None
        self.logs = []

    def execute(self, create_archive: bool = False) -> SyncRun:
        """
        Execute the run.

        Args:
            create_archive: Create a new local archive before syncing

        Returns:
            SyncRun record with execution results

        Raises:
            RunInProgress: If another run holds the backup directory
            LocalIOError: If the backup directory cannot be locked
        """
        backup_dir = resolve_backup_dir(self.settings, current_app.config)
        with RunLock(backup_dir):
            return self._execute(create_archive)

    def _execute(self, create_archive: bool) -> SyncRun:
        self.history_record = SyncRun(
            status='running',
            trigger=self.trigger,
            started_at=datetime.utcnow()
        )
        db.session.add(self.history_record)
        db.session.commit()

        self._log(f"Starting backup run (trigger: {self.trigger})")

        try:
            app_config = current_app.config
            local = build_local_repository(self.settings, app_config)
            remote = build_object_store(self.settings, app_config)

            if create_archive:
                self._create_archive(local)

            orchestrator = SyncOrchestrator(
                local,
                remote,
                self.settings.retention_policy(),
                max_workers=app_config.get('SYNC_MAX_WORKERS', 4),
                log=self._collect
            )
            report = orchestrator.run()

            self.history_record.status = report.state.value
            self.history_record.remote_enabled = report.remote_enabled
            self.history_record.uploaded_count = report.count(Operation.UPLOAD)
            self.history_record.deleted_remote_count = report.count(Operation.DELETE_REMOTE)
            self.history_record.deleted_local_count = report.count(Operation.DELETE_LOCAL)

            self.history_record.failures = json.dumps([r.to_dict() for r in report.failures])

            # Archive creation failed but the sync itself ran
            if self.history_record.error_message:
                self.history_record.status = RunState.COMPLETED_WITH_ERRORS.value

        except Exception as e:
            self.history_record.status = 'failed'
            self.history_record.error_message = str(e)
            self._log(f"Backup run failed: {e}")

        finally:
            self.history_record.completed_at = datetime.utcnow()
            self.history_record.logs = '\n'.join(self.logs)
            db.session.commit()

        return self.history_record

    def _create_archive(self, local: LocalArchiveRepository):
        """
        Create a new archive; a failure is recorded and the sync still runs.
        """
        self._log("Creating archive")
        try:
            archive_path = local.create()
        except (StorageError, SourceError, CompressionError) as e:
            self.history_record.error_message = f"Archive creation failed: {e}"
            self._log(self.history_record.error_message)
            return

        self.history_record.archive_name = os.path.basename(archive_path)
        self._log(f"Archive created: {self.history_record.archive_name}")

    def _collect(self, message: str):
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        self._collect(message)
        logger.info(message)


def execute_backup_run(create_archive: bool = False, trigger: str = 'manual') -> SyncRun:
    """
    Execute a backup run with settings from the database.

    Raises:
        RunInProgress: If another run is active
    """
    executor = BackupExecutor(trigger=trigger)
    return executor.execute(create_archive=create_archive)


def fetch_remote_archive(name: str, settings: Optional[BackupSettings] = None) -> str:
    """
    Download a remote archive into the local backup directory.

    Args:
        name: Archive name

    Returns:
        Local path of the fetched archive

    Raises:
        InvalidName: If name does not follow the naming pattern
        NotConfigured: If remote storage is disabled
        ObjectNotFound: If the archive does not exist remotely
        StoreIOError: If the download fails
        LocalIOError: If the archive cannot be written locally
    """
    settings = settings or BackupSettings()
    app_config = current_app.config

    local = build_local_repository(settings, app_config)
    local.path_for(name)
    remote = build_object_store(settings, app_config)

    data = remote.download(name)
    path = local.store(name, data)
    logger.info(f"Fetched remote archive {name} ({len(data)} bytes)")
    return path
