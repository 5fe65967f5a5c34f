"""
Unit tests for backup executor (easybackup/backup/executor.py).

Tests BackupExecutor runs end to end against a temporary backup directory
and a moto-mocked bucket, plus fetching remote archives.
"""

import os
from unittest.mock import patch

import boto3
import pytest

from easybackup.backup.archive import is_archive_name
from easybackup.backup.errors import StoreIOError, InvalidName, NotConfigured, ObjectNotFound, LocalIOError
from easybackup.backup.executor import (
    BackupExecutor,
    RunInProgress,
    RunLock,
    execute_backup_run,
    fetch_remote_archive
)
from easybackup.backup.local import LocalArchiveRepository
from easybackup.models import SyncRun


BUCKET = 'test-bucket'
PREFIX = 'backups/'
NAMES = [f"2024-03-0{d}_120000.zip" for d in range(1, 5)]


@pytest.fixture
def populated_dir(backup_dir, make_archive, archive_mtime):
    for name in NAMES:
        make_archive(backup_dir, name, mtime=archive_mtime(name))
    return backup_dir


def _archive_files(directory):
    return sorted(n for n in os.listdir(directory) if is_archive_name(n))


def _bucket_names():
    s3 = boto3.client('s3', region_name='us-east-1')
    response = s3.list_objects_v2(Bucket=BUCKET, Prefix=PREFIX)
    return sorted(obj['Key'][len(PREFIX):] for obj in response.get('Contents', []))


class TestBackupExecutor:
    """Test BackupExecutor runs."""

    def test_executor_initialization(self, db, configure_settings):
        settings = configure_settings()

        executor = BackupExecutor(settings, trigger='scheduled')

        assert executor.settings is settings
        assert executor.trigger == 'scheduled'
        assert executor.history_record is None
        assert executor.logs == []

    def test_local_only_run(self, db, configure_settings, populated_dir):
        settings = configure_settings(backup_dir=populated_dir, backup_amount_max=2)

        run = BackupExecutor(settings).execute()

        assert run.status == 'completed'
        assert run.remote_enabled is False
        assert run.uploaded_count == 0
        assert run.deleted_local_count == 2
        assert run.completed_at is not None
        assert "Remote storage disabled" in run.logs
        assert _archive_files(populated_dir) == NAMES[2:]
        assert db.session.get(SyncRun, run.id).status == 'completed'

    def test_sync_run_uploads_and_prunes(self, s3_app, db, configure_settings, populated_dir):
        settings = configure_settings(
            backup_dir=populated_dir,
            backup_amount_max=3,
            s3_path='/backups/'
        )

        run = BackupExecutor(settings).execute()

        assert run.status == 'completed'
        assert run.remote_enabled is True
        assert run.uploaded_count == 4
        assert run.deleted_remote_count == 1
        assert run.deleted_local_count == 1
        assert run.failure_list() == []
        assert _bucket_names() == NAMES[1:]

    def test_run_creates_archive_first(self, s3_app, db, configure_settings, backup_dir, temp_files):
        settings = configure_settings(
            backup_dir=backup_dir,
            paths_to_backup=f"{temp_files / 'data'}:{temp_files / 'config.ini'}",
            s3_path='backups'
        )

        run = BackupExecutor(settings).execute(create_archive=True)

        assert run.status == 'completed'
        assert is_archive_name(run.archive_name)
        assert _archive_files(backup_dir) == [run.archive_name]
        assert _bucket_names() == [run.archive_name]
        assert f"Archive created: {run.archive_name}" in run.logs

    def test_archive_failure_still_syncs(self, s3_app, db, configure_settings, populated_dir, tmp_path):
        settings = configure_settings(
            backup_dir=populated_dir,
            paths_to_backup=str(tmp_path / 'missing'),
            s3_path='backups'
        )

        run = BackupExecutor(settings).execute(create_archive=True)

        assert run.status == 'completed_with_errors'
        assert run.error_message.startswith("Archive creation failed")
        assert run.archive_name is None
        assert run.uploaded_count == 4
        assert _archive_files(populated_dir) == NAMES

    def test_nothing_to_archive(self, db, configure_settings, backup_dir):
        settings = configure_settings(backup_dir=backup_dir)

        run = BackupExecutor(settings).execute(create_archive=True)

        assert run.status == 'completed_with_errors'
        assert "Nothing to back up" in run.error_message

    def test_upload_failures_recorded(self, s3_app, db, configure_settings, populated_dir):
        settings = configure_settings(backup_dir=populated_dir, s3_path='backups')

        with patch('easybackup.backup.storage.S3ObjectStore.upload',
                   side_effect=StoreIOError("connection reset")):
            run = BackupExecutor(settings).execute()

        assert run.status == 'completed_with_errors'
        assert run.uploaded_count == 0
        failures = run.failure_list()
        assert len(failures) == 4
        assert {f['error_kind'] for f in failures} == {'StoreIOError'}
        assert {f['operation'] for f in failures} == {'upload'}
        assert failures[0]['message'] == "connection reset"

    def test_unexpected_error_marks_run_failed(self, db, configure_settings, populated_dir):
        settings = configure_settings(backup_dir=populated_dir)

        with patch('easybackup.backup.executor.SyncOrchestrator') as mock_orchestrator:
            mock_orchestrator.return_value.run.side_effect = RuntimeError("Unexpected error")
            run = BackupExecutor(settings).execute()

        assert run.status == 'failed'
        assert run.error_message == "Unexpected error"
        assert run.completed_at is not None
        assert "Backup run failed" in run.logs

    def test_backup_dir_not_set_uses_app_default(self, app, db, configure_settings):
        settings = configure_settings()

        run = BackupExecutor(settings).execute()

        assert run.status == 'completed'
        assert os.path.isdir(app.config['LOCAL_BACKUP_DIR'])

    def test_concurrent_run_rejected(self, db, configure_settings, backup_dir):
        settings = configure_settings(backup_dir=backup_dir)

        with RunLock(str(backup_dir)):
            with pytest.raises(RunInProgress):
                BackupExecutor(settings).execute()

        assert SyncRun.query.count() == 0

    def test_lock_released_after_run(self, db, configure_settings, backup_dir):
        settings = configure_settings(backup_dir=backup_dir)

        BackupExecutor(settings).execute()
        BackupExecutor(settings).execute()

        assert SyncRun.query.count() == 2
        with RunLock(str(backup_dir)):
            pass

    def test_lock_released_after_failed_run(self, db, configure_settings, populated_dir):
        settings = configure_settings(backup_dir=populated_dir)

        with patch('easybackup.backup.executor.SyncOrchestrator') as mock_orchestrator:
            mock_orchestrator.return_value.run.side_effect = RuntimeError("boom")
            BackupExecutor(settings).execute()

        assert BackupExecutor(settings).execute().status == 'completed'

    def test_execute_backup_run_reads_database_settings(self, db, configure_settings, populated_dir):
        configure_settings(backup_dir=populated_dir, backup_amount_max=1)

        run = execute_backup_run(trigger='scheduled')

        assert run.trigger == 'scheduled'
        assert run.deleted_local_count == 3


class TestRunLock:
    """Test the backup directory lock."""

    def test_second_holder_rejected(self, backup_dir):
        with RunLock(str(backup_dir)):
            with pytest.raises(RunInProgress):
                RunLock(str(backup_dir)).acquire()

    def test_reacquire_after_release(self, backup_dir):
        lock = RunLock(str(backup_dir))
        lock.acquire()
        lock.release()

        with RunLock(str(backup_dir)):
            pass

    def test_release_without_acquire(self, backup_dir):
        RunLock(str(backup_dir)).release()

    def test_creates_missing_directory(self, tmp_path):
        directory = tmp_path / "new" / "backups"

        with RunLock(str(directory)) as lock:
            assert os.path.exists(lock.path)

    def test_lock_file_ignored_by_listing(self, backup_dir, make_archive):
        make_archive(backup_dir, NAMES[0])

        with RunLock(str(backup_dir)):
            assert [a.name for a in LocalArchiveRepository(str(backup_dir)).list()] == [NAMES[0]]

    def test_unopenable_lock_file(self, backup_dir):
        with patch('builtins.open', side_effect=PermissionError("denied")):
            with pytest.raises(LocalIOError):
                RunLock(str(backup_dir)).acquire()


class TestFetchRemoteArchive:
    """Test downloading remote archives into the backup directory."""

    def test_fetch(self, s3_app, db, configure_settings, backup_dir, mock_s3, archive_mtime):
        name = NAMES[0]
        mock_s3.Object(BUCKET, f"{PREFIX}{name}").put(Body=b"remote payload")
        settings = configure_settings(backup_dir=backup_dir, s3_path='backups')

        path = fetch_remote_archive(name, settings)

        assert path == str(backup_dir / name)
        with open(path, 'rb') as f:
            assert f.read() == b"remote payload"
        assert int(os.path.getmtime(path)) == archive_mtime(name)

    def test_fetch_missing(self, s3_app, db, configure_settings, backup_dir):
        settings = configure_settings(backup_dir=backup_dir, s3_path='backups')

        with pytest.raises(ObjectNotFound):
            fetch_remote_archive(NAMES[0], settings)

        assert os.listdir(backup_dir) == []

    def test_fetch_invalid_name(self, s3_app, db, configure_settings, backup_dir):
        settings = configure_settings(backup_dir=backup_dir, s3_path='backups')

        with pytest.raises(InvalidName):
            fetch_remote_archive('../../etc/passwd', settings)

    def test_fetch_not_configured(self, db, configure_settings, backup_dir):
        settings = configure_settings(backup_dir=backup_dir)

        with pytest.raises(NotConfigured):
            fetch_remote_archive(NAMES[0], settings)
