"""
Shared pytest fixtures for EasyBackup tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Mock S3 bucket (moto) and remote configuration
- Local backup directories populated with dated archives
- Backup settings stored in the settings table
"""

import os
import zipfile
from datetime import datetime

import pytest
import boto3
from moto import mock_aws

from easybackup import create_app, db as _db
from easybackup.backup.storage import RemoteConfig, S3ObjectStore
from easybackup.settings import BackupSettings, DatabaseSettingsStore, SETTING_KEYS


BUCKET = 'test-bucket'
PREFIX = 'backups/'


def write_archive(directory, name: str, mtime: int = None, content: bytes = b'archive data') -> str:
    """Write an archive file into directory, optionally setting its mtime."""
    path = os.path.join(str(directory), name)
    with open(path, 'wb') as f:
        f.write(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def mtime_from_name(name: str) -> int:
    return int(datetime.strptime(name[:-4], '%Y-%m-%d_%H%M%S').timestamp())


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database and a temporary backup directory.
    """
    app = create_app('testing')
    app.config.update({
        'LOCAL_BACKUP_DIR': str(tmp_path / 'backups'),
    })
    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Database with all tables inside an app context.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app, db):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def aws_credentials(monkeypatch):
    """Dummy AWS credentials so botocore never looks for real ones."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket=BUCKET)
        yield s3


@pytest.fixture
def remote_config():
    return RemoteConfig(
        access_key='test_access_key',
        secret_key='test_secret_key',
        bucket=BUCKET,
        path_prefix=PREFIX,
        timeout=5
    )


@pytest.fixture
def s3_store(mock_s3, remote_config):
    """S3ObjectStore bound to the mocked bucket under 'backups/'."""
    return S3ObjectStore(remote_config)


@pytest.fixture
def backup_dir(tmp_path):
    directory = tmp_path / 'archives'
    directory.mkdir()
    return directory


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - data/test_file1.txt
    - data/nested/test_file2.txt
    - data/test_file.pyc (excluded in tests)
    - config.ini
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    (data_dir / 'test_file1.txt').write_text('Test content 1')

    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file2.txt').write_text('Nested test content')

    (data_dir / 'test_file.pyc').write_bytes(b'compiled python')
    (tmp_path / 'config.ini').write_text('[main]\nkey=value\n')

    return tmp_path


def zip_names(path) -> list:
    with zipfile.ZipFile(path) as zf:
        return sorted(zf.namelist())


@pytest.fixture
def make_archive():
    """Factory writing an archive file: make_archive(directory, name, mtime=None)."""
    return write_archive


@pytest.fixture
def archive_mtime():
    """Factory returning the unix time embedded in an archive name."""
    return mtime_from_name


@pytest.fixture
def read_zip_names():
    return zip_names


@pytest.fixture
def s3_app(app, mock_s3):
    """App configured with credentials for the mocked bucket."""
    app.config.update({
        'S3_ACCESS_KEY': 'test_access_key',
        'S3_SECRET_KEY': 'test_secret_key',
        'S3_BUCKET': BUCKET,
        'S3_TIMEOUT': 5,
    })
    return app


@pytest.fixture
def configure_settings(db):
    """
    Factory storing backup settings in the settings table.

    Usage: configure_settings(backup_dir='/tmp/x', backup_amount_max=3)
    Returns a BackupSettings bound to the database store.
    """
    store = DatabaseSettingsStore()

    def _configure(**values):
        for field, value in values.items():
            store.set(SETTING_KEYS[field], None if value is None else str(value))
        _db.session.commit()
        return BackupSettings(store)

    return _configure
