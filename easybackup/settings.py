"""
Typed backup settings read from the host configuration store.

A missing setting yields a sentinel instead of an error: "NOT SET" for
strings, -1 for the retained-backup count and "" for the S3 path. Callers
treat sentinels as "feature disabled".
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict

from easybackup import db
from easybackup.models import Setting
from easybackup.backup.reconcile import RetentionPolicy, UNLIMITED
from easybackup.backup.sources import split_paths
from easybackup.backup.storage import RemoteConfig


logger = logging.getLogger(__name__)

NOT_SET = 'NOT SET'

KEY_MYSQLDUMP_COMMAND = 'easy_backup.setting_mysqldump_command'
KEY_MYSQL_RESTORE_COMMAND = 'easy_backup.setting_mysql_restore_command'
KEY_BACKUP_DIR = 'easy_backup.setting_backup_dir'
KEY_PATHS_TO_BACKUP = 'easy_backup.setting_paths_to_backup'
KEY_BACKUP_AMOUNT_MAX = 'easy_backup.setting_backup_amount_max'
KEY_S3_PATH = 'easy_backup.setting_s3_path'

SETTING_KEYS = {
    'mysqldump_command': KEY_MYSQLDUMP_COMMAND,
    'mysql_restore_command': KEY_MYSQL_RESTORE_COMMAND,
    'backup_dir': KEY_BACKUP_DIR,
    'paths_to_backup': KEY_PATHS_TO_BACKUP,
    'backup_amount_max': KEY_BACKUP_AMOUNT_MAX,
    's3_path': KEY_S3_PATH
}


class DatabaseSettingsStore:
    """Configuration store backed by the settings table."""

    def find(self, key: str) -> Optional[str]:
        setting = db.session.get(Setting, key)
        return setting.value if setting else None

    def set(self, key: str, value: Optional[str]):
        setting = db.session.get(Setting, key)
        if setting is None:
            setting = Setting(key=key)
            db.session.add(setting)
        setting.value = value
        setting.updated_at = datetime.utcnow()


class BackupSettings:
    """
    Typed accessors over a configuration store.

    The store only needs a find(key) method returning a string or None.
    """

    def __init__(self, store=None):
        self.store = store if store is not None else DatabaseSettingsStore()

    def _string(self, key: str, default: str = NOT_SET) -> str:
        value = self.store.find(key)
        if not isinstance(value, str):
            return default
        return value

    @property
    def mysqldump_command(self) -> str:
        return self._string(KEY_MYSQLDUMP_COMMAND)

    @property
    def mysql_restore_command(self) -> str:
        return self._string(KEY_MYSQL_RESTORE_COMMAND)

    @property
    def backup_dir(self) -> str:
        return self._string(KEY_BACKUP_DIR)

    @property
    def paths_to_backup(self) -> str:
        return self._string(KEY_PATHS_TO_BACKUP)

    @property
    def backup_amount_max(self) -> int:
        value = self.store.find(KEY_BACKUP_AMOUNT_MAX)
        if not isinstance(value, str):
            return UNLIMITED
        try:
            return int(value.strip())
        except ValueError:
            logger.warning(f"Ignoring non-numeric {KEY_BACKUP_AMOUNT_MAX}: {value!r}")
            return UNLIMITED

    @property
    def s3_path(self) -> str:
        return self._string(KEY_S3_PATH, default='')

    def backup_paths(self) -> List[str]:
        """Paths to include in archives, or [] when not set."""
        if self.paths_to_backup == NOT_SET:
            return []
        return split_paths(self.paths_to_backup)

    def dump_command(self) -> Optional[str]:
        command = self.mysqldump_command
        return None if command == NOT_SET or not command.strip() else command

    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy(max_count=self.backup_amount_max)

    def remote_config(self, app_config) -> RemoteConfig:
        """Combine environment credentials with the configured S3 path."""
        return RemoteConfig.from_mapping(app_config, path_prefix=self.s3_path)

    def is_s3_enabled(self, app_config) -> bool:
        return self.remote_config(app_config).enabled

    def to_dict(self) -> Dict:
        return {
            'mysqldump_command': self.mysqldump_command,
            'mysql_restore_command': self.mysql_restore_command,
            'backup_dir': self.backup_dir,
            'paths_to_backup': self.paths_to_backup,
            'backup_amount_max': self.backup_amount_max,
            's3_path': self.s3_path
        }
