"""
Settings routes - backup configuration stored in the host settings table.
"""

import logging
from flask import Blueprint, jsonify, request, current_app

from easybackup import db
from easybackup.settings import BackupSettings, DatabaseSettingsStore, SETTING_KEYS
from easybackup.backup.errors import StorageError, NotConfigured
from easybackup.backup.storage import create_object_store


bp = Blueprint('settings', __name__, url_prefix='/api/settings')
logger = logging.getLogger(__name__)


def _settings_response(settings: BackupSettings):
    remote = settings.remote_config(current_app.config)
    data = settings.to_dict()
    data.update({
        's3_enabled': remote.enabled,
        's3_bucket': remote.bucket,
        's3_region': remote.region,
        's3_endpoint': remote.endpoint,
        's3_path_prefix': remote.path_prefix
    })
    return jsonify(data)


@bp.route('/backup', methods=['GET'])
def get_backup_settings():
    """
    Get backup settings (credentials are not returned).

    Absent settings are reported with their sentinels ("NOT SET", -1, "").
    """
    return _settings_response(BackupSettings())


@bp.route('/backup', methods=['PUT'])
def update_backup_settings():
    """
    Update backup settings.

    Request body: any of mysqldump_command, mysql_restore_command,
    backup_dir, paths_to_backup, backup_amount_max, s3_path. A null value
    removes the setting.

    Returns:
        JSON with the updated settings
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'JSON object body is required'}), 400

    unknown = sorted(set(data) - set(SETTING_KEYS))
    if unknown:
        return jsonify({'error': f'Unknown settings: {unknown}'}), 400

    if data.get('backup_amount_max') is not None:
        try:
            int(data['backup_amount_max'])
        except (TypeError, ValueError):
            return jsonify({'error': 'backup_amount_max must be an integer'}), 400

    store = DatabaseSettingsStore()
    for field, value in data.items():
        store.set(SETTING_KEYS[field], None if value is None else str(value))
    db.session.commit()

    logger.info(f"Updated backup settings: {sorted(data)}")
    return _settings_response(BackupSettings(store))


@bp.route('/backup/test', methods=['POST'])
def test_remote_connection():
    """
    Check that the configured bucket is reachable with the current settings.

    Returns:
        JSON with success flag; 409 if remote storage is not configured
    """
    remote = create_object_store(BackupSettings().remote_config(current_app.config))

    try:
        remote.test_connection()
    except NotConfigured as e:
        return jsonify({'success': False, 'error': str(e)}), 409
    except StorageError as e:
        logger.warning(f"Remote connection test failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 502

    return jsonify({'success': True, 'bucket': remote.bucket_name, 'path_prefix': remote.path_prefix})
