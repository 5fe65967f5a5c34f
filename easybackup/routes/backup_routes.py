"""
Backup routes - archive listings, manual runs, run history and fetch.
"""

import os
import logging
from flask import Blueprint, jsonify, request, current_app

from easybackup import db
from easybackup.models import SyncRun
from easybackup.settings import BackupSettings
from easybackup.backup.archive import merge_locations
from easybackup.backup.errors import StorageError, InvalidName, NotConfigured, ObjectNotFound
from easybackup.backup.executor import (
    BackupExecutor,
    RunInProgress,
    build_local_repository,
    build_object_store,
    fetch_remote_archive
)


bp = Blueprint('backups', __name__, url_prefix='/api/backups')
logger = logging.getLogger(__name__)


@bp.route('', methods=['GET'])
def list_backups():
    """
    List local and remote archives, newest first.

    Returns:
        JSON with local, remote and combined listings. remote is null when
        remote storage is disabled.
    """
    settings = BackupSettings()
    config = current_app.config

    try:
        local_archives = build_local_repository(settings, config).list()
    except StorageError as e:
        return jsonify({'error': str(e)}), 500

    remote = build_object_store(settings, config)
    remote_archives = None
    remote_error = None
    if remote.is_enabled():
        try:
            remote_archives = remote.list()
        except StorageError as e:
            logger.warning(f"Remote listing failed: {e}")
            remote_error = str(e)

    return jsonify({
        'remote_enabled': remote.is_enabled(),
        'local': [a.to_dict() for a in local_archives],
        'remote': [a.to_dict() for a in remote_archives] if remote_archives is not None else None,
        'remote_error': remote_error,
        'combined': [a.to_dict() for a in merge_locations(local_archives, remote_archives or [])]
    })


@bp.route('/run', methods=['POST'])
def run_backup():
    """
    Run a backup cycle now.

    Request body (optional):
        - create_archive: Create a new archive before syncing (default: true)

    Returns:
        JSON with the run record; 409 if a run is in progress
    """
    data = request.get_json(silent=True) or {}
    create_archive = bool(data.get('create_archive', True))

    executor = BackupExecutor()
    try:
        run = executor.execute(create_archive=create_archive)
    except RunInProgress as e:
        return jsonify({'error': str(e)}), 409
    except StorageError as e:
        return jsonify({'error': str(e)}), 500

    status_code = 500 if run.status == 'failed' else 200
    return jsonify(run.to_dict()), status_code


@bp.route('/history', methods=['GET'])
def list_history():
    """
    Get recent runs.

    Query params:
        - limit: Max number of records (default: 20, max: 200)

    Returns:
        JSON array of runs, newest first
    """
    limit = min(max(request.args.get('limit', 20, type=int), 1), 200)
    runs = SyncRun.query.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit).all()
    return jsonify([run.to_dict() for run in runs])


@bp.route('/history/<int:run_id>/logs', methods=['GET'])
def get_run_logs(run_id):
    run = db.get_or_404(SyncRun, run_id)
    return jsonify({'id': run.id, 'status': run.status, 'logs': run.logs or ''})


@bp.route('/<name>/fetch', methods=['POST'])
def fetch_backup(name):
    """
    Download a remote archive into the local backup directory.

    Returns:
        JSON with the archive name and local path
    """
    try:
        path = fetch_remote_archive(name)
    except InvalidName as e:
        return jsonify({'error': str(e)}), 400
    except NotConfigured as e:
        return jsonify({'error': str(e)}), 409
    except ObjectNotFound as e:
        return jsonify({'error': str(e)}), 404
    except StorageError as e:
        return jsonify({'error': str(e)}), 502

    return jsonify({'name': name, 'path': path, 'size_bytes': os.path.getsize(path)})
