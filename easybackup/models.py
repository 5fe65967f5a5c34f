import json
from datetime import datetime
from easybackup import db


class Setting(db.Model):
    """Host configuration store entry"""
    __tablename__ = 'settings'

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<Setting {self.key}>'


class SyncRun(db.Model):
    """Backup/sync run history and logs"""
    __tablename__ = 'sync_runs'

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(30), nullable=False)  # running, completed, completed_with_errors, failed
    trigger = db.Column(db.String(20), nullable=False, default='manual')  # manual, scheduled
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    archive_name = db.Column(db.String(255))  # Archive created by this run, if any
    remote_enabled = db.Column(db.Boolean, default=False, nullable=False)
    uploaded_count = db.Column(db.Integer, default=0, nullable=False)
    deleted_remote_count = db.Column(db.Integer, default=0, nullable=False)
    deleted_local_count = db.Column(db.Integer, default=0, nullable=False)
    failures = db.Column(db.Text)  # JSON list of {name, operation, error_kind, message}
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)

    def failure_list(self):
        return json.loads(self.failures) if self.failures else []

    def to_dict(self):
        return {
            'id': self.id,
            'status': self.status,
            'trigger': self.trigger,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'archive_name': self.archive_name,
            'remote_enabled': self.remote_enabled,
            'uploaded_count': self.uploaded_count,
            'deleted_remote_count': self.deleted_remote_count,
            'deleted_local_count': self.deleted_local_count,
            'failures': self.failure_list(),
            'error_message': self.error_message
        }

    def __repr__(self):
        return f'<SyncRun id={self.id} status={self.status}>'
