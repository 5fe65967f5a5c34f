import os


def _int_env(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


class Config:
    """Base configuration"""

    # Database (host configuration store and run history)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/easybackup.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Used when the backup directory setting is not set
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/data/backups'

    # Remote object storage (S3 or compatible endpoint)
    S3_ACCESS_KEY = os.environ.get('S3_ACCESS_KEY')
    S3_SECRET_KEY = os.environ.get('S3_SECRET_KEY')
    S3_BUCKET = os.environ.get('S3_BUCKET')
    S3_ENDPOINT = os.environ.get('S3_ENDPOINT')
    S3_REGION = os.environ.get('S3_REGION') or 'us-east-1'
    S3_TIMEOUT = _int_env('S3_TIMEOUT', 60)  # seconds, per remote call

    # Sync
    SYNC_MAX_WORKERS = _int_env('SYNC_MAX_WORKERS', 4)
    BACKUP_EXCLUDE_PATTERNS = [p for p in os.environ.get('BACKUP_EXCLUDE_PATTERNS', '').split(',') if p]

    # Scheduler
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() == 'true'
    SCHEDULER_TIMEZONE = 'UTC'
    BACKUP_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE_CRON')  # e.g. "0 2 * * *"


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "easybackup.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'backups')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LOG_DIR = None
    SCHEDULER_ENABLED = False
    S3_ACCESS_KEY = None
    S3_SECRET_KEY = None
    S3_BUCKET = None
    S3_ENDPOINT = None
    SYNC_MAX_WORKERS = 2


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
