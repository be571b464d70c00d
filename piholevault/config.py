import os


class Config:
    """Base configuration"""

    # Storage
    DATA_DIR = os.environ.get('DATA_DIR') or '/data'
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or '/data/backups'
    BACKUP_FILENAME_PREFIX = os.environ.get('BACKUP_FILENAME_PREFIX') or 'pi-hole_backup'
    MAX_JOB_HISTORY = int(os.environ.get('MAX_JOB_HISTORY', 100))

    # Remote calls (seconds)
    HTTP_TIMEOUT = float(os.environ.get('HTTP_TIMEOUT', 30))
    SSH_TIMEOUT = float(os.environ.get('SSH_TIMEOUT', 30))

    # Scheduler
    SCHEDULER_ENABLED = True
    # Interval at which the owning process picks up settings written elsewhere
    SETTINGS_POLL_SECONDS = int(os.environ.get('SETTINGS_POLL_SECONDS', 30))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
