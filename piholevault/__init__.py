import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify


def configure_logging(app):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = os.path.join(app.config['DATA_DIR'], 'logs')
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'piholevault.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    # paramiko logs every transport event at INFO
    logging.getLogger('paramiko').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def _should_own_scheduler(app) -> bool:
    """
    Decide whether this process runs APScheduler.

    - Development mode: only in the Flask reloader child process
    - Production mode: only in the designated Gunicorn worker (SCHEDULER_WORKER=true)
    """
    if not app.config.get('SCHEDULER_ENABLED', True):
        return False

    if app.config.get('DEBUG', False):
        is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
        return is_reloader_child

    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'
    app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")
    return is_scheduler_worker


def create_app(config_name=None, test_config=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from piholevault.config import config
    app.config.from_object(config[config_name])
    if test_config:
        app.config.update(test_config)

    # Configure logging
    configure_logging(app)

    # Ensure required directories exist
    os.makedirs(app.config['DATA_DIR'], exist_ok=True)
    os.makedirs(app.config['BACKUP_DIR'], exist_ok=True)

    # Core services
    from piholevault.settings import SettingsStore
    from piholevault.notifications import DiscordNotifier
    from piholevault.backup.ledger import JobLedger
    from piholevault.backup.orchestrator import BackupOrchestrator
    from piholevault.backup.web import WebAcquisitionClient
    from piholevault.backup.ssh import ShellAcquisitionClient

    settings_store = SettingsStore(app.config['DATA_DIR'])
    ledger = JobLedger(app.config['DATA_DIR'], max_entries=app.config['MAX_JOB_HISTORY'])
    web_client = WebAcquisitionClient(timeout=app.config['HTTP_TIMEOUT'])
    shell_client = ShellAcquisitionClient(timeout=app.config['SSH_TIMEOUT'])
    notifier = DiscordNotifier(settings_store.load)
    orchestrator = BackupOrchestrator(
        backup_dir=app.config['BACKUP_DIR'],
        ledger=ledger,
        settings_store=settings_store,
        web_client=web_client,
        shell_client=shell_client,
        hooks=[notifier],
        filename_prefix=app.config['BACKUP_FILENAME_PREFIX']
    )

    app.extensions['settings_store'] = settings_store
    app.extensions['job_ledger'] = ledger
    app.extensions['backup_orchestrator'] = orchestrator
    app.extensions['web_client'] = web_client
    app.extensions['shell_client'] = shell_client
    app.extensions['discord_notifier'] = notifier

    # Register blueprints
    from piholevault.routes import (
        backup_routes, jobs_routes, schedule_routes, settings_routes, pihole_routes, ssh_routes, discord_routes
    )
    app.register_blueprint(backup_routes.bp)
    app.register_blueprint(jobs_routes.bp)
    app.register_blueprint(schedule_routes.bp)
    app.register_blueprint(settings_routes.bp)
    app.register_blueprint(pihole_routes.bp)
    app.register_blueprint(ssh_routes.bp)
    app.register_blueprint(discord_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return jsonify({'status': 'healthy', 'service': 'PiHoleVault'}), 200

    # Initialize and start scheduler (only in designated worker or development child process)
    from piholevault.scheduler import BackupScheduler, EXTENSION_KEY, initialize_scheduled_jobs
    import atexit

    if _should_own_scheduler(app):
        app.logger.info("Initializing scheduler in this process...")
        backup_scheduler = BackupScheduler(orchestrator.run_persisted_backup)
        app.extensions[EXTENSION_KEY] = backup_scheduler

        with app.app_context():
            initialize_scheduled_jobs()

        # Settings may be saved by workers that do not own the scheduler
        backup_scheduler.watch_settings(settings_store, app.config['SETTINGS_POLL_SECONDS'])

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(backup_scheduler.shutdown)
        app.logger.info(f"Scheduler initialized (state={backup_scheduler.state.value})")
    else:
        app.logger.info("Scheduler initialization skipped in this process (not designated scheduler worker)")

    return app
