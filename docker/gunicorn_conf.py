# Gunicorn configuration for PiHoleVault
# Only one worker may own the backup scheduler
# The owner polls config.json to pick up settings saved through other workers

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:3001')
workers = int(os.environ.get('GUNICORN_WORKERS', 2))
# Backups block a worker for the whole SSH/HTTP exchange
timeout = int(os.environ.get('GUNICORN_TIMEOUT', 180))


def pre_fork(server, worker):
    """
    Called in the master before a worker is forked.

    Marks the new worker as scheduler owner when no live worker holds that
    role, so a restarted owner is replaced and the backup job fires once
    per schedule instead of once per worker.

    Args:
        server: Gunicorn arbiter (live workers in server.WORKERS)
        worker: Worker about to be forked
    """
    owner_alive = any(getattr(w, 'scheduler_owner', False) for w in server.WORKERS.values())
    worker.scheduler_owner = not owner_alive


def post_fork(server, worker):
    """
    Called in the worker right after fork, before the app is loaded.

    create_app() reads SCHEDULER_WORKER to decide whether to start APScheduler.
    """
    if getattr(worker, 'scheduler_owner', False):
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): backup scheduler owner")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): HTTP only, scheduler disabled")
