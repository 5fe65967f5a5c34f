# Gunicorn configuration for EasyBackup
# Only one worker owns the scheduler so scheduled runs never overlap.
#
# Usage: gunicorn -c docker/gunicorn_conf.py "easybackup:create_app()"

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:5000')
workers = int(os.environ.get('GUNICORN_WORKERS', 2))
# Manual runs block the request until the sync finishes
timeout = int(os.environ.get('GUNICORN_TIMEOUT', 3600))


def post_fork(server, worker):
    """
    Called in the worker right after fork, before the app is loaded.

    Designates the first worker (worker.age == 1) as the scheduler owner.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (age counts spawned workers: 1, 2, ...)
    """
    if worker.age == 1:
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Designated as SCHEDULER OWNER")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Standard HTTP worker (scheduler disabled)")
