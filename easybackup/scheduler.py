"""
APScheduler configuration for EasyBackup.

Runs the backup cycle (create archive, then sync) on the cron schedule from
BACKUP_SCHEDULE_CRON. max_instances=1 keeps scheduled runs from overlapping.
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from easybackup.backup.executor import execute_backup_run, RunInProgress


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backup_run'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one run at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    timezone = app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=timezone
    )

    cron = app.config.get('BACKUP_SCHEDULE_CRON')
    if cron:
        scheduler.add_job(
            func=_execute_backup_wrapper,
            trigger=CronTrigger.from_crontab(cron, timezone=timezone),
            id=BACKUP_JOB_ID,
            name='Scheduled Backup',
            replace_existing=True
        )
        logger.info(f"Scheduled backup run: {cron}")

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def get_next_run_time():
    """
    Get next scheduled backup run time.

    Returns:
        datetime or None if not scheduled
    """
    if scheduler is None:
        return None

    job = scheduler.get_job(BACKUP_JOB_ID)
    return job.next_run_time if job else None


def _execute_backup_wrapper():
    """
    Wrapper for scheduled backup runs.

    Runs inside the Flask app context; a run already in progress (e.g. a
    manual one) makes this occurrence a no-op.
    """
    if flask_app is None:
        logger.error("Scheduler fired before Flask app was registered")
        return

    with flask_app.app_context():
        try:
            run = execute_backup_run(create_archive=True, trigger='scheduled')
            logger.info(f"Scheduled backup run finished: {run.status}")
        except RunInProgress:
            logger.warning("Skipping scheduled backup: another run is in progress")
