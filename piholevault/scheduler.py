"""
APScheduler configuration and backup scheduling for PiHoleVault.

Manages:
- The single recurring backup job (id 'backup')
- Picking up settings written by other processes (job 'settings-watch')
- Conversion of 'GMT+N' style timezones to Etc/GMT zones
- Cron validation and next-run previews
"""

import re
import logging
import threading
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, List, Dict, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor
from flask import current_app

from piholevault.models import ScheduleConfig
from piholevault.backup.errors import ScheduleConfigError


logger = logging.getLogger(__name__)

JOB_ID = 'backup'
JOB_NAME = 'Pi-hole Backup'
WATCH_JOB_ID = 'settings-watch'
WATCH_EXECUTOR = 'settings'
EXTENSION_KEY = 'backup_scheduler'

_GMT_OFFSET = re.compile(r'^([+-]?\d{1,2})$')


class ScheduleState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    SCHEDULED = 'scheduled'
    STOPPED = 'stopped'


def convert_gmt_offset_to_timezone(value: Optional[str]) -> str:
    """
    Convert a 'GMT+N' string to the matching Etc/GMT zone.

    Etc/GMT zones use inverted signs, so GMT+3 becomes Etc/GMT-3. Zero
    offsets and anything that is not 'GMT' followed by a signed integer
    map to UTC.

    Args:
        value: Human-entered offset such as 'GMT+3' or 'GMT-5'

    Returns:
        IANA zone name
    """
    if not value or not value.startswith('GMT'):
        return 'UTC'

    match = _GMT_OFFSET.match(value[3:].strip())
    if not match:
        return 'UTC'

    offset = int(match.group(1))
    if offset == 0:
        return 'UTC'

    inverted = -offset
    sign = '+' if inverted > 0 else '-'
    return f"Etc/GMT{sign}{abs(inverted)}"


def resolve_timezone(value: Optional[str]) -> str:
    """
    Turn a configured timezone into a zone name APScheduler can use.

    'GMT±N' strings are converted, IANA names pass through when they
    resolve, anything else becomes UTC.
    """
    if not value:
        return 'UTC'

    value = value.strip()
    name = convert_gmt_offset_to_timezone(value) if value.startswith('GMT') else value

    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {value!r}, using UTC")
        return 'UTC'
    return name


def build_trigger(cron_expression: str, timezone_name: str) -> CronTrigger:
    """
    Build a cron trigger from a 5-field crontab expression.

    Raises:
        ScheduleConfigError: If the expression is not valid crontab syntax
    """
    if not cron_expression:
        raise ScheduleConfigError("Cron expression is required")

    try:
        return CronTrigger.from_crontab(cron_expression, timezone=timezone_name)
    except ValueError as e:
        raise ScheduleConfigError(f"Invalid cron expression {cron_expression!r}: {e}") from e


def upcoming_fire_times(trigger: CronTrigger, count: int = 5, now: Optional[datetime] = None) -> List[datetime]:
    """Compute the next count fire times of a trigger."""
    current = now or datetime.now(trigger.timezone)
    previous = None
    runs = []

    for _ in range(max(count, 0)):
        next_time = trigger.get_next_fire_time(previous, current)
        if next_time is None:
            break
        runs.append(next_time)
        previous = current = next_time

    return runs


def preview_next_runs(schedule_config: Optional[ScheduleConfig], count: int = 5) -> List[str]:
    """
    Preview upcoming fire times of a schedule as ISO-8601 strings.

    Raises:
        ScheduleConfigError: If the cron expression is invalid
    """
    if schedule_config is None or not schedule_config.cron_expression:
        return []

    trigger = build_trigger(schedule_config.cron_expression, resolve_timezone(schedule_config.timezone))
    return [run.isoformat() for run in upcoming_fire_times(trigger, count)]


def validate_schedule(cron_expression: str, timezone: Optional[str] = None, count: int = 5) -> Dict[str, Any]:
    """
    Check a cron expression and timezone without scheduling anything.

    Returns:
        Dict with 'valid', 'timezone' and either 'nextRuns' or 'error'
    """
    timezone_name = resolve_timezone(timezone)
    try:
        trigger = build_trigger(cron_expression, timezone_name)
    except ScheduleConfigError as e:
        return {'valid': False, 'timezone': timezone_name, 'error': str(e)}

    return {
        'valid': True,
        'timezone': timezone_name,
        'nextRuns': [run.isoformat() for run in upcoming_fire_times(trigger, count)]
    }


class BackupScheduler:
    """
    Owns the single recurring backup job.

    States: uninitialized until the first initialize(), then scheduled or
    stopped. Re-initializing always removes the previous job first, so at
    most one job with id 'backup' exists.
    """

    def __init__(self, run_callable: Callable[[], Any], scheduler: Optional[BackgroundScheduler] = None):
        """
        Initialize backup scheduler.

        Args:
            run_callable: Called on every fire (BackupOrchestrator.run_persisted_backup)
            scheduler: APScheduler instance (a memory-backed one is created when omitted)
        """
        self.run_callable = run_callable
        self.scheduler = scheduler or BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={
                'default': ThreadPoolExecutor(max_workers=1),
                WATCH_EXECUTOR: ThreadPoolExecutor(max_workers=1)  # Not blocked by a running backup
            },
            job_defaults={
                'coalesce': True,  # Collapse missed fires into one run
                'max_instances': 1,  # Skip a fire while the previous run is active
                'misfire_grace_time': 300
            },
            timezone='UTC'
        )
        self.state = ScheduleState.UNINITIALIZED
        self.config: Optional[ScheduleConfig] = None
        self.timezone: Optional[str] = None
        self.last_error: Optional[str] = None
        self.settings_store = None
        self._settings_mtime: Optional[float] = None
        self._lock = threading.RLock()

    def initialize(self, schedule_config: ScheduleConfig) -> ScheduleState:
        """
        Replace the backup job according to schedule_config.

        Invalid cron expressions are logged and leave the scheduler stopped.
        A paused config registers the job and pauses it right away.

        Args:
            schedule_config: Enabled flag, cron expression and timezone

        Returns:
            Resulting ScheduleState
        """
        with self._lock:
            self._remove_job()
            self.config = schedule_config
            self.last_error = None

            if not schedule_config.enabled or not schedule_config.cron_expression:
                self.state = ScheduleState.STOPPED
                self.timezone = None
                logger.info("Scheduled backups disabled")
                return self.state

            timezone_name = resolve_timezone(schedule_config.timezone)

            try:
                trigger = build_trigger(schedule_config.cron_expression, timezone_name)
            except ScheduleConfigError as e:
                logger.error(f"Scheduled backups not started: {e}")
                self.last_error = str(e)
                self.state = ScheduleState.STOPPED
                self.timezone = None
                return self.state

            self._ensure_running()
            self.scheduler.add_job(
                func=self._execute,
                trigger=trigger,
                id=JOB_ID,
                name=JOB_NAME,
                replace_existing=True
            )

            self.timezone = timezone_name
            self.state = ScheduleState.SCHEDULED
            logger.info(
                f"Scheduled backup job with cron {schedule_config.cron_expression!r} "
                f"in timezone {timezone_name}"
            )

            if schedule_config.paused:
                self.scheduler.pause_job(JOB_ID)
                self.state = ScheduleState.STOPPED
                logger.info("Scheduled backups paused")
            return self.state

    def stop(self) -> bool:
        """
        Pause the backup job without removing it.

        Returns:
            True if a job was paused
        """
        with self._lock:
            job = self.scheduler.get_job(JOB_ID)
            self.state = ScheduleState.STOPPED
            if self.config is not None:
                self.config = replace(self.config, paused=True)
            if job is None:
                return False
            self.scheduler.pause_job(JOB_ID)
            logger.info("Scheduled backups stopped")
            return True

    def start(self) -> bool:
        """
        Resume the backup job, or re-initialize when none exists.

        Returns:
            True if a job is scheduled afterwards
        """
        with self._lock:
            job = self.scheduler.get_job(JOB_ID)
            if job is not None:
                self._ensure_running()
                self.scheduler.resume_job(JOB_ID)
                self.state = ScheduleState.SCHEDULED
                if self.config is not None:
                    self.config = replace(self.config, paused=False)
                logger.info("Scheduled backups resumed")
                return True

            if self.config is None:
                logger.warning("Cannot start scheduled backups: no schedule configured")
                return False

            return self.initialize(replace(self.config, paused=False)) is ScheduleState.SCHEDULED

    def watch_settings(self, settings_store, interval_seconds: int = 30):
        """
        Re-apply the persisted schedule whenever config.json changes.

        Settings may be written by a process that does not own the
        scheduler, so the owner polls the file's modification time.

        Args:
            settings_store: SettingsStore the schedule is read from
            interval_seconds: Poll interval
        """
        with self._lock:
            self.settings_store = settings_store
            self._settings_mtime = settings_store.mtime()
            self._ensure_running()
            self.scheduler.add_job(
                func=self.sync_settings,
                trigger=IntervalTrigger(seconds=interval_seconds),
                id=WATCH_JOB_ID,
                name='Settings watch',
                executor=WATCH_EXECUTOR,
                replace_existing=True
            )
        logger.info(f"Watching settings for schedule changes every {interval_seconds}s")

    def sync_settings(self) -> bool:
        """
        Apply the persisted schedule if the settings file changed.

        A change of the paused flag alone pauses or resumes the existing
        job; any other change re-initializes it.

        Returns:
            True if the schedule was changed
        """
        if self.settings_store is None:
            return False

        try:
            with self._lock:
                mtime = self.settings_store.mtime()
                if mtime == self._settings_mtime:
                    return False
                self._settings_mtime = mtime

                settings = self.settings_store.load()
                schedule_config = ScheduleConfig.from_settings(settings.get('schedule'))
                if schedule_config == self.config:
                    return False

                logger.info("Settings changed on disk, applying schedule")
                if self.config is not None and replace(self.config, paused=schedule_config.paused) == schedule_config:
                    if schedule_config.paused:
                        self.stop()
                    else:
                        self.start()
                else:
                    self.initialize(schedule_config)
                return True
        except Exception:
            logger.exception("Failed to apply schedule from settings")
            return False

    def shutdown(self):
        """Stop the APScheduler runtime."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("APScheduler stopped")

    def next_runs(self, schedule_config: Optional[ScheduleConfig] = None, count: int = 5) -> List[str]:
        """
        Preview upcoming fire times as ISO-8601 strings.

        Raises:
            ScheduleConfigError: If the cron expression is invalid
        """
        return preview_next_runs(schedule_config or self.config, count)

    def validate(self, cron_expression: str, timezone: Optional[str] = None) -> Dict[str, Any]:
        """Check a cron expression and timezone without scheduling anything."""
        return validate_schedule(cron_expression, timezone)

    def describe(self) -> Dict[str, Any]:
        job = self.scheduler.get_job(JOB_ID)
        next_run = getattr(job, 'next_run_time', None) if job is not None else None

        return {
            'state': self.state.value,
            'active': self.state is ScheduleState.SCHEDULED and job is not None,
            'enabled': bool(self.config and self.config.enabled),
            'paused': bool(self.config and self.config.paused),
            'cronExpression': self.config.cron_expression if self.config else None,
            'timezone': self.timezone,
            'nextRun': next_run.isoformat() if next_run else None,
            'running': bool(self.scheduler.running),
            'lastError': self.last_error
        }

    def _execute(self):
        """Job entry point; never lets an exception reach APScheduler."""
        logger.info("Running scheduled backup")
        try:
            outcome = self.run_callable()
        except Exception:
            logger.exception("Scheduled backup raised an unexpected error")
            return

        if getattr(outcome, 'success', False):
            logger.info(f"Scheduled backup completed: {outcome.filename} ({outcome.size} bytes)")
        else:
            logger.error(f"Scheduled backup failed: {getattr(outcome, 'error', 'unknown error')}")

    def _ensure_running(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("APScheduler started")

    def _remove_job(self):
        if self.scheduler.get_job(JOB_ID) is not None:
            self.scheduler.remove_job(JOB_ID)
            logger.debug("Removed existing backup job")


def get_backup_scheduler() -> Optional[BackupScheduler]:
    """Return the scheduler registered on the current app, if this process owns one."""
    return current_app.extensions.get(EXTENSION_KEY)


def initialize_scheduled_jobs(schedule_config: Optional[ScheduleConfig] = None) -> Optional[ScheduleState]:
    """
    (Re)initialize the backup job of the current app.

    Args:
        schedule_config: Schedule to apply (default: read from persisted settings)

    Returns:
        Resulting ScheduleState, or None when this process does not own the scheduler
    """
    backup_scheduler = get_backup_scheduler()
    if backup_scheduler is None:
        logger.debug("Scheduler not owned by this process, skipping initialization")
        return None

    if schedule_config is None:
        settings = current_app.extensions['settings_store'].load()
        schedule_config = ScheduleConfig.from_settings(settings.get('schedule'))

    return backup_scheduler.initialize(schedule_config)


def _persist_paused(paused: bool) -> ScheduleConfig:
    store = current_app.extensions['settings_store']
    schedule = dict(store.load().get('schedule') or {})
    schedule['paused'] = paused
    store.update({'schedule': schedule})
    return ScheduleConfig.from_settings(schedule)


def start_scheduled_backups() -> bool:
    """
    Resume scheduled backups and persist the choice.

    A process that does not own the scheduler only writes the settings;
    the owner applies them on its next poll.

    Returns:
        True if a schedule is (or will be) active

    Raises:
        FileNotFoundError: If no settings have been saved yet
        SettingsValidationError: If the stored settings are invalid
    """
    schedule_config = _persist_paused(False)
    backup_scheduler = get_backup_scheduler()
    if backup_scheduler is None:
        return schedule_config.enabled and schedule_config.cron_expression is not None
    return backup_scheduler.start()


def stop_scheduled_backups() -> bool:
    """
    Pause scheduled backups and persist the choice.

    Returns:
        True if there was a schedule to pause

    Raises:
        FileNotFoundError: If no settings have been saved yet
        SettingsValidationError: If the stored settings are invalid
    """
    schedule_config = _persist_paused(True)
    backup_scheduler = get_backup_scheduler()
    if backup_scheduler is None:
        return schedule_config.enabled and schedule_config.cron_expression is not None
    return backup_scheduler.stop()
