"""
Scheduler service: executes ScheduledJob rows.

A BackgroundScheduler fires `tick` every `tick_seconds`. Each due job runs on
its own thread with a cancel Event; a job that is still running when the
next tick sees it due is skipped.
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from db import ensure_app_context
from exceptions import NotFoundException, ValidationException, VidStashException
from metrics import scheduled_job_duration_seconds, scheduled_job_executions_total, scheduled_jobs_running
from models.scheduler import JobKind, ScheduleType
from repositories.appsetting_repository import AuditLogRepository
from repositories.scheduledjob_repository import ScheduledJobRepository
from repositories.scraper_repository import ScraperRepository
from services.activity_service import CANCELLED_MESSAGE, STOP_CANCELLED, STOP_PAUSED
from utils import ensure_utc, now_utc

logger = logging.getLogger("main")

EDITABLE_FIELDS = ("name", "schedule_type", "schedule_config", "target_type", "target_id", "enabled", "next_run_at")


def compute_next_run(schedule_type, schedule_config, now):
    """Next fire time after a run at `now`, or None when the job should not fire again"""
    config = schedule_config or {}
    if schedule_type == ScheduleType.INTERVAL:
        minutes = config.get("interval_minutes")
        if not minutes:
            return None
        return now + timedelta(minutes=int(minutes))
    if schedule_type == ScheduleType.CRON:
        expression = config.get("cron")
        if not expression:
            return None
        trigger = CronTrigger.from_crontab(expression, timezone=timezone.utc)
        return trigger.get_next_fire_time(None, now + timedelta(seconds=1))
    return None


def validate_schedule(schedule_type, schedule_config):
    config = schedule_config or {}
    if schedule_type not in ScheduleType.ALL:
        raise ValidationException(f"Unknown schedule type: {schedule_type}")
    if schedule_type == ScheduleType.INTERVAL:
        try:
            minutes = int(config.get("interval_minutes") or 0)
        except (TypeError, ValueError):
            minutes = 0
        if minutes <= 0:
            raise ValidationException("interval jobs need a positive interval_minutes")
    elif schedule_type == ScheduleType.CRON:
        try:
            CronTrigger.from_crontab(config.get("cron") or "", timezone=timezone.utc)
        except ValueError as e:
            raise ValidationException(f"Invalid cron expression {config.get('cron')!r}: {e}")
    elif config.get("run_at") and ensure_utc(config["run_at"]) is None:
        raise ValidationException(f"Invalid run_at: {config['run_at']!r}")


def parse_datetime(value):
    """Accept an ISO string or datetime from API payloads"""
    if value is None or isinstance(value, datetime):
        return ensure_utc(value)
    parsed = ensure_utc(value)
    if parsed is None:
        raise ValidationException(f"Invalid datetime: {value!r}")
    return parsed


def stop_reason(result, cancel_event):
    """"paused" or "cancelled" when the handler returned before finishing its work"""
    if isinstance(result, dict) and result.get("status") in (STOP_PAUSED, STOP_CANCELLED):
        return result["status"]
    if cancel_event is not None and cancel_event.is_set():
        return STOP_CANCELLED
    return None


def initial_next_run(schedule_type, schedule_config, now):
    """Interval jobs run on the first tick, cron jobs at their next fire time, once jobs at run_at"""
    config = schedule_config or {}
    if schedule_type == ScheduleType.CRON:
        return compute_next_run(schedule_type, config, now)
    if schedule_type == ScheduleType.ONCE and config.get("run_at"):
        return ensure_utc(config["run_at"])
    return None


class SchedulerService:
    def __init__(
        self,
        app,
        activity_service,
        notification_service=None,
        scraper=None,
        verifier=None,
        backup_manager=None,
        tick_seconds=30,
    ):
        self.app = app
        self.activity_service = activity_service
        self.notification_service = notification_service
        self.scraper = scraper
        self.verifier = verifier
        self.backup_manager = backup_manager
        self.tick_seconds = tick_seconds

        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self._running = {}
        self._lock = threading.Lock()
        self._handlers = {
            JobKind.SCRAPE_THREAD: self._run_scrape_thread,
            JobKind.VERIFY_LINKS: self._run_verify_links,
            JobKind.CLEANUP_OLD_ACTIVITIES: self._run_cleanup_old_activities,
            JobKind.CLEANUP_OLD_AUDIT_LOGS: self._run_cleanup_old_audit_logs,
            JobKind.DATABASE_BACKUP: self._run_database_backup,
            JobKind.CLEANUP_OLD_BACKUPS: self._run_cleanup_old_backups,
        }

    # --- lifecycle ---

    def start(self):
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            func=self.tick,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id="scheduled_jobs_tick",
            name="Scheduled jobs tick",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Scheduler started (tick every {self.tick_seconds}s)")

    def stop(self, wait=True, timeout=None):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        with self._lock:
            running = list(self._running.values())
        for _, cancel_event in running:
            cancel_event.set()
        if wait:
            for thread, _ in running:
                thread.join(timeout)
        logger.info("Scheduler stopped")

    def wait(self, timeout=None):
        """Block until the jobs running right now have finished"""
        with self._lock:
            threads = [thread for thread, _ in self._running.values()]
        for thread in threads:
            thread.join(timeout)

    def is_running(self, job_id):
        with self._lock:
            return job_id in self._running

    # --- dispatch ---

    def tick(self, now=None):
        """Launch every due job that is not already running. Returns the launched job ids."""
        now = ensure_utc(now) or now_utc()
        launched = []
        for job in self.get_due_jobs(now):
            if self._launch(job, now):
                launched.append(job["id"])
        if launched:
            logger.debug(f"Scheduler tick launched jobs {launched}")
        return launched

    def _launch(self, job, now):
        with self._lock:
            if job["id"] in self._running:
                logger.debug(f"Job {job['id']} ({job['name']}) still running, skipping")
                return False
            cancel_event = threading.Event()
            thread = threading.Thread(
                target=self._execute, args=(job, cancel_event, now), name=f"job-{job['id']}", daemon=True
            )
            self._running[job["id"]] = (thread, cancel_event)
        thread.start()
        return True

    def _execute(self, job, cancel_event, now):
        job_id, job_type = job["id"], job["job_type"]
        started = time.monotonic()
        scheduled_jobs_running.inc()
        status, result, error = "success", None, None
        try:
            with ensure_app_context(self.app):
                execution_id = ScheduledJobRepository.start_execution(job_id).id
            logger.info(f"Running scheduled job {job_id} ({job['name']}, {job_type})")
            try:
                handler = self._handlers.get(job_type)
                if handler is None:
                    raise ValidationException(f"Unknown job type: {job_type}", field="job_type")
                result = handler(job, cancel_event)
                stop = stop_reason(result, cancel_event)
                if stop == STOP_CANCELLED:
                    status, error = "failed", CANCELLED_MESSAGE
                elif stop == STOP_PAUSED:
                    status, error = "failed", "Paused before completion"
            except VidStashException as e:
                status, error = "failed", e.message
            # A crashing handler must not take the scheduler thread down with it
            except Exception as e:
                logger.error(f"Scheduled job {job_id} crashed: {e}", exc_info=True)
                status, error = "failed", str(e)

            duration = time.monotonic() - started
            duration_ms = int(duration * 1000)
            with ensure_app_context(self.app):
                ScheduledJobRepository.finish_execution(execution_id, status, result, error, duration_ms)
                self._record_run(job_id, status == "success", now)

            scheduled_job_executions_total.labels(job_type=job_type, outcome=status).inc()
            scheduled_job_duration_seconds.labels(job_type=job_type).observe(duration)
            if status == "success":
                logger.info(f"Scheduled job {job_id} succeeded in {duration_ms}ms")
            else:
                logger.warning(f"Scheduled job {job_id} failed: {error}")
            self._notify(job, status == "success", error, duration_ms)
        finally:
            scheduled_jobs_running.dec()
            with self._lock:
                self._running.pop(job_id, None)

    def _record_run(self, job_id, success, now):
        job = ScheduledJobRepository.get_by_id(job_id)
        if job is None:
            logger.info(f"Job {job_id} was deleted while running")
            return None

        fields = {
            "run_count": (job.run_count or 0) + 1,
            "last_run_at": now,
        }
        if success:
            fields["success_count"] = (job.success_count or 0) + 1
        else:
            fields["failure_count"] = (job.failure_count or 0) + 1

        if job.schedule_type == ScheduleType.ONCE:
            fields["enabled"] = False
            fields["next_run_at"] = None
        else:
            try:
                fields["next_run_at"] = compute_next_run(job.schedule_type, job.schedule_config, now)
            except ValueError as e:
                logger.error(f"Cannot compute next run for job {job_id}: {e}")
                fields["next_run_at"] = None

        return ScheduledJobRepository.update(job_id, **fields)

    def _notify(self, job, success, error, duration_ms):
        if not self.notification_service:
            return
        if success:
            message = f"Job '{job['name']}' completed in {duration_ms}ms"
        else:
            message = f"Job '{job['name']}' failed: {error}"
        self.notification_service.notify_job_completed(job["id"], job["job_type"], success, message)

    # --- handlers ---

    def _run_scrape_thread(self, job, cancel_event):
        if self.scraper is None:
            raise ValidationException("Scraper is not configured")
        config = job["schedule_config"]
        url = config.get("url")
        if job["target_id"] is not None:
            with ensure_app_context(self.app):
                thread = ScraperRepository.get_thread(job["target_id"])
                if thread is None:
                    raise NotFoundException(f"Thread {job['target_id']} not found")
                url = thread.url
        if not url:
            raise ValidationException("scrape_thread jobs need a target thread or a url")
        return self.scraper.scrape_thread_complete(url, cancel_event=cancel_event, force=bool(config.get("force")))

    def _run_verify_links(self, job, cancel_event):
        if self.verifier is None:
            raise ValidationException("Link verifier is not configured")
        if job["target_id"] is not None:
            return self.verifier.verify_thread_links(job["target_id"], cancel_event=cancel_event)
        config = job["schedule_config"]
        return self.verifier.verify_old_links(
            limit=config.get("limit"), max_age_days=config.get("max_age_days"), cancel_event=cancel_event
        )

    def _run_cleanup_old_activities(self, job, cancel_event):
        # timeout_minutes doubles as the age in days
        days = int(job["schedule_config"].get("timeout_minutes") or 30)
        return {"deleted": self.activity_service.clean_old(days), "days": days}

    def _run_cleanup_old_audit_logs(self, job, cancel_event):
        days = int(job["schedule_config"].get("days") or 90)
        with ensure_app_context(self.app):
            deleted = AuditLogRepository.delete_older_than(days)
        logger.info(f"Deleted {deleted} audit logs older than {days} days")
        return {"deleted": deleted, "days": days}

    def _run_database_backup(self, job, cancel_event):
        if self.backup_manager is None:
            raise ValidationException("Backup manager is not configured")
        try:
            backup = self.backup_manager.create_backup("automatic")
        except (OSError, VidStashException) as e:
            if self.notification_service:
                self.notification_service.notify_system_health_degraded("database_backup", f"Backup failed: {e}")
            raise
        if self.notification_service:
            self.notification_service.notify_backup_completed(backup)
        return backup

    def _run_cleanup_old_backups(self, job, cancel_event):
        if self.backup_manager is None:
            raise ValidationException("Backup manager is not configured")
        config = job["schedule_config"]
        deleted = self.backup_manager.cleanup_old_backups(
            retention_days=int(config.get("retention_days") or 30),
            keep_minimum=int(config.get("keep_minimum") or 3),
        )
        return {"deleted": deleted}

    # --- CRUD ---

    def create_job(
        self,
        name,
        job_type,
        schedule_type=ScheduleType.INTERVAL,
        schedule_config=None,
        target_type=None,
        target_id=None,
        enabled=True,
    ):
        if not name:
            raise ValidationException("Job name is required", field="name")
        if job_type not in self._handlers:
            raise ValidationException(f"Unknown job type: {job_type}", field="job_type")
        schedule_config = dict(schedule_config or {})
        validate_schedule(schedule_type, schedule_config)

        with ensure_app_context(self.app):
            job = ScheduledJobRepository.create(
                name=name,
                job_type=job_type,
                schedule_type=schedule_type,
                schedule_config=schedule_config,
                target_type=target_type,
                target_id=target_id,
                enabled=bool(enabled),
                next_run_at=initial_next_run(schedule_type, schedule_config, now_utc()),
            )
            data = job.to_dict()
        logger.info(f"Created scheduled job {data['id']} ({name}, {job_type}, {schedule_type})")
        return data

    def get_job(self, job_id):
        with ensure_app_context(self.app):
            job = ScheduledJobRepository.get_by_id(job_id)
            if job is None:
                raise NotFoundException(f"Job {job_id} not found")
            data = job.to_dict()
        data["is_running"] = self.is_running(job_id)
        return data

    def get_all_jobs(self):
        with ensure_app_context(self.app):
            jobs = [job.to_dict() for job in ScheduledJobRepository.get_all()]
        for job in jobs:
            job["is_running"] = self.is_running(job["id"])
        return jobs

    def update_job(self, job_id, **fields):
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationException(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with ensure_app_context(self.app):
            job = ScheduledJobRepository.get_by_id(job_id)
            if job is None:
                raise NotFoundException(f"Job {job_id} not found")

            schedule_type = fields.get("schedule_type", job.schedule_type)
            schedule_config = fields.get("schedule_config", job.schedule_config)
            if "schedule_type" in fields or "schedule_config" in fields:
                validate_schedule(schedule_type, schedule_config)
                if "next_run_at" not in fields:
                    fields["next_run_at"] = initial_next_run(schedule_type, schedule_config, now_utc())
            if "next_run_at" in fields:
                fields["next_run_at"] = parse_datetime(fields["next_run_at"])

            data = ScheduledJobRepository.update(job_id, **fields).to_dict()
        logger.info(f"Updated scheduled job {job_id}: {sorted(fields)}")
        return data

    def delete_job(self, job_id):
        with self._lock:
            running = self._running.get(job_id)
        if running is not None:
            running[1].set()
            logger.info(f"Cancelling running instance of job {job_id}")

        with ensure_app_context(self.app):
            if not ScheduledJobRepository.delete(job_id):
                raise NotFoundException(f"Job {job_id} not found")
        logger.info(f"Deleted scheduled job {job_id}")
        return True

    def run_job_now(self, job_id):
        job = self.get_job(job_id)
        if not self._launch(job, now_utc()):
            raise ValidationException(f"Job {job_id} is already running")
        return job

    def get_due_jobs(self, now=None):
        now = ensure_utc(now) or now_utc()
        with ensure_app_context(self.app):
            return [job.to_dict() for job in ScheduledJobRepository.get_due(now)]

    def get_execution_history(self, job_id=None, limit=50):
        with ensure_app_context(self.app):
            return [item.to_dict() for item in ScheduledJobRepository.get_history(job_id, limit)]

    def prune_history(self, days=30):
        with ensure_app_context(self.app):
            count = ScheduledJobRepository.delete_history_older_than(days)
        logger.info(f"Pruned {count} job execution records older than {days} days")
        return count

    def get_status(self):
        with self._lock:
            running = sorted(self._running)
        return {
            "scheduler_running": self.scheduler.running,
            "tick_seconds": self.tick_seconds,
            "running_jobs": running,
        }

