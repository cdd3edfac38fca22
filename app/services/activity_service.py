"""
Activity service: durable task records that double as the pause/cancel
control channel for long-running workers.

Every mutation is published on the activity hub as an `activity_update`
followed by a `status_update`.
"""

import logging
import threading

from db import db, ensure_app_context
from exceptions import ActivityStateException, NotFoundException, ValidationException
from metrics import activities_total
from models.activity import ActivityStatus, TaskType
from repositories.activity_repository import ActivityRepository
from utils import now_utc

logger = logging.getLogger("main")

STOP_PAUSED = "paused"
STOP_CANCELLED = "cancelled"
CANCELLED_MESSAGE = "Cancelled by user"


class ActivityService:
    def __init__(self, app, hub):
        self.app = app
        self.hub = hub
        self._resumers = {}
        self._resumer_threads = []

    # --- publishing ---

    def _publish(self, activity_dict):
        if not self.hub:
            return
        self.hub.broadcast_activity(activity_dict)
        self.hub.broadcast_status(self._status_counts(limit=10))

    def _publish_idle_if_quiet(self):
        if self.hub and ActivityRepository.count_active() == 0:
            self.hub.broadcast_system("idle")

    def _status_counts(self, limit=10):
        counts = ActivityRepository.count_by_status()
        return {
            "running_tasks": counts.get(ActivityStatus.RUNNING, 0),
            "pending_tasks": counts.get(ActivityStatus.PENDING, 0),
            "completed_tasks": counts.get(ActivityStatus.COMPLETED, 0),
            "failed_tasks": counts.get(ActivityStatus.FAILED, 0),
            "current_tasks": [a.to_dict() for a in ActivityRepository.get_running(limit)],
        }

    def _load(self, id):
        activity = ActivityRepository.get_by_id(id)
        if activity is None:
            raise NotFoundException(f"Activity {id} not found")
        return activity

    # --- CRUD ---

    def create(self, task_type, message="", details=None, status=ActivityStatus.RUNNING):
        if task_type not in TaskType.ALL:
            raise ValidationException(f"Unknown task type: {task_type}", field="task_type")
        if status not in ActivityStatus.ALL:
            raise ValidationException(f"Unknown activity status: {status}")

        with ensure_app_context(self.app):
            activity = ActivityRepository.create(
                task_type=task_type,
                status=status,
                message=message or "",
                progress=0,
                started_at=now_utc(),
                details=dict(details or {}),
                paused=False,
            )
            data = activity.to_dict()
            self._publish(data)

        activities_total.labels(task_type=task_type, status=status).inc()
        logger.debug(f"Activity {data['id']} created ({task_type}): {message}")
        return data

    def update(self, id, status=None, message=None, progress=None, details=None, completed=False):
        if status is not None and status not in ActivityStatus.ALL:
            raise ValidationException(f"Unknown activity status: {status}")

        with ensure_app_context(self.app):
            activity = self._load(id)
            if activity.is_terminal:
                raise ActivityStateException(f"Activity {id} is already {activity.status}")

            if status is not None:
                activity.status = status
            if message is not None:
                activity.message = message
            if progress is not None:
                activity.progress = max(0, min(100, int(progress)))
            if details is not None:
                merged = dict(activity.details or {})
                merged.update(details)
                activity.details = merged
            if completed or activity.is_terminal:
                activity.completed_at = now_utc()
            if activity.is_terminal:
                activity.paused = False
                activity.paused_at = None

            ActivityRepository.save(activity)
            data = activity.to_dict()
            self._publish(data)
            if data["status"] in ActivityStatus.TERMINAL:
                activities_total.labels(task_type=data["task_type"], status=data["status"]).inc()
                self._publish_idle_if_quiet()

        return data

    def get(self, id):
        with ensure_app_context(self.app):
            return self._load(id).to_dict()

    def delete(self, id):
        with ensure_app_context(self.app):
            if not ActivityRepository.delete(id):
                raise NotFoundException(f"Activity {id} not found")
            if self.hub:
                self.hub.broadcast_status(self._status_counts())
        return True

    # --- task helpers used by workers ---

    def start_task(self, task_type, message="", details=None):
        return self.create(task_type, message, details, status=ActivityStatus.RUNNING)

    def complete_task(self, id, message=None):
        try:
            return self.update(id, status=ActivityStatus.COMPLETED, message=message, progress=100, completed=True)
        except ActivityStateException as e:
            logger.warning(f"Cannot complete activity {id}: {e.message}")
            return self.get(id)

    def fail_task(self, id, error_message):
        try:
            return self.update(id, status=ActivityStatus.FAILED, message=error_message, completed=True)
        except ActivityStateException as e:
            logger.warning(f"Cannot fail activity {id}: {e.message}")
            return self.get(id)

    def update_progress(self, id, progress, message=None):
        try:
            return self.update(id, progress=progress, message=message)
        except ActivityStateException as e:
            logger.debug(f"Ignoring progress for activity {id}: {e.message}")
            return self.get(id)

    # --- queries ---

    def get_status(self, limit=10):
        with ensure_app_context(self.app):
            return self._status_counts(limit)

    def get_recent(self, limit=50):
        with ensure_app_context(self.app):
            return [a.to_dict() for a in ActivityRepository.get_recent(limit)]

    def get_by_status(self, status, limit=50, offset=0):
        if status not in ActivityStatus.ALL:
            raise ValidationException(f"Unknown activity status: {status}")
        with ensure_app_context(self.app):
            items, total = ActivityRepository.get_by_status(status, limit, offset)
            return [a.to_dict() for a in items], total

    def get_completed_since(self, cursor, limit=100):
        with ensure_app_context(self.app):
            return [a.to_dict() for a in ActivityRepository.get_completed_since(cursor, limit)]

    def get_stats_by_type(self):
        stats = {}
        with ensure_app_context(self.app):
            for task_type, status, count in ActivityRepository.stats_by_type():
                entry = stats.setdefault(task_type, {"total": 0})
                entry[status] = count
                entry["total"] += count
        return stats

    def clean_old(self, days=30):
        with ensure_app_context(self.app):
            count = ActivityRepository.delete_terminal_older_than(days)
            if count and self.hub:
                self.hub.broadcast_status(self._status_counts())
        logger.info(f"Cleaned {count} activities older than {days} days")
        return count

    def clear_all(self):
        with ensure_app_context(self.app):
            count = ActivityRepository.delete_all()
            if self.hub:
                self.hub.broadcast_status(self._status_counts())
                self.hub.broadcast_system("idle")
        logger.info(f"Cleared {count} activities")
        return count

    # --- pause / resume / cancel ---

    def register_resumer(self, task_type, fn):
        """`fn(activity_dict)` continues a paused task from its checkpoint"""
        self._resumers[task_type] = fn

    def pause(self, id):
        with ensure_app_context(self.app):
            activity = self._load(id)
            if activity.status != ActivityStatus.RUNNING:
                raise ActivityStateException(f"Only running activities can be paused (activity {id} is {activity.status})")
            activity.paused = True
            activity.paused_at = now_utc()
            ActivityRepository.save(activity)
            data = activity.to_dict()
            self._publish(data)
        logger.info(f"Activity {id} paused")
        return data

    def resume(self, id):
        with ensure_app_context(self.app):
            activity = self._load(id)
            if activity.status != ActivityStatus.RUNNING or not activity.paused:
                raise ActivityStateException(f"Activity {id} is not paused")
            activity.paused = False
            activity.paused_at = None
            ActivityRepository.save(activity)
            data = activity.to_dict()
            self._publish(data)

        resumer = self._resumers.get(data["task_type"])
        if resumer is None:
            logger.warning(f"No resumer registered for {data['task_type']}, activity {id} resumed without a worker")
            return data

        thread = threading.Thread(target=self._run_resumer, args=(resumer, data), name=f"resume-{id}", daemon=True)
        self._resumer_threads.append(thread)
        thread.start()
        logger.info(f"Activity {id} resumed from checkpoint {data['checkpoint']}")
        return data

    def _run_resumer(self, resumer, activity):
        try:
            resumer(activity)
        except Exception as e:
            logger.error(f"Resumed activity {activity['id']} crashed: {e}", exc_info=True)
            self.fail_task(activity["id"], f"Resume failed: {e}")

    def wait_for_resumers(self, timeout=None):
        for thread in list(self._resumer_threads):
            thread.join(timeout)
        self._resumer_threads = [t for t in self._resumer_threads if t.is_alive()]

    def cancel(self, id):
        with ensure_app_context(self.app):
            activity = self._load(id)
            if activity.is_terminal:
                raise ActivityStateException(f"Activity {id} is already {activity.status}")
        logger.info(f"Activity {id} cancelled")
        return self.update(id, status=ActivityStatus.FAILED, message=CANCELLED_MESSAGE, completed=True)

    def save_checkpoint(self, id, checkpoint):
        with ensure_app_context(self.app):
            activity = self._load(id)
            activity.checkpoint = dict(checkpoint) if checkpoint is not None else None
            ActivityRepository.save(activity)
            return activity.to_dict()

    def should_stop(self, id):
        """None to keep going, "paused" or "cancelled" to stop at the next safe point"""
        if id is None:
            return None
        with ensure_app_context(self.app):
            activity = ActivityRepository.get_by_id(id)
            if activity is None:
                return STOP_CANCELLED
            # Another session may have written the row
            db.session.refresh(activity)
            if activity.is_terminal:
                return STOP_CANCELLED
            if activity.paused:
                return STOP_PAUSED
        return None

    def reset_interrupted(self):
        """Running rows left behind by a previous process become paused"""
        with ensure_app_context(self.app):
            stale = ActivityRepository.get_interrupted()
            for activity in stale:
                activity.paused = True
                activity.paused_at = now_utc()
                activity.message = f"{activity.message or ''} (interrupted by restart)".strip()
                ActivityRepository.save(activity)
        if stale:
            logger.warning(f"Startup: {len(stale)} interrupted activities marked as paused")
        else:
            logger.info("Startup: No interrupted activities found")
        return len(stale)
