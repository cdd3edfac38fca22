"""
Models: ScheduledJob, JobExecutionHistory
"""

from db import db
from utils import now_utc, isoformat


class ScheduleType:
    INTERVAL = "interval"
    CRON = "cron"
    ONCE = "once"

    ALL = (INTERVAL, CRON, ONCE)


class JobKind:
    SCRAPE_THREAD = "scrape_thread"
    VERIFY_LINKS = "verify_links"
    CLEANUP_OLD_ACTIVITIES = "cleanup_old_activities"
    CLEANUP_OLD_AUDIT_LOGS = "cleanup_old_audit_logs"
    DATABASE_BACKUP = "database_backup"
    CLEANUP_OLD_BACKUPS = "cleanup_old_backups"


class ScheduledJob(db.Model):
    """Declarative recurrence definition executed by the scheduler"""

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    job_type = db.Column(db.String(50), nullable=False)
    schedule_type = db.Column(db.String(20), nullable=False, default=ScheduleType.INTERVAL)
    schedule_config = db.Column(db.JSON, default=dict)
    target_type = db.Column(db.String(50))
    target_id = db.Column(db.Integer)
    enabled = db.Column(db.Boolean, nullable=False, default=True, index=True)

    last_run_at = db.Column(db.DateTime)
    next_run_at = db.Column(db.DateTime, index=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    success_count = db.Column(db.Integer, nullable=False, default=0)
    failure_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=now_utc)
    updated_at = db.Column(db.DateTime, default=now_utc, onupdate=now_utc)

    history = db.relationship(
        "JobExecutionHistory", backref="job", cascade="all, delete-orphan", passive_deletes=True
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "job_type": self.job_type,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config or {},
            "target_type": self.target_type,
            "target_id": self.target_id,
            "enabled": bool(self.enabled),
            "last_run_at": isoformat(self.last_run_at),
            "next_run_at": isoformat(self.next_run_at),
            "run_count": self.run_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class JobExecutionHistory(db.Model):
    __tablename__ = "job_execution_history"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey("scheduled_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = db.Column(db.DateTime, default=now_utc, nullable=False)
    completed_at = db.Column(db.DateTime)
    status = db.Column(db.String(20), nullable=False, default="running")  # running, success, failed
    result_json = db.Column(db.JSON)
    error_message = db.Column(db.Text)
    duration_ms = db.Column(db.Integer)

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "status": self.status,
            "result": self.result_json,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
        }
