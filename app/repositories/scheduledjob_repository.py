"""
Repository for ScheduledJob and JobExecutionHistory database operations
"""

from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.scheduler import ScheduledJob, JobExecutionHistory
from utils import now_utc


class ScheduledJobRepository:
    """Repository for ScheduledJob database operations"""

    @staticmethod
    def get_all():
        return ScheduledJob.query.order_by(ScheduledJob.id.asc()).all()

    @staticmethod
    def get_by_id(id):
        return db.session.get(ScheduledJob, id)

    @staticmethod
    def create(**kwargs):
        try:
            item = ScheduledJob(**kwargs)
            db.session.add(item)
            db.session.commit()
            db.session.refresh(item)
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def update(id, **kwargs):
        try:
            item = db.session.get(ScheduledJob, id)
            if not item:
                return None

            for key, value in kwargs.items():
                if hasattr(item, key):
                    setattr(item, key, value)

            db.session.commit()
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def delete(id):
        item = db.session.get(ScheduledJob, id)
        if not item:
            return False

        db.session.delete(item)
        db.session.commit()
        return True

    @staticmethod
    def get_due(now):
        """Enabled jobs whose next_run_at is unset or not later than `now`"""
        naive_now = now.replace(tzinfo=None)
        return (
            ScheduledJob.query.filter(
                ScheduledJob.enabled.is_(True),
                or_(ScheduledJob.next_run_at.is_(None), ScheduledJob.next_run_at <= naive_now),
            )
            .order_by(ScheduledJob.id.asc())
            .all()
        )

    # --- execution history ---

    @staticmethod
    def start_execution(job_id):
        try:
            item = JobExecutionHistory(job_id=job_id, started_at=now_utc(), status="running")
            db.session.add(item)
            db.session.commit()
            db.session.refresh(item)
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def finish_execution(execution_id, status, result=None, error_message=None, duration_ms=None):
        try:
            item = db.session.get(JobExecutionHistory, execution_id)
            if not item:
                return None
            item.completed_at = now_utc()
            item.status = status
            item.result_json = result
            item.error_message = error_message
            item.duration_ms = duration_ms
            db.session.commit()
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def get_history(job_id=None, limit=50):
        query = JobExecutionHistory.query
        if job_id is not None:
            query = query.filter(JobExecutionHistory.job_id == job_id)
        return query.order_by(JobExecutionHistory.started_at.desc(), JobExecutionHistory.id.desc()).limit(limit).all()

    @staticmethod
    def delete_history_older_than(days):
        cutoff = (now_utc() - timedelta(days=days)).replace(tzinfo=None)
        try:
            count = JobExecutionHistory.query.filter(
                JobExecutionHistory.status != "running",
                JobExecutionHistory.started_at < cutoff,
            ).delete(synchronize_session=False)
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e
