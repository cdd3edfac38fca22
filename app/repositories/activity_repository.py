"""
Repository for Activity database operations
"""

from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.activity import Activity, ActivityStatus
from utils import now_utc


class ActivityRepository:
    """Repository for Activity database operations"""

    @staticmethod
    def get_by_id(id):
        """Get Activity by ID"""
        return db.session.get(Activity, id)

    @staticmethod
    def create(**kwargs):
        """Create new Activity record"""
        try:
            item = Activity(**kwargs)
            db.session.add(item)
            db.session.commit()
            db.session.refresh(item)
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def save(item):
        """Commit pending changes on an already attached record"""
        try:
            db.session.add(item)
            db.session.commit()
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def delete(id):
        """Delete Activity record"""
        item = db.session.get(Activity, id)
        if not item:
            return False

        db.session.delete(item)
        db.session.commit()
        return True

    @staticmethod
    def get_recent(limit=50):
        return Activity.query.order_by(Activity.started_at.desc(), Activity.id.desc()).limit(limit).all()

    @staticmethod
    def get_by_status(status, limit=50, offset=0):
        query = Activity.query.filter(Activity.status == status)
        total = query.count()
        items = query.order_by(Activity.started_at.desc(), Activity.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def count_by_status():
        """Map of status -> count"""
        rows = db.session.query(Activity.status, func.count(Activity.id)).group_by(Activity.status).all()
        return {status: count for status, count in rows}

    @staticmethod
    def count_active():
        """Running or pending records"""
        return Activity.query.filter(
            Activity.status.in_((ActivityStatus.RUNNING, ActivityStatus.PENDING))
        ).count()

    @staticmethod
    def get_running(limit=10):
        return (
            Activity.query.filter(Activity.status == ActivityStatus.RUNNING)
            .order_by(Activity.started_at.desc(), Activity.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_interrupted():
        """Running rows that are not paused; left behind by a previous process"""
        return Activity.query.filter(Activity.status == ActivityStatus.RUNNING, Activity.paused.is_(False)).all()

    @staticmethod
    def get_completed_since(cursor, limit=100):
        query = Activity.query.filter(Activity.status == ActivityStatus.COMPLETED, Activity.completed_at.isnot(None))
        if cursor is not None:
            query = query.filter(Activity.completed_at > cursor.replace(tzinfo=None))
        return query.order_by(Activity.completed_at.asc(), Activity.id.asc()).limit(limit).all()

    @staticmethod
    def delete_terminal_older_than(days):
        """Delete completed/failed records older than `days`. Returns count."""
        cutoff = (now_utc() - timedelta(days=days)).replace(tzinfo=None)
        try:
            count = Activity.query.filter(
                Activity.status.in_(ActivityStatus.TERMINAL),
                Activity.completed_at.isnot(None),
                Activity.completed_at < cutoff,
            ).delete(synchronize_session=False)
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def delete_all():
        try:
            count = Activity.query.delete(synchronize_session=False)
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def stats_by_type():
        """List of (task_type, status, count) rows"""
        return (
            db.session.query(Activity.task_type, Activity.status, func.count(Activity.id))
            .group_by(Activity.task_type, Activity.status)
            .all()
        )
