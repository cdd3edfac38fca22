"""
Repository for Notification database operations
"""

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.notification import Notification
from utils import now_utc


class NotificationRepository:
    @staticmethod
    def create(**kwargs):
        """Create new Notification record"""
        try:
            item = Notification(**kwargs)
            db.session.add(item)
            db.session.commit()
            db.session.refresh(item)
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def get_by_id(id):
        return db.session.get(Notification, id)

    @staticmethod
    def get_all(unread_only=False, limit=50, offset=0):
        """Returns (items, total)"""
        query = Notification.query
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        total = query.count()
        items = query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def mark_as_read(id):
        try:
            item = db.session.get(Notification, id)
            if not item:
                return None
            item.is_read = True
            item.read_at = now_utc()
            db.session.commit()
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def mark_all_as_read():
        try:
            count = Notification.query.filter(Notification.is_read.is_(False)).update(
                {"is_read": True, "read_at": now_utc()}, synchronize_session=False
            )
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def delete(id):
        item = db.session.get(Notification, id)
        if not item:
            return False

        db.session.delete(item)
        db.session.commit()
        return True

    @staticmethod
    def stats():
        by_priority = (
            db.session.query(Notification.priority, func.count(Notification.id))
            .filter(Notification.is_read.is_(False))
            .group_by(Notification.priority)
            .all()
        )
        by_category = (
            db.session.query(Notification.category, func.count(Notification.id)).group_by(Notification.category).all()
        )
        return {
            "total": Notification.query.count(),
            "unread": Notification.query.filter(Notification.is_read.is_(False)).count(),
            "unread_by_priority": {priority: count for priority, count in by_priority},
            "by_category": {category: count for category, count in by_category},
        }
