"""
Repository for AppSetting and AIAuditLog database operations
"""

from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.appsetting import AppSetting, AIAuditLog
from utils import now_utc


class AppSettingRepository:
    """Key/value settings persisted in the database"""

    @staticmethod
    def get_value(key, default=None):
        item = db.session.get(AppSetting, key)
        return item.value if item else default

    @staticmethod
    def set_value(key, value):
        try:
            item = db.session.get(AppSetting, key)
            if item is None:
                item = AppSetting(key=key)
                db.session.add(item)
            item.value = value
            item.updated_at = now_utc()
            db.session.commit()
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e


class AuditLogRepository:
    @staticmethod
    def create(action, details=None):
        try:
            item = AIAuditLog(action=action, details=details)
            db.session.add(item)
            db.session.commit()
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def delete_older_than(days):
        cutoff = (now_utc() - timedelta(days=days)).replace(tzinfo=None)
        try:
            count = AIAuditLog.query.filter(AIAuditLog.created_at < cutoff).delete(synchronize_session=False)
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def count():
        return AIAuditLog.query.count()
