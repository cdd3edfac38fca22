"""
Models: AppSetting key/value store and the AI audit log pruned by the scheduler
"""

from db import db
from utils import now_utc


class AppSetting(db.Model):
    __tablename__ = "app_settings"

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, default=now_utc, onupdate=now_utc)


class AIAuditLog(db.Model):
    __tablename__ = "ai_audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(100), nullable=False)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=now_utc, index=True)
