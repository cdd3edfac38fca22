"""
Model: Notification
"""

from db import db
from utils import now_utc, isoformat


class Priority:
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(50), nullable=False, index=True)
    priority = db.Column(db.String(20), nullable=False, default=Priority.NORMAL)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text)
    category = db.Column(db.String(50), default="system")
    action_url = db.Column(db.String(255))
    action_label = db.Column(db.String(100))
    metadata_json = db.Column("metadata", db.JSON, default=dict)
    related_entity_type = db.Column(db.String(50))
    related_entity_id = db.Column(db.Integer)
    is_read = db.Column(db.Boolean, default=False, index=True)
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=now_utc, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "action_url": self.action_url,
            "action_label": self.action_label,
            "metadata": self.metadata_json or {},
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "is_read": bool(self.is_read),
            "read_at": isoformat(self.read_at),
            "created_at": isoformat(self.created_at),
        }
