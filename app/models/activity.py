"""Activity model.

This module only contains the SQLAlchemy model.
State transitions live in `services/activity_service.py`.
"""

from db import db
from utils import now_utc, isoformat


class TaskType:
    SCANNING = "scanning"
    INDEXING = "indexing"
    THUMBNAIL_GENERATION = "thumbnail_generation"
    THUMBNAIL_GENERATION_BATCH = "thumbnail_generation_batch"
    PERFORMER_THUMBNAIL_GENERATION = "performer_thumbnail_generation"
    PERFORMER_SCAN = "performer_scan"
    VIDEO_SCAN = "video_scan"
    METADATA = "metadata"
    AI_TAGGING = "ai_tagging"
    SCRAPER_THREAD = "scraper_thread"
    FORUM_SCRAPE = "forum_scrape"
    LINK_VERIFICATION = "link_verification"
    VIDEO_CONVERSION = "video_conversion"

    ALL = (
        SCANNING,
        INDEXING,
        THUMBNAIL_GENERATION,
        THUMBNAIL_GENERATION_BATCH,
        PERFORMER_THUMBNAIL_GENERATION,
        PERFORMER_SCAN,
        VIDEO_SCAN,
        METADATA,
        AI_TAGGING,
        SCRAPER_THREAD,
        FORUM_SCRAPE,
        LINK_VERIFICATION,
        VIDEO_CONVERSION,
    )


class ActivityStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (PENDING, RUNNING, COMPLETED, FAILED)
    TERMINAL = (COMPLETED, FAILED)


class Activity(db.Model):
    """Durable record of one unit of work; also the pause/cancel control channel"""

    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    task_type = db.Column(db.String(50), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=ActivityStatus.RUNNING, index=True)
    message = db.Column(db.Text, default="")
    progress = db.Column(db.Integer, nullable=False, default=0)
    started_at = db.Column(db.DateTime, default=now_utc, nullable=False)
    completed_at = db.Column(db.DateTime, index=True)
    details = db.Column(db.JSON, default=dict)

    paused = db.Column(db.Boolean, nullable=False, default=False)
    paused_at = db.Column(db.DateTime)
    checkpoint = db.Column(db.JSON)

    __table_args__ = (db.Index("idx_activity_status_completed", "status", "completed_at"),)

    @property
    def is_terminal(self):
        return self.status in ActivityStatus.TERMINAL

    def to_dict(self):
        return {
            "id": self.id,
            "task_type": self.task_type,
            "status": self.status,
            "message": self.message or "",
            "progress": self.progress,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "details": self.details or {},
            "paused": bool(self.paused),
            "paused_at": isoformat(self.paused_at),
            "checkpoint": self.checkpoint,
        }
