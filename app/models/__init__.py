"""
Models package

One module per concern; each model registers itself on the shared
`db` from `db.py`.
"""

from .activity import Activity, ActivityStatus, TaskType
from .library import Library, Video, Performer, Tag, Studio
from .scraper import ScrapedThread, ScrapedPost, DownloadLink, LinkStatus
from .scheduler import ScheduledJob, JobExecutionHistory, ScheduleType, JobKind
from .notification import Notification, Priority
from .appsetting import AppSetting, AIAuditLog

__all__ = [
    "Activity",
    "ActivityStatus",
    "TaskType",
    "Library",
    "Video",
    "Performer",
    "Tag",
    "Studio",
    "ScrapedThread",
    "ScrapedPost",
    "DownloadLink",
    "LinkStatus",
    "ScheduledJob",
    "JobExecutionHistory",
    "ScheduleType",
    "JobKind",
    "Notification",
    "Priority",
    "AppSetting",
    "AIAuditLog",
]
