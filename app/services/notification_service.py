"""
Notification service: persisted user-facing notices, pushed to hub clients
as `notification` events when created.
"""

import logging

from db import ensure_app_context
from exceptions import NotFoundException, ValidationException
from models.notification import Priority
from repositories.notification_repository import NotificationRepository
from utils import format_duration

logger = logging.getLogger("main")

PRIORITIES = (Priority.LOW, Priority.NORMAL, Priority.HIGH, Priority.URGENT)


class NotificationService:
    def __init__(self, app, hub=None):
        self.app = app
        self.hub = hub

    def create(
        self,
        type,
        title,
        message="",
        priority=Priority.NORMAL,
        category="system",
        action_url=None,
        action_label=None,
        metadata=None,
        related_entity_type=None,
        related_entity_id=None,
    ):
        if priority not in PRIORITIES:
            raise ValidationException(f"Unknown notification priority: {priority}")

        with ensure_app_context(self.app):
            notification = NotificationRepository.create(
                type=type,
                priority=priority,
                title=title,
                message=message,
                category=category,
                action_url=action_url,
                action_label=action_label,
                metadata_json=dict(metadata or {}),
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
            )
            data = notification.to_dict()

        if self.hub:
            self.hub.broadcast_notification(data)
        logger.info(f"Notification [{priority}] {title}: {message}")
        return data

    def get_all(self, unread_only=False, limit=50, offset=0):
        with ensure_app_context(self.app):
            items, total = NotificationRepository.get_all(unread_only, limit, offset)
            return [n.to_dict() for n in items], total

    def mark_as_read(self, id):
        with ensure_app_context(self.app):
            notification = NotificationRepository.mark_as_read(id)
            if notification is None:
                raise NotFoundException(f"Notification {id} not found")
            return notification.to_dict()

    def mark_all_as_read(self):
        with ensure_app_context(self.app):
            return NotificationRepository.mark_all_as_read()

    def delete(self, id):
        with ensure_app_context(self.app):
            if not NotificationRepository.delete(id):
                raise NotFoundException(f"Notification {id} not found")
        return True

    def get_stats(self):
        with ensure_app_context(self.app):
            return NotificationRepository.stats()

    # --- domain helpers ---

    def notify_scrape_completed(self, thread_id, title, posts_found, links_found, duration_seconds, is_incremental):
        duration_str = format_duration(duration_seconds)
        priority = Priority.NORMAL

        if is_incremental:
            message = f"🔄 Incremental update: {posts_found} new posts, {links_found} download links • {duration_str}"
            if posts_found == 0:
                message = f"✓ Thread up-to-date: No new posts found • {duration_str}"
                priority = Priority.LOW
        else:
            message = f"✨ New thread scraped: {posts_found} posts, {links_found} download links • {duration_str}"
            if links_found > 50:
                priority = Priority.HIGH

        return self.create(
            type="scrape_completed",
            title="Scrape Completed",
            message=message,
            priority=priority,
            category="scraper",
            action_url=f"/scraper/{thread_id}",
            action_label="View Thread",
            related_entity_type="thread",
            related_entity_id=thread_id,
            metadata={
                "thread_title": title,
                "posts_found": posts_found,
                "links_found": links_found,
                "duration_ms": int(duration_seconds * 1000),
                "is_incremental": is_incremental,
            },
        )

    def notify_job_completed(self, job_id, job_type, success, message):
        if success:
            notification_type, priority, title = "job_completed", Priority.NORMAL, f"Job Completed: {job_type}"
        else:
            notification_type, priority, title = "job_failed", Priority.HIGH, f"Job Failed: {job_type}"

        return self.create(
            type=notification_type,
            title=title,
            message=message,
            priority=priority,
            category="scheduler",
            action_url="/scheduler",
            action_label="View Scheduler",
            related_entity_type="job",
            related_entity_id=job_id,
        )

    def notify_links_verified(self, thread_id, title, total_links, dead_links, active_links=0, expired_links=0):
        priority = Priority.HIGH if dead_links > total_links / 2 else Priority.NORMAL
        return self.create(
            type="links_verified",
            title="Link Verification Complete",
            message=f"{dead_links}/{total_links} links dead in: {title}",
            priority=priority,
            category="downloads",
            action_url=f"/scraper/{thread_id}",
            action_label="View Links",
            related_entity_type="thread",
            related_entity_id=thread_id,
            metadata={
                "total_links": total_links,
                "dead_links": dead_links,
                "active_links": active_links,
                "expired_links": expired_links,
            },
        )

    def notify_system_health_degraded(self, component, details):
        return self.create(
            type="system_health_degraded",
            title="System Health Degraded",
            message=f"{component}: {details}",
            priority=Priority.URGENT,
            category="system",
            action_url="/system-health",
            action_label="View System Health",
            metadata={"component": component, "details": details},
        )

    def notify_backup_completed(self, backup):
        return self.create(
            type="backup_completed",
            title="Backup Completed",
            message=f"Database backup {backup['name']} created ({backup['size']} bytes)",
            priority=Priority.LOW,
            category="system",
            action_url="/system/backups",
            action_label="View Backups",
            metadata=backup,
        )
