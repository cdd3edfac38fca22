"""
Companion monitor: watches library health and completed activities and
pushes suggestions and follow-ups to hub clients.

Three daemon loops run while started: library health (hourly), periodic
analysis (every 6 hours) and the activity tailer (every 5 seconds).
Recommendations live in memory only and are lost on restart.
"""

import logging
import threading
import time
from collections import deque
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from constants import DEFAULT_SETTINGS
from db import ensure_app_context
from exceptions import VidStashException
from metrics import companion_events_total
from models.activity import TaskType
from repositories.library_repository import LibraryRepository
from utils import ensure_utc, isoformat, now_utc

logger = logging.getLogger("main")

EVENT_TYPES = ("file_added", "file_removed", "file_modified", "file_renamed", "insight", "notification")
SEVERITIES = ("info", "warning", "error", "critical")
RECENT_EVENTS = 100


def _count(details, key):
    try:
        return int((details or {}).get(key) or 0)
    except (TypeError, ValueError):
        return 0


def follow_up_message(activity):
    """Reply for a completed task that was recommended earlier"""
    task_type = activity["task_type"]
    details = activity.get("details") or {}
    if task_type == TaskType.PERFORMER_THUMBNAIL_GENERATION:
        return (
            f"🎉 Great! I see you generated thumbnails for {_count(details, 'total_count')} performers. "
            "The Performers page should load much faster now. Your library performance is improving!"
        )
    if task_type == TaskType.THUMBNAIL_GENERATION:
        return "🎉 Excellent! Video thumbnails have been generated. Your library browsing experience should be much smoother now!"
    if task_type == TaskType.THUMBNAIL_GENERATION_BATCH:
        return (
            f"✅ Excellent! Video thumbnails generated for {_count(details, 'total_count')} files. "
            "Browse performance is now optimized."
        )
    if task_type == TaskType.SCANNING:
        return "🔍 Library scan completed! I've indexed all the new content. Your library is now up to date."
    if task_type == TaskType.PERFORMER_SCAN:
        return (
            f"👤 Performer scan finished! Processed {_count(details, 'scanned_count')} performers. "
            "All performer previews are now updated."
        )
    if task_type == TaskType.METADATA:
        return "📋 Metadata fetching complete! Your content now has enriched information from external sources."
    if task_type == TaskType.AI_TAGGING:
        return "🏷️ AI tagging finished! Your videos are now automatically categorized and easier to discover."
    return f"✅ Task '{task_type}' completed successfully! Thanks for keeping your library optimized."


ACKNOWLEDGMENTS = {
    TaskType.PERFORMER_THUMBNAIL_GENERATION: "✅ Performer thumbnails generated! Your Performers page should load significantly faster now.",
    TaskType.THUMBNAIL_GENERATION: "✅ Video thumbnails generated successfully! Your videos now have preview thumbnails.",
    TaskType.THUMBNAIL_GENERATION_BATCH: "✅ Video thumbnails generated successfully! Browse performance improved.",
    TaskType.SCANNING: "✅ Library scan complete! All content has been indexed.",
    TaskType.PERFORMER_SCAN: "✅ Performer scan complete! All performer previews updated.",
}


def acknowledgment_message(activity):
    """Reply for a task the user started on their own; empty for minor kinds"""
    return ACKNOWLEDGMENTS.get(activity["task_type"], "")


class CompanionService:
    def __init__(self, app, hub, activity_service, settings=None):
        settings = settings or {}
        defaults = DEFAULT_SETTINGS["companion"]
        self.app = app
        self.hub = hub
        self.activity_service = activity_service
        self.health_interval = settings.get("health_interval", defaults["health_interval"])
        self.analysis_interval = settings.get("analysis_interval", defaults["analysis_interval"])
        self.activity_poll_interval = settings.get("activity_poll_interval", defaults["activity_poll_interval"])
        self.summary_interval = timedelta(
            hours=settings.get("summary_interval_hours", defaults["summary_interval_hours"])
        )
        self.thresholds = dict(defaults["thresholds"], **settings.get("thresholds", {}))

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads = []
        self._recommendations = {}
        self._events = deque(maxlen=RECENT_EVENTS)
        self._cursor = now_utc()
        self.started_at = None
        self._last_summary_at = None
        self.events_processed = 0

    # --- lifecycle ---

    @property
    def is_running(self):
        return any(thread.is_alive() for thread in self._threads)

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self.started_at = now_utc()
        self._last_summary_at = self.started_at
        with self._lock:
            self._cursor = self.started_at

        loops = [
            ("companion-health", self.health_interval, self.check_library_health, True),
            ("companion-analysis", self.analysis_interval, self.perform_periodic_analysis, False),
            ("companion-activity", self.activity_poll_interval, self.check_activity_log_updates, False),
        ]
        self._threads = [
            threading.Thread(target=self._loop, args=(interval, fn, run_first), name=name, daemon=True)
            for name, interval, fn, run_first in loops
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Companion monitor started")

    def stop(self, timeout=5):
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Companion monitor stopped")

    def _loop(self, interval, fn, run_first):
        if run_first and not self._stop_event.is_set():
            self._run_safely(fn)
        while not self._stop_event.wait(interval):
            self._run_safely(fn)

    def _run_safely(self, fn):
        try:
            fn()
        except (SQLAlchemyError, VidStashException) as e:
            logger.error(f"Companion check {fn.__name__} failed: {e}")
        except Exception as e:
            logger.exception(f"Companion check {fn.__name__} crashed: {e}")

    # --- events ---

    def emit_event(self, type, source, message, data=None, severity="info"):
        if type not in EVENT_TYPES:
            logger.debug(f"Companion event with unusual type {type}")
        if severity not in SEVERITIES:
            severity = "info"

        event = {
            "type": type,
            "source": source,
            "message": message,
            "data": dict(data or {}),
            "severity": severity,
            "timestamp": now_utc().isoformat(),
        }
        with self._lock:
            self._events.append(event)
            self.events_processed += 1

        if self.hub:
            self.hub.broadcast_notification(event)
        companion_events_total.labels(type=type, severity=severity).inc()

        if severity in ("warning", "error", "critical"):
            logger.warning(f"Companion [{source}] {message}")
        else:
            logger.debug(f"Companion [{source}] {message}")
        return event

    def get_recent_events(self, limit=20):
        with self._lock:
            events = list(self._events)
        return events[-limit:] if limit else events

    # --- recommendations ---

    def track_recommendation(self, rec_type, task_type, message, context=None):
        """Remember a suggestion until an activity of `task_type` completes. One per rec_type."""
        recommendation = {
            "id": f"{rec_type}_{time.time_ns()}",
            "type": rec_type,
            "task_type": task_type,
            "message": message,
            "suggested_at": now_utc().isoformat(),
            "context": dict(context or {}),
        }
        with self._lock:
            self._recommendations[rec_type] = recommendation
        return recommendation["id"]

    def get_recommendations(self):
        with self._lock:
            recommendations = list(self._recommendations.values())
        return sorted(recommendations, key=lambda r: r["suggested_at"])

    def _take_recommendation(self, task_type):
        with self._lock:
            for rec_type, recommendation in self._recommendations.items():
                if recommendation["task_type"] == task_type:
                    return self._recommendations.pop(rec_type)
        return None

    # --- library health ---

    def _library_counts(self):
        with ensure_app_context(self.app):
            return {
                "video_count": LibraryRepository.count_videos(),
                "performer_count": LibraryRepository.count_performers(),
                "tag_count": LibraryRepository.count_tags(),
                "studio_count": LibraryRepository.count_studios(),
                "performers_with_thumbnails": LibraryRepository.count_performers_with_thumbnails(),
                "performers_with_previews": LibraryRepository.count_performers_with_previews(),
                "performers_without_thumbnails": LibraryRepository.count_performers_preview_without_thumbnail(),
                "performers_without_metadata": LibraryRepository.count_performers_without_metadata(),
                "videos_without_previews": LibraryRepository.count_videos_without_previews(),
            }

    def check_library_health(self, now=None):
        """Emit one notification per crossed threshold. Returns the emitted events."""
        now = ensure_utc(now) or now_utc()
        counts = self._library_counts()
        limits = self.thresholds
        emitted = []

        def notify(message, data, severity="info"):
            emitted.append(self.emit_event("notification", "health_monitor", message, data, severity))

        video_count = counts["video_count"]
        performer_count = counts["performer_count"]
        tag_count = counts["tag_count"]

        missing_thumbnails = counts["performers_without_thumbnails"]
        if missing_thumbnails > limits["performers_missing_thumbnails"]:
            message = (
                f"⚡ Performance Opportunity: {missing_thumbnails} performers have preview videos but no thumbnails. "
                "Generate thumbnails for faster page loading!"
            )
            context = {
                "performers_without_thumbnails": missing_thumbnails,
                "performers_with_previews": counts["performers_with_previews"],
            }
            self.track_recommendation(
                "performance_optimization", TaskType.PERFORMER_THUMBNAIL_GENERATION, message, context
            )
            notify(message, dict(context, action="generate_performer_thumbnails"))

        if video_count > limits["tagging_min_videos"] and tag_count < limits["tagging_max_tags"]:
            notify(
                f"📋 Organization Tip: You have {video_count} videos but only {tag_count} tags. "
                "Consider using Smart Tagging to better organize your library.",
                {"video_count": video_count, "tag_count": tag_count, "action": "smart_tagging"},
                "warning",
            )

        if video_count > limits["linking_min_videos"] and performer_count < limits["linking_max_performers"]:
            notify(
                f"🔗 Metadata Alert: {video_count} videos detected with only {performer_count} performers. "
                "Try Auto-Link Performers to improve organization.",
                {"video_count": video_count, "performer_count": performer_count, "action": "auto_link_performers"},
                "warning",
            )

        without_previews = counts["videos_without_previews"]
        if without_previews > limits["previews_missing"] and video_count > limits["previews_min_videos"]:
            coverage = (video_count - without_previews) / video_count * 100
            notify(
                f"🎬 Preview Coverage: Only {coverage:.1f}% of videos have previews. "
                "Generate previews for better browsing experience.",
                {
                    "videos_without_previews": without_previews,
                    "total_videos": video_count,
                    "coverage_percent": coverage,
                    "action": "generate_previews",
                },
            )

        missing_metadata = counts["performers_without_metadata"]
        if missing_metadata > limits["performers_missing_metadata"]:
            notify(
                f"📊 Metadata Incomplete: {missing_metadata} performers are missing metadata. "
                "Fetch from the upstream metadata source for richer information.",
                {"performers_without_metadata": missing_metadata, "action": "fetch_metadata"},
            )

        if self._last_summary_at is None:
            self._last_summary_at = now
        elif now - self._last_summary_at >= self.summary_interval:
            with_previews = counts["performers_with_previews"]
            coverage = counts["performers_with_thumbnails"] / with_previews * 100 if with_previews else 0.0
            uptime_hours = int((now - (self.started_at or self._last_summary_at)).total_seconds() // 3600)
            notify(
                f"📈 Daily Library Report: {video_count} videos, {performer_count} performers, "
                f"{tag_count} tags, {counts['studio_count']} studios. "
                f"Performer thumbnail coverage: {coverage:.1f}%",
                {
                    "video_count": video_count,
                    "performer_count": performer_count,
                    "tag_count": tag_count,
                    "studio_count": counts["studio_count"],
                    "thumbnail_coverage": coverage,
                    "uptime_hours": uptime_hours,
                },
            )
            self._last_summary_at = now

        return emitted

    def perform_periodic_analysis(self):
        counts = self._library_counts()
        logger.info(
            f"🔍 Companion: periodic analysis - {counts['video_count']} videos, "
            f"{counts['performer_count']} performers, {counts['tag_count']} tags, "
            f"{len(self.get_recommendations())} open recommendations"
        )
        return counts

    # --- activity tailer ---

    def check_activity_log_updates(self):
        """React to activities completed since the last check. Returns how many were processed."""
        with self._lock:
            cursor = self._cursor
        activities = self.activity_service.get_completed_since(cursor)

        for activity in activities:
            self._process_completed_activity(activity)
            completed_at = ensure_utc(activity["completed_at"])
            if completed_at is not None:
                with self._lock:
                    if self._cursor is None or completed_at > self._cursor:
                        self._cursor = completed_at
        return len(activities)

    def _process_completed_activity(self, activity):
        recommendation = self._take_recommendation(activity["task_type"])
        if recommendation is not None:
            message = follow_up_message(activity)
        else:
            message = acknowledgment_message(activity)

        if message:
            self.emit_event(
                "notification",
                "activity_monitor",
                message,
                {
                    "activity_id": activity["id"],
                    "task_type": activity["task_type"],
                    "was_recommended": recommendation is not None,
                    "completion_time": activity["completed_at"],
                    "details": activity.get("details") or {},
                },
            )

        self._analyze_completion_impact(activity)

    def _analyze_completion_impact(self, activity):
        task_type = activity["task_type"]
        if task_type == TaskType.PERFORMER_THUMBNAIL_GENERATION:
            with ensure_app_context(self.app):
                missing = LibraryRepository.count_videos_without_thumbnails()
            if missing > self.thresholds["videos_missing_thumbnails"]:
                self.emit_event(
                    "notification",
                    "activity_monitor",
                    f"💡 Next optimization: {missing} videos don't have thumbnails. "
                    "Consider generating them for even better performance!",
                    {"videos_needing_thumbnails": missing, "action": "generate_video_thumbnails"},
                )
        elif task_type == TaskType.SCANNING:
            with ensure_app_context(self.app):
                missing = LibraryRepository.count_videos_without_metadata()
            if missing > self.thresholds["videos_missing_metadata"]:
                self.emit_event(
                    "notification",
                    "activity_monitor",
                    f"📋 Suggestion: {missing} videos have minimal metadata. Fetch metadata to enrich your library!",
                    {"videos_without_metadata": missing, "action": "fetch_metadata"},
                )

    def get_status(self):
        with self._lock:
            recommendations = len(self._recommendations)
            cursor = self._cursor
            events_processed = self.events_processed
        uptime = (now_utc() - self.started_at).total_seconds() if self.started_at else 0
        return {
            "running": self.is_running,
            "started_at": isoformat(self.started_at),
            "uptime_seconds": int(uptime),
            "events_processed": events_processed,
            "recommendations": recommendations,
            "last_activity_check": isoformat(cursor),
        }
