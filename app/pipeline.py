"""
Pipeline - builds the services from settings and owns their lifecycle.

The Flask app keeps the instance under `app.extensions["vidstash"]`; routes
reach it through `current_pipeline()`.
"""

import logging
import threading

import requests
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from backup import BackupManager
from db import ensure_app_context
from event_hub import ActivityHub
from exceptions import VidStashException
from file_watcher import LibraryWatcher
from jobs.scheduler import JobScheduler
from repositories.library_repository import LibraryRepository
from services.activity_service import ActivityService
from services.companion_service import CompanionService
from services.jdownloader_service import JDownloaderService
from services.link_verification_service import LinkVerificationService
from services.notification_service import NotificationService
from services.scheduler_service import SchedulerService
from services.scraper_service import ScraperService
from socket_helper import SocketBridge

logger = logging.getLogger("main")

EXTENSION_KEY = "vidstash"


def current_pipeline():
    return current_app.extensions[EXTENSION_KEY]


class Pipeline:
    def __init__(self, app, config, settings, http_session=None):
        self.app = app
        self.config = config
        self.settings = settings

        self.hub = ActivityHub(buffer_size=settings["hub"]["buffer_size"])
        self.activities = ActivityService(app, self.hub)
        self.notifications = NotificationService(app, self.hub)
        self.backups = BackupManager(config.database_path, config.backup_dir)
        self.scraper = ScraperService(
            app, self.activities, self.notifications, session=http_session, settings=settings["scraper"]
        )
        self.verifier = LinkVerificationService(
            app, self.activities, self.notifications, session=http_session, settings=settings["verifier"]
        )
        self.scheduler = SchedulerService(
            app,
            self.activities,
            self.notifications,
            scraper=self.scraper,
            verifier=self.verifier,
            backup_manager=self.backups,
            tick_seconds=settings["scheduler"]["tick_seconds"],
        )
        self.companion = CompanionService(app, self.hub, self.activities, settings["companion"])
        self.watcher = LibraryWatcher(self.companion.emit_event, **settings["watcher"])
        self.job_scheduler = JobScheduler()
        self.jdownloader = JDownloaderService()
        self.bridge = None
        self.workers_started = False
        self._tasks = []

    def start(self, start_workers=True, socketio=None):
        """Start the hub, recover interrupted work, then the background workers"""
        self.hub.start()
        self.activities.reset_interrupted()
        self.scraper.load_session_cookie()

        if not start_workers:
            logger.info("Background workers disabled")
            return

        with ensure_app_context(self.app):
            libraries = [{"name": lib.name, "path": lib.path} for lib in LibraryRepository.get_all()]
        self.watcher.start(libraries)
        self.companion.start()
        self.scheduler.start()
        self.job_scheduler.init_app(
            self.verifier,
            self.scheduler,
            sweep_interval_hours=self.settings["verifier"]["sweep_interval_hours"],
            history_retention_days=self.settings["scheduler"]["history_retention_days"],
        )
        if socketio is not None:
            self.bridge = SocketBridge(self.hub, socketio, buffer_size=self.settings["hub"]["buffer_size"] * 10)
            self.bridge.start()
        self.workers_started = True
        logger.info("Pipeline workers started")

    def add_library(self, name, path):
        with ensure_app_context(self.app):
            library = LibraryRepository.create(name, path).to_dict()
        if self.workers_started:
            library["watching"] = self.watcher.add_library(name, path)
        return library

    def spawn(self, name, fn, *args, **kwargs):
        """Run a long worker call on a daemon thread.

        The call's own activity records expected failures; anything else fails
        the `activity_id` keyword argument when one was passed.
        """

        def run():
            try:
                fn(*args, **kwargs)
            except (VidStashException, SQLAlchemyError, requests.RequestException) as e:
                logger.error(f"Background task {name} failed: {e}")
            except Exception as e:
                logger.exception(f"Background task {name} crashed: {e}")
                if kwargs.get("activity_id") is not None:
                    self.activities.fail_task(kwargs["activity_id"], f"Background task crashed: {e}")

        thread = threading.Thread(target=run, name=name, daemon=True)
        self._tasks = [t for t in self._tasks if t.is_alive()]
        self._tasks.append(thread)
        thread.start()
        return thread

    def wait_for_tasks(self, timeout=None):
        for thread in list(self._tasks):
            thread.join(timeout)

    def shutdown(self):
        logger.info("Shutting down pipeline...")
        if self.workers_started:
            self.job_scheduler.shutdown()
            self.scheduler.stop(wait=True, timeout=10)
            self.companion.stop()
            self.watcher.stop()
            if self.bridge is not None:
                self.bridge.stop()
            self.workers_started = False
        self.hub.stop()

    def get_status(self):
        return {
            "hub": self.hub.stats(),
            "activities": self.activities.get_status(),
            "scheduler": self.scheduler.get_status(),
            "watcher": self.watcher.get_status(),
            "companion": self.companion.get_status(),
            "builtin_jobs": self.job_scheduler.get_jobs() if self.workers_started else [],
        }
