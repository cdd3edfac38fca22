from constants import VIDEO_EXTENSIONS
from metrics import watched_libraries
from utils import now_utc
import os
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver
from watchdog.events import FileSystemEventHandler
import logging
import threading

# Retrieve main logger
logger = logging.getLogger("main")

SOURCE = "file_watcher"
ANALYSIS_SOURCE = "analysis_engine"


def is_video(path):
    if not path:
        return False
    filename = os.path.basename(path)
    # macOS metadata files
    if filename.startswith("._"):
        return False
    return os.path.splitext(filename)[1].lower() in VIDEO_EXTENSIONS


class LibraryWatcher:
    """One watchdog observer per library; emits companion events through `emit`.

    `emit(type, source, message, data, severity)` is usually
    CompanionService.emit_event.
    """

    def __init__(self, emit, settle_seconds=5, use_polling=False, health_interval=30):
        self.emit = emit
        self.settle_seconds = settle_seconds
        self.use_polling = use_polling
        self.health_interval = health_interval
        self.libraries = {}  # path -> {"name", "observer", "handler"}
        self._lock = threading.Lock()

        # Health monitoring attributes
        self.last_event_time = None
        self.event_count = 0
        self.error_count = 0
        self.last_error = None
        self.failed_libraries = []
        self._health_check_thread = None
        self._stop_health_check = threading.Event()

    @property
    def is_running(self):
        return self._health_check_thread is not None and self._health_check_thread.is_alive()

    def _new_observer(self):
        if self.use_polling:
            # Docker volumes and network shares do not deliver inotify events
            return PollingObserver(timeout=0.5)
        return Observer()

    def start(self, libraries):
        """Watch every library in `libraries` (dicts with name and path). Returns the watched paths."""
        for library in libraries:
            self.add_library(library["name"], library["path"])
        self._start_health_monitoring()
        logger.info(f"Library watcher started for {len(self.libraries)} libraries.")
        return list(self.libraries)

    def stop(self):
        logger.debug("Stopping library watcher...")
        self._stop_health_check.set()
        if self._health_check_thread and self._health_check_thread.is_alive():
            self._health_check_thread.join(timeout=5)
        self._health_check_thread = None

        for path in list(self.libraries):
            self.remove_library(path)
        logger.info("Library watcher stopped.")

    def add_library(self, name, path):
        path = os.path.abspath(path)
        with self._lock:
            if path in self.libraries:
                return False
        if not os.path.isdir(path):
            logger.warning(f"Library path {path} does not exist, not watching {name}.")
            return False

        handler = LibraryEventHandler(self, name, path, self.settle_seconds)
        observer = self._new_observer()
        try:
            observer.schedule(handler, path, recursive=True)
            observer.start()
        except OSError as e:
            logger.error(f"Failed to watch library {name} at {path}: {e}")
            self.error_count += 1
            self.last_error = str(e)
            return False

        with self._lock:
            self.libraries[path] = {"name": name, "observer": observer, "handler": handler}
            watched_libraries.set(len(self.libraries))
        logger.info(f"Watching library {name} at {path}")
        return True

    def remove_library(self, path):
        path = os.path.abspath(path)
        with self._lock:
            entry = self.libraries.pop(path, None)
            watched_libraries.set(len(self.libraries))
        if entry is None:
            logger.info(f"{path} not watched, nothing to do.")
            return False

        entry["handler"].cancel_pending()
        observer = entry["observer"]
        if observer.is_alive():
            observer.stop()
            observer.join(timeout=5)
        logger.info(f"Stopped watching {path}.")
        return True

    def _start_health_monitoring(self):
        if self.is_running:
            return
        self._stop_health_check.clear()
        self._health_check_thread = threading.Thread(
            target=self._health_check_loop, name="watcher-health", daemon=True
        )
        self._health_check_thread.start()

    def _health_check_loop(self):
        while not self._stop_health_check.wait(timeout=self.health_interval):
            self.check_health()

    def check_health(self):
        """Libraries whose observer died are dropped until the next restart. Returns their paths."""
        with self._lock:
            dead = [path for path, entry in self.libraries.items() if not entry["observer"].is_alive()]
        for path in dead:
            with self._lock:
                entry = self.libraries.pop(path, None)
                watched_libraries.set(len(self.libraries))
            if entry is None:
                continue
            entry["handler"].cancel_pending()
            self.error_count += 1
            self.last_error = f"Observer for {path} stopped"
            self.failed_libraries.append(path)
            logger.error(f"Watcher for library {entry['name']} ({path}) died, removed from monitoring until restart")
        return dead

    def record_event(self):
        self.last_event_time = now_utc()
        self.event_count += 1

    def get_status(self):
        with self._lock:
            libraries = [
                {
                    "name": entry["name"],
                    "path": path,
                    "alive": entry["observer"].is_alive(),
                    "pending_settles": entry["handler"].pending_count(),
                }
                for path, entry in self.libraries.items()
            ]
        return {
            "running": self.is_running,
            "libraries": libraries,
            "event_count": self.event_count,
            "last_event_time": self.last_event_time.isoformat() if self.last_event_time else None,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "failed_libraries": list(self.failed_libraries),
            "settle_seconds": self.settle_seconds,
        }


class LibraryEventHandler(FileSystemEventHandler):
    """Maps watchdog events for one library to companion events.

    A new file starts a settle timer; further writes to it re-arm the timer
    instead of producing file_modified. When the timer fires an `insight`
    event announces the file is ready for analysis.
    """

    def __init__(self, watcher, library_name, library_path, settle_seconds=5):
        self.watcher = watcher
        self.library_name = library_name
        self.library_path = library_path
        self.settle_seconds = settle_seconds
        self._settling = {}  # path -> threading.Timer
        self._lock = threading.Lock()

    def _emit(self, event_type, message, path, source=SOURCE, **extra):
        self.watcher.record_event()
        data = {"file_path": path, "file_name": os.path.basename(path), "library": self.library_name}
        data.update(extra)
        self.watcher.emit(event_type, source, message, data, "info")

    # --- settle timers ---

    def _arm(self, path):
        timer = threading.Timer(self.settle_seconds, self._settled, args=(path,))
        timer.daemon = True
        with self._lock:
            previous = self._settling.pop(path, None)
            self._settling[path] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _disarm(self, path):
        with self._lock:
            timer = self._settling.pop(path, None)
        if timer is not None:
            timer.cancel()
        return timer is not None

    def _is_settling(self, path):
        with self._lock:
            return path in self._settling

    def _settled(self, path):
        with self._lock:
            if self._settling.get(path) is None:
                return
            del self._settling[path]
        logger.debug(f"Watchdog: {path} settled")
        self._emit("insight", f"Analyzing new video in {self.library_name}", path, source=ANALYSIS_SOURCE)

    def pending_count(self):
        with self._lock:
            return len(self._settling)

    def cancel_pending(self):
        with self._lock:
            timers, self._settling = list(self._settling.values()), {}
        for timer in timers:
            timer.cancel()

    # --- watchdog callbacks ---

    def on_created(self, event):
        if event.is_directory or not is_video(event.src_path):
            return
        logger.info(f"Watchdog: File created - {event.src_path}")
        self._emit("file_added", f"New video detected: {os.path.basename(event.src_path)}", event.src_path)
        self._arm(event.src_path)

    def on_modified(self, event):
        if event.is_directory or not is_video(event.src_path):
            return
        if self._is_settling(event.src_path):
            self._arm(event.src_path)
            return
        self._emit("file_modified", f"Video modified: {os.path.basename(event.src_path)}", event.src_path)

    def on_deleted(self, event):
        if event.is_directory or not is_video(event.src_path):
            return
        logger.info(f"Watchdog: File deleted - {event.src_path}")
        self._disarm(event.src_path)
        self._emit("file_removed", f"Video removed: {os.path.basename(event.src_path)}", event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        src_video, dest_video = is_video(event.src_path), is_video(event.dest_path)

        if src_video and dest_video:
            was_settling = self._disarm(event.src_path)
            self._emit(
                "file_renamed",
                f"Video renamed: {os.path.basename(event.dest_path)}",
                event.dest_path,
                old_path=event.src_path,
            )
            if was_settling:
                self._arm(event.dest_path)
        elif src_video:
            self._disarm(event.src_path)
            self._emit("file_removed", f"Video removed: {os.path.basename(event.src_path)}", event.src_path)
        elif dest_video:
            self._emit("file_added", f"New video detected: {os.path.basename(event.dest_path)}", event.dest_path)
            self._arm(event.dest_path)
