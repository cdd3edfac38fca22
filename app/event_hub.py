"""
Activity hub: in-process fan-out of pipeline events to live subscribers.

Publishers never block. Every event goes onto an unbounded intake queue and a
single pump thread copies it into each subscriber's bounded buffer. When a
subscriber's buffer is full the event is dropped for that subscriber only.
"""

import logging
import queue
import threading

from metrics import hub_events_published_total, hub_events_dropped_total, hub_subscribers
from utils import now_utc

logger = logging.getLogger("main")

_STOP = object()


class Subscription:
    """Bounded mailbox handed out by ActivityHub.subscribe()"""

    def __init__(self, hub, maxsize):
        self._hub = hub
        self._queue = queue.Queue(maxsize=maxsize)
        self.maxsize = maxsize
        self.dropped = 0
        self.delivered = 0
        self.closed = False

    def _offer(self, event):
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            hub_events_dropped_total.inc()
            return False
        self.delivered += 1
        return True

    def get(self, timeout=None):
        """Next event, or None when nothing arrives within `timeout` seconds"""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self):
        return self._queue.qsize()

    def close(self):
        self._hub.unsubscribe(self)

    def __iter__(self):
        while not self.closed:
            event = self.get(timeout=0.5)
            if event is not None:
                yield event

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class ActivityHub:
    def __init__(self, buffer_size=10):
        self.buffer_size = buffer_size
        self._intake = queue.Queue()
        self._subscribers = []
        self._lock = threading.Lock()
        self._thread = None
        self.published = 0

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._thread = threading.Thread(target=self._pump, name="activity-hub", daemon=True)
        self._thread.start()
        logger.info("Activity hub started")

    def stop(self, timeout=5):
        if not self.is_running:
            return
        self._intake.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

        with self._lock:
            subscribers, self._subscribers = self._subscribers, []
        for sub in subscribers:
            sub.closed = True
        hub_subscribers.set(0)
        logger.info("Activity hub stopped")

    def subscribe(self, maxsize=None):
        sub = Subscription(self, maxsize or self.buffer_size)
        with self._lock:
            self._subscribers.append(sub)
            hub_subscribers.set(len(self._subscribers))
        logger.debug(f"Hub subscriber added (buffer={sub.maxsize})")
        return sub

    def unsubscribe(self, sub):
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)
            hub_subscribers.set(len(self._subscribers))
        sub.closed = True

    def broadcast(self, event):
        """Queue `event` for delivery. Never blocks the caller."""
        self._intake.put(event)
        self.published += 1
        hub_events_published_total.labels(type=event.get("type", "unknown")).inc()

    def _pump(self):
        while True:
            event = self._intake.get()
            if event is _STOP:
                break
            with self._lock:
                subscribers = list(self._subscribers)
            for sub in subscribers:
                if not sub._offer(event):
                    logger.debug(f"Hub subscriber buffer full, dropped {event.get('type')} event")

    # --- envelope helpers ---

    def broadcast_activity(self, activity):
        self.broadcast({"type": "activity_update", "data": activity})

    def broadcast_status(self, status):
        self.broadcast({"type": "status_update", "data": status})

    def broadcast_notification(self, notification):
        self.broadcast({"type": "notification", "data": notification})

    def broadcast_console_log(self, level, logger_name, message, timestamp=None):
        self.broadcast(
            {
                "type": "console_log",
                "data": {
                    "level": level,
                    "logger": logger_name,
                    "message": message,
                    "timestamp": timestamp or now_utc().isoformat(),
                },
            }
        )

    def broadcast_system(self, event_name):
        self.broadcast({"type": "system", "event": event_name})

    def stats(self):
        with self._lock:
            subscribers = list(self._subscribers)
        return {
            "running": self.is_running,
            "subscribers": len(subscribers),
            "published": self.published,
            "queued": self._intake.qsize(),
            "dropped": sum(sub.dropped for sub in subscribers),
            "buffer_size": self.buffer_size,
        }


class HubLogHandler(logging.Handler):
    """Forwards WARNING and above to hub clients as console_log events"""

    def __init__(self, hub, level=logging.WARNING):
        super().__init__(level)
        self.hub = hub

    def emit(self, record):
        try:
            self.hub.broadcast_console_log(logging.getLevelName(record.levelno), record.name, record.getMessage())
        except Exception:
            self.handleError(record)
