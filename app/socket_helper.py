import logging
import threading

logger = logging.getLogger('main')


def socketio_payload(event):
    """Socket.IO event name and payload for a hub event"""
    event_type = event.get('type', 'unknown')
    if 'data' in event:
        return event_type, event['data']
    return event_type, {key: value for key, value in event.items() if key != 'type'}


class SocketBridge:
    """Forwards hub events to Socket.IO clients from one background thread"""

    def __init__(self, hub, socketio, buffer_size=100):
        self.hub = hub
        self.socketio = socketio
        self.buffer_size = buffer_size
        self.forwarded = 0
        self._subscription = None
        self._thread = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._subscription = self.hub.subscribe(maxsize=self.buffer_size)
        self._thread = threading.Thread(target=self._forward, name='socketio-bridge', daemon=True)
        self._thread.start()
        logger.info("Socket.IO bridge started")

    def stop(self, timeout=5):
        if self._subscription is not None:
            self.hub.unsubscribe(self._subscription)
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        self._subscription = None
        logger.info("Socket.IO bridge stopped")

    def _forward(self):
        for event in self._subscription:
            name, payload = socketio_payload(event)
            try:
                self.socketio.emit(name, payload, namespace='/')
                self.forwarded += 1
            except (RuntimeError, ValueError, TypeError) as e:
                logger.error(f"Socket.IO emit failed for '{name}': {e}")
