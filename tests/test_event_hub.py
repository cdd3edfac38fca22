"""
Tests for the activity hub fan-out
"""
import logging
import threading
import time

import pytest

from event_hub import ActivityHub, HubLogHandler


def drain(subscription, count, timeout=2.0):
    events = []
    deadline = time.monotonic() + timeout
    while len(events) < count and time.monotonic() < deadline:
        event = subscription.get(timeout=0.1)
        if event is not None:
            events.append(event)
    return events


@pytest.fixture
def hub():
    hub = ActivityHub(buffer_size=10)
    hub.start()
    yield hub
    hub.stop()


def wait_until_idle(hub, timeout=2.0):
    deadline = time.monotonic() + timeout
    while hub.stats()['queued'] and time.monotonic() < deadline:
        time.sleep(0.01)
    # let the pump finish offering the last event it took off the intake
    time.sleep(0.05)


class TestActivityHub:

    def test_every_subscriber_gets_every_event(self, hub):
        first = hub.subscribe()
        second = hub.subscribe()

        hub.broadcast_system('idle')
        hub.broadcast_activity({'id': 1})

        for sub in (first, second):
            events = drain(sub, 2)
            assert [e['type'] for e in events] == ['system', 'activity_update']
            assert events[0]['event'] == 'idle'
            assert events[1]['data'] == {'id': 1}

    def test_events_arrive_in_publication_order(self, hub):
        sub = hub.subscribe(maxsize=100)
        for i in range(50):
            hub.broadcast({'type': 'activity_update', 'data': {'id': i}})

        events = drain(sub, 50)
        assert [e['data']['id'] for e in events] == list(range(50))

    def test_slow_consumer_only_loses_its_own_events(self, hub):
        slow = hub.subscribe(maxsize=10)
        fast = hub.subscribe(maxsize=100)
        received = []

        def consume():
            for event in fast:
                received.append(event)
                if len(received) == 100:
                    break

        consumer = threading.Thread(target=consume)
        consumer.start()

        started = time.monotonic()
        for i in range(100):
            hub.broadcast({'type': 'activity_update', 'data': {'id': i}})
        # publishing never waits on subscribers
        assert time.monotonic() - started < 1.0

        consumer.join(timeout=5)
        assert len(received) == 100

        wait_until_idle(hub)
        assert slow.pending() == 10
        assert slow.dropped == 90
        assert fast.dropped == 0
        assert hub.stats()['dropped'] == 90

    def test_unsubscribed_client_receives_nothing(self, hub):
        sub = hub.subscribe()
        hub.unsubscribe(sub)
        hub.broadcast_system('idle')
        wait_until_idle(hub)

        assert sub.closed
        assert sub.pending() == 0
        assert hub.stats()['subscribers'] == 0

    def test_subscription_context_manager_closes(self, hub):
        with hub.subscribe() as sub:
            assert hub.stats()['subscribers'] == 1
        assert sub.closed
        assert hub.stats()['subscribers'] == 0

    def test_stop_closes_subscribers(self):
        hub = ActivityHub()
        hub.start()
        sub = hub.subscribe()
        hub.stop()

        assert not hub.is_running
        assert sub.closed
        # iteration ends once the subscription is closed
        assert list(sub) == []

    def test_console_log_envelope(self, hub):
        sub = hub.subscribe()
        hub.broadcast_console_log('WARNING', 'main', 'disk almost full', timestamp='2026-01-01T00:00:00+00:00')

        event = drain(sub, 1)[0]
        assert event == {
            'type': 'console_log',
            'data': {
                'level': 'WARNING',
                'logger': 'main',
                'message': 'disk almost full',
                'timestamp': '2026-01-01T00:00:00+00:00',
            },
        }


class TestHubLogHandler:

    def test_warnings_are_forwarded(self, hub):
        sub = hub.subscribe()
        logger = logging.getLogger('test.hub.handler')
        handler = HubLogHandler(hub)
        logger.addHandler(handler)
        try:
            logger.info('not forwarded')
            logger.warning('forwarded %s', 'warning')
        finally:
            logger.removeHandler(handler)

        events = drain(sub, 1)
        assert len(events) == 1
        assert events[0]['data']['level'] == 'WARNING'
        assert events[0]['data']['message'] == 'forwarded warning'
        assert events[0]['data']['logger'] == 'test.hub.handler'
