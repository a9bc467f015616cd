"""
EventHub: fan-out of queue events to connected display/status streams.

Delivery is best-effort and in-process only:
- every subscription owns its own FIFO, so events arrive in emission order
- nothing is persisted or replayed; late subscribers start from a snapshot
- the subscriber registry is guarded by a lock because Django serves
  requests on several threads
"""

import logging
import queue
import threading
import uuid

from .events import QueueEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One open event stream."""

    def __init__(self):
        self.id = uuid.uuid4().hex
        self._events = queue.Queue()
        self._closed = threading.Event()

    @property
    def closed(self):
        return self._closed.is_set()

    def deliver(self, event):
        if self.closed:
            return False
        self._events.put_nowait(event)
        return True

    def get(self, timeout=None):
        """Wait for the next event; None when the timeout expires first."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self):
        return self._events.qsize()

    def close(self):
        self._closed.set()


class EventHub:
    """Registry of subscriptions plus the publish operation."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = {}

    def subscribe(self):
        sub = Subscription()
        with self._lock:
            self._subscribers[sub.id] = sub
        logger.debug("Subscriber %s connected (%d open)", sub.id, self.subscriber_count)
        return sub

    def unsubscribe(self, subscription):
        subscription.close()
        with self._lock:
            self._subscribers.pop(subscription.id, None)
        logger.debug("Subscriber %s disconnected", subscription.id)

    def publish(self, event_type, payload):
        """Send an event to every open subscription; returns how many got it."""
        event = QueueEvent(event_type, payload)
        with self._lock:
            delivered = 0
            for sub in list(self._subscribers.values()):
                if sub.deliver(event):
                    delivered += 1
        return delivered

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._subscribers)


hub = EventHub()
