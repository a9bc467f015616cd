import pytest

from notifications.hub import EventHub
from queue_system.memory_store import InMemoryQueueStore
from queue_system.store import reset_store

SERVICES = ['S1', 'S2', 'S3']


@pytest.fixture(autouse=True)
def fresh_store():
    reset_store()
    yield
    reset_store()


@pytest.fixture
def hub():
    return EventHub()


@pytest.fixture
def events(hub):
    """Subscription on the test hub; call ``drain(events)`` to collect what was published."""
    sub = hub.subscribe()
    yield sub
    hub.unsubscribe(sub)


@pytest.fixture
def store(hub):
    return InMemoryQueueStore(hub=hub, services=SERVICES, window_count=6)


def drain(subscription):
    out = []
    while True:
        event = subscription.get(timeout=0)
        if event is None:
            return out
        out.append(event)
