import logging

from django.conf import settings
from django.db import connection
from django.http import StreamingHttpResponse
from django.views.decorators.http import require_GET

from queue_system.store import get_store

from .events import INIT, KEEPALIVE_FRAME, QueueEvent

logger = logging.getLogger(__name__)


def _release_connection():
    """Hand back the database connection the snapshot opened on this thread.

    A stream stays open for as long as the display is on; only the snapshot
    reads the database. Inside an atomic block (tests) the connection is
    left alone.
    """
    if not connection.in_atomic_block:
        connection.close()


def stream_events(store, event_hub, keepalive=None):
    """Yield SSE frames: a snapshot first, then every published event.

    The subscription is registered before the snapshot is taken so nothing
    published in between is lost, and removed when the generator is closed.
    """
    timeout = keepalive if keepalive is not None else settings.QUEUE_SSE_KEEPALIVE_SECONDS
    subscription = event_hub.subscribe()
    try:
        init = QueueEvent(INIT, store.snapshot()).to_sse()
        _release_connection()
        yield init
        while True:
            event = subscription.get(timeout=timeout)
            if event is None:
                yield KEEPALIVE_FRAME
                continue
            yield event.to_sse()
    finally:
        event_hub.unsubscribe(subscription)


@require_GET
def event_stream(request):
    """Long-lived server-sent-events stream for displays and status pages."""
    logger.info("Event stream opened from %s", request.META.get("REMOTE_ADDR"))
    store = get_store()
    response = StreamingHttpResponse(
        stream_events(store, store.hub),
        content_type='text/event-stream',
    )
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response
