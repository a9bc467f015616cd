"""Typed events pushed to display/status subscribers."""

import json
from dataclasses import dataclass
from typing import Any

from django.core.serializers.json import DjangoJSONEncoder

INIT = 'init'
WINDOW_UPDATED = 'window.updated'
TICKET_CREATED = 'ticket.created'
TICKET_UPDATED = 'ticket.updated'
DISPLAY_UPDATED = 'display.updated'

EVENT_TYPES = (INIT, WINDOW_UPDATED, TICKET_CREATED, TICKET_UPDATED, DISPLAY_UPDATED)

KEEPALIVE_FRAME = ': keepalive\n\n'


@dataclass(frozen=True)
class QueueEvent:
    type: str
    payload: Any

    def __post_init__(self):
        if self.type not in EVENT_TYPES:
            raise ValueError(f"unknown event type: {self.type}")

    def to_sse(self):
        """Render the event as one server-sent-events frame."""
        data = json.dumps(self.payload, cls=DjangoJSONEncoder, separators=(',', ':'))
        return f"event: {self.type}\ndata: {data}\n\n"
