"""JSON shapes shared by the HTTP API and the event stream.

Both stores hand out objects with the same attribute names (Django models
for the database store, dataclasses for the in-memory one), so these
helpers work on either.
"""


def epoch_ms(value):
    if value is None:
        return None
    return int(round(value.timestamp() * 1000))


def ticket_to_dict(ticket):
    if ticket is None:
        return None
    data = {
        'id': str(ticket.id),
        'service': ticket.service,
        'number': ticket.number,
        'code': ticket.code,
        'status': ticket.status,
        'windowId': ticket.window_id,
        'createdAt': epoch_ms(ticket.created_at),
    }
    # Optional fields are left out entirely when unset
    for key, attr in (('notes', 'notes'), ('ownerName', 'owner_name'), ('woreda', 'woreda')):
        value = getattr(ticket, attr)
        if value is not None:
            data[key] = value
    return data


def window_to_dict(window):
    if window is None:
        return None
    current = window.current_ticket_id
    return {
        'id': window.id,
        'name': window.name,
        'currentTicketId': str(current) if current is not None else None,
        'busy': window.busy,
        'updatedAt': epoch_ms(window.updated_at),
    }


def display_row(service, code=None, window_id=None, next_code=None):
    return {
        'service': service,
        'nowServing': {'code': code, 'windowId': window_id},
        'next': next_code,
    }
