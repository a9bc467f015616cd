import json
import logging
from functools import wraps

from django.db import DatabaseError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from announcements.speech import announce
from .exceptions import QueueError, TransferTargetNotFoundError
from .serializers import ticket_to_dict, window_to_dict
from .store import get_store

logger = logging.getLogger(__name__)


def _json_body(request):
    """Parse a JSON request body; anything malformed counts as empty."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        logger.warning('Ignoring malformed JSON body on %s', request.path)
        return {}
    return data if isinstance(data, dict) else {}


def queue_errors(view):
    """Turn store errors into ``{"error": ...}`` responses."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except QueueError as e:
            return JsonResponse({'error': e.message}, status=e.status_code)
        except DatabaseError as e:
            logger.exception('Database error in %s', view.__name__)
            return JsonResponse({'error': str(e) or 'Database error'}, status=400)
    return wrapper


@csrf_exempt
@require_POST
@queue_errors
def create_ticket(request):
    data = _json_body(request)
    ticket = get_store().create_ticket(
        data.get('service'),
        notes=data.get('notes'),
        owner_name=data.get('ownerName'),
        woreda=data.get('woreda'),
    )
    return JsonResponse(ticket_to_dict(ticket), status=201)


@require_GET
@queue_errors
def ticket_status(request, code):
    return JsonResponse(get_store().ticket_status(code))


@require_GET
@queue_errors
def list_windows(request):
    windows = get_store().list_windows()
    return JsonResponse([window_to_dict(w) for w in windows], safe=False)


@csrf_exempt
@require_POST
@queue_errors
def call_next(request, window_id):
    data = _json_body(request)
    result = get_store().call_next(window_id, data.get('service'))
    if result is None:
        return JsonResponse({'message': 'No tickets waiting'})
    announce(result.ticket.code, result.window.name)
    return JsonResponse({
        'window': window_to_dict(result.window),
        'ticket': ticket_to_dict(result.ticket),
        'display': result.display,
    })


@csrf_exempt
@require_POST
@queue_errors
def recall(request, window_id):
    data = _json_body(request)
    result = get_store().recall(window_id, reason=data.get('reason'))
    announce(result.ticket.code, result.window.name)
    return JsonResponse({
        'ok': True,
        'ticket': ticket_to_dict(result.ticket),
        'display': result.display,
    })


@csrf_exempt
@require_POST
@queue_errors
def complete(request, window_id):
    result = get_store().complete(window_id)
    return JsonResponse({
        'ok': True,
        'ticket': ticket_to_dict(result.ticket),
        'window': window_to_dict(result.window),
        'display': result.display,
    })


@csrf_exempt
@require_POST
@queue_errors
def skip(request, window_id):
    data = _json_body(request)
    result = get_store().skip(window_id, reason=data.get('reason'))
    return JsonResponse({
        'ok': True,
        'ticket': ticket_to_dict(result.ticket),
        'window': window_to_dict(result.window),
        'display': result.display,
    })


@csrf_exempt
@require_POST
@queue_errors
def transfer(request, window_id):
    data = _json_body(request)
    try:
        target_id = int(data.get('targetWindowId'))
    except (TypeError, ValueError):
        raise TransferTargetNotFoundError(data.get('targetWindowId'))
    result = get_store().transfer(window_id, target_id)
    announce(result.ticket.code, result.target.name)
    return JsonResponse({
        'ok': True,
        'ticket': ticket_to_dict(result.ticket),
        'source': window_to_dict(result.source),
        'target': window_to_dict(result.target),
        'display': result.display,
    })


@require_GET
@queue_errors
def display(request):
    return JsonResponse({'rows': get_store().display_rows()})


@csrf_exempt
@require_POST
@queue_errors
def seed(request):
    get_store().seed_demo()
    return JsonResponse({'ok': True})
