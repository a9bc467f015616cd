"""Spoken "now serving" announcements for the front desk.

Speech runs on a background thread so a slow or missing TTS engine never
delays the window operator's request. Disabled unless
``QUEUE_SPEECH_ENABLED`` is set.
"""
import logging
import threading

import pyttsx3
from django.conf import settings

logger = logging.getLogger(__name__)

# pyttsx3 engines are not safe to drive from several threads at once
_engine_lock = threading.Lock()


def announcement_text(ticket_code, window_name):
    return f"Ticket {ticket_code}, please proceed to {window_name}"


def speak(text):
    with _engine_lock:
        engine = pyttsx3.init()
        engine.say(text)
        engine.runAndWait()


def _background_speak(text):
    """Background worker. Never raises."""
    try:
        speak(text)
    except Exception:
        logger.exception('Speech announcement failed: %s', text)


def announce(ticket_code, window_name):
    """Announce a ticket at a window; returns the started thread, or None when disabled."""
    if not settings.QUEUE_SPEECH_ENABLED:
        return None
    text = announcement_text(ticket_code, window_name)
    logger.info('Announcing: %s', text)
    thread = threading.Thread(target=_background_speak, args=(text,), daemon=True)
    thread.start()
    return thread
