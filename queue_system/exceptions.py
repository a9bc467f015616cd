"""
Errors raised by the ticket/window stores.

Each error carries the HTTP status the API answers with, so views can turn
any of them into a ``{"error": message}`` response.
"""


class QueueError(Exception):
    """Base exception for all queue errors."""

    status_code = 400
    default_message = 'Queue operation failed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class WindowNotFoundError(QueueError):
    """Raised when a window id is outside the configured range."""

    status_code = 404
    default_message = 'Window not found'

    def __init__(self, window_id, message=None):
        self.window_id = window_id
        super().__init__(message)


class TransferTargetNotFoundError(WindowNotFoundError):
    """Raised when the source or target window of a transfer does not exist."""

    default_message = 'Source or target window not found'


class TicketNotFoundError(QueueError):
    status_code = 404
    default_message = 'Ticket not found'

    def __init__(self, code):
        self.code = code
        super().__init__()


class NoActiveTicketError(QueueError):
    """Raised when a window operation needs an assigned ticket and there is none."""

    default_message = 'No active ticket'

    def __init__(self, window_id, message=None):
        self.window_id = window_id
        super().__init__(message)


class InvalidTransferError(QueueError):
    """Raised when a transfer targets the source window or a busy window."""

    def __init__(self, source_id, target_id, reason):
        self.source_id = source_id
        self.target_id = target_id
        super().__init__(reason)
