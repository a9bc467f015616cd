import uuid

from django.db import models
from django.utils import timezone

WAITING = 'waiting'
SERVING = 'serving'
DONE = 'done'
SKIPPED = 'skipped'
TRANSFERRED = 'transferred'

STATUS_CHOICES = [
    (WAITING, 'Waiting'),
    (SERVING, 'Serving'),
    (DONE, 'Done'),
    (SKIPPED, 'Skipped'),
    (TRANSFERRED, 'Transferred'),
]

# Statuses in which a ticket is bound to a window
ACTIVE_STATUSES = (SERVING, TRANSFERRED)
TERMINAL_STATUSES = (DONE, SKIPPED)


class Window(models.Model):
    id = models.PositiveSmallIntegerField(primary_key=True)
    name = models.CharField(max_length=50)
    current_ticket = models.OneToOneField(
        'Ticket',
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='assigned_window',
    )
    busy = models.BooleanField(default=False)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return self.name


class Ticket(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    service = models.CharField(max_length=16, db_index=True)
    number = models.IntegerField()
    code = models.CharField(max_length=32, unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=WAITING)
    window = models.ForeignKey(
        Window,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='tickets',
    )
    created_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(null=True, blank=True)
    owner_name = models.CharField(max_length=200, null=True, blank=True)
    woreda = models.CharField(max_length=200, null=True, blank=True)
    # When a window started serving this ticket
    service_start_time = models.DateTimeField(null=True, blank=True)
    # When the ticket was completed or skipped
    service_end_time = models.DateTimeField(null=True, blank=True)
    skip_reason = models.TextField(null=True, blank=True)

    class Meta:
        unique_together = ('service', 'number')
        ordering = ['created_at', 'number']
        indexes = [
            models.Index(fields=['service', 'status', 'created_at', 'number'], name='ticket_queue_lookup_idx'),
        ]

    def __str__(self):
        return f"Ticket {self.code} ({self.status})"
