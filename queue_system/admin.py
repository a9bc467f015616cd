from django.contrib import admin

from .models import Ticket, Window


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = ('code', 'service', 'status', 'window', 'owner_name', 'created_at')
    list_filter = ('service', 'status')
    search_fields = ('code', 'owner_name', 'woreda')
    ordering = ('-created_at',)


@admin.register(Window)
class WindowAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'busy', 'current_ticket', 'updated_at')
