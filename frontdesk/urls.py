from django.contrib import admin
from django.urls import include, path

from notifications import views as notification_views

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/events', notification_views.event_stream, name='event_stream'),
    path('api/', include('queue_system.urls')),
]
