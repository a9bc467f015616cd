from django.urls import path
from . import views

urlpatterns = [
    path('tickets', views.create_ticket, name='create_ticket'),
    path('tickets/<str:code>', views.ticket_status, name='ticket_status'),
    path('windows', views.list_windows, name='list_windows'),
    path('windows/<int:window_id>/call-next', views.call_next, name='call_next'),
    path('windows/<int:window_id>/recall', views.recall, name='recall'),
    path('windows/<int:window_id>/complete', views.complete, name='complete'),
    path('windows/<int:window_id>/skip', views.skip, name='skip'),
    path('windows/<int:window_id>/transfer', views.transfer, name='transfer'),
    path('display', views.display, name='display'),
    path('seed', views.seed, name='seed'),
]
