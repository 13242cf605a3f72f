"""
URL routing for live notification endpoints.
"""
from django.urls import path
from . import views

app_name = 'notifications'

urlpatterns = [
    path('notifications/stream/', views.EventStreamView.as_view(), name='stream'),
    path('notifications/groups/', views.SubscriberGroupsView.as_view(), name='groups'),
]
