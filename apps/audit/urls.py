"""
Audit API URLs.
"""
from django.urls import path
from apps.audit.views import AuditLogListView, AuditStatsView

app_name = 'audit'

urlpatterns = [
    path('audit', AuditLogListView.as_view(), name='audit-log-list'),
    path('audit/stats', AuditStatsView.as_view(), name='audit-stats'),
]
