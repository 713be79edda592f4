from django.urls import path
from .views import AnalyticsDashboardView, AuditLogListView, HealthView, PlatformSettingView, RecentActivityView

urlpatterns = [
    path('settings/', PlatformSettingView.as_view(), name='platform-settings'),
    path('audit-logs/', AuditLogListView.as_view(), name='audit-logs'),
    path('analytics/dashboard/', AnalyticsDashboardView.as_view(), name='analytics-dashboard'),
    path('analytics/recent-activity/', RecentActivityView.as_view(), name='analytics-recent-activity'),
    path('health/', HealthView.as_view(), name='health'),
]
