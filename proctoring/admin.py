from django.contrib import admin

from .models import ProctoringEvent, ProctoringSession


@admin.register(ProctoringSession)
class ProctoringSessionAdmin(admin.ModelAdmin):
    list_display = ('attempt', 'status', 'browser', 'os', 'connection_status', 'total_violations', 'last_activity_at')
    list_filter = ('status', 'connection_status')


@admin.register(ProctoringEvent)
class ProctoringEventAdmin(admin.ModelAdmin):
    list_display = ('attempt', 'event_type', 'severity', 'is_flagged', 'occurred_at')
    list_filter = ('severity', 'event_type', 'is_flagged')
