from django.contrib import admin

from .models import AuditLog, PlatformSetting


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'actor', 'action', 'target_model', 'target_object_id', 'ip_address')
    list_filter = ('action', 'target_model')
    search_fields = ('details', 'actor__email')


admin.site.register(PlatformSetting)
