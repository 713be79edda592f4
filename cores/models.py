from django.db import models
from django.core.cache import cache
from django.conf import settings


class PlatformSetting(models.Model):
    # --- General & Branding ---
    site_name = models.CharField(max_length=100, default="CBT Platform")
    support_email = models.EmailField(default="support@example.com")
    maintenance_mode = models.BooleanField(default=False)

    # --- Exam Defaults ---
    default_exam_duration = models.PositiveIntegerField(default=60, help_text="Default duration in minutes")
    default_pass_percentage = models.PositiveIntegerField(default=50, help_text="Default pass mark percentage")
    default_max_attempts = models.PositiveIntegerField(default=1)

    # --- Proctoring ---
    default_max_tab_switches = models.PositiveIntegerField(default=5, help_text="0 disables the limit")
    auto_flag_on_tab_switch_limit = models.BooleanField(default=True)

    # --- Security & Access ---
    password_min_length = models.PositiveIntegerField(default=8)

    def save(self, *args, **kwargs):
        self.pk = 1  # Singleton pattern
        super().save(*args, **kwargs)
        cache.set('platform_settings', self)

    def delete(self, *args, **kwargs):
        pass

    @classmethod
    def load(cls):
        obj = cache.get('platform_settings')
        if obj is None:
            obj, created = cls.objects.get_or_create(pk=1)
            cache.set('platform_settings', obj)
        return obj

    def __str__(self):
        return "Platform Settings"


class AuditLog(models.Model):
    ACTION_CHOICES = [
        ('CREATE', 'Create'),
        ('UPDATE', 'Update'),
        ('DELETE', 'Delete'),
        ('LOGIN', 'Login'),
        ('IMPORT', 'Import'),
        ('STATUS', 'Status Changed'),
        ('GRADE', 'Grade Submitted'),
        ('PUBLISH', 'Results Published'),
        ('TERMINATE', 'Attempt Terminated'),
        ('SETTINGS', 'Settings Changed'),
    ]

    actor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    target_model = models.CharField(max_length=50, help_text="e.g., Exam, User, ExamAttempt")
    target_object_id = models.CharField(max_length=100, blank=True, null=True)
    details = models.TextField(blank=True, help_text="Description of changes")
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp']

    def __str__(self):
        return f"{self.actor} - {self.action} - {self.timestamp}"

    @classmethod
    def record(cls, request, action, target, details=''):
        """Store an audit entry for `target` (a model instance or a model name)."""
        actor = getattr(request, 'user', None)
        if actor is not None and not actor.is_authenticated:
            actor = None
        if isinstance(target, str):
            target_model, target_id = target, None
        else:
            target_model, target_id = type(target).__name__, str(target.pk)
        return cls.objects.create(
            actor=actor,
            action=action,
            target_model=target_model,
            target_object_id=target_id,
            details=details,
            ip_address=client_ip(request),
        )


def client_ip(request):
    if request is None:
        return None
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')
