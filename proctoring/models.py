# proctoring/models.py
from django.conf import settings
from django.db import models

from assessments.models import ExamAttempt


class ProctoringSession(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        TERMINATED = "terminated", "Terminated"

    class Connection(models.TextChoices):
        STABLE = "stable", "Stable"
        DISCONNECTED = "disconnected", "Disconnected"

    attempt = models.OneToOneField(ExamAttempt, related_name='proctoring_session', on_delete=models.CASCADE)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.ACTIVE)
    started_at = models.DateTimeField(auto_now_add=True)
    ended_at = models.DateTimeField(null=True, blank=True)

    browser = models.CharField(max_length=50, blank=True)
    os = models.CharField(max_length=50, blank=True)
    screen_info = models.JSONField(default=dict, blank=True)

    connection_status = models.CharField(max_length=12, choices=Connection.choices, default=Connection.STABLE)
    disconnection_count = models.PositiveIntegerField(default=0)
    disconnection_log = models.JSONField(default=list, blank=True)
    last_activity_at = models.DateTimeField(null=True, blank=True)
    current_question_index = models.PositiveIntegerField(default=0)

    total_violations = models.PositiveIntegerField(default=0)
    violation_summary = models.JSONField(default=dict, blank=True)
    supervisor_notes = models.TextField(blank=True)

    def __str__(self):
        return f"Proctoring {self.attempt.attempt_code} ({self.status})"


class ProctoringEvent(models.Model):
    class Severity(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"
        CRITICAL = "critical", "Critical"

    # Default severity per client-reported event type
    SEVERITY_MAP = {
        'tab_switch': Severity.HIGH,
        'window_blur': Severity.HIGH,
        'fullscreen_exit': Severity.CRITICAL,
        'copy_attempt': Severity.HIGH,
        'paste_attempt': Severity.HIGH,
        'right_click': Severity.MEDIUM,
        'multiple_faces_detected': Severity.CRITICAL,
        'no_face_detected': Severity.HIGH,
        'network_disconnect': Severity.CRITICAL,
    }

    # Informational events that are not integrity violations
    NON_VIOLATIONS = ('network_reconnect', 'flagged_by_supervisor', 'attempt_terminated')

    attempt = models.ForeignKey(ExamAttempt, related_name='proctoring_events', on_delete=models.CASCADE)
    session = models.ForeignKey(ProctoringSession, related_name='events', on_delete=models.CASCADE,
                                null=True, blank=True)
    event_type = models.CharField(max_length=50)
    description = models.TextField(blank=True)
    event_data = models.JSONField(default=dict, blank=True)
    severity = models.CharField(max_length=10, choices=Severity.choices, default=Severity.LOW)
    question_index = models.PositiveIntegerField(null=True, blank=True)
    seconds_into_exam = models.PositiveIntegerField(null=True, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    is_flagged = models.BooleanField(default=False)
    requires_review = models.BooleanField(default=False)
    reported_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    occurred_at = models.DateTimeField()

    class Meta:
        ordering = ['-occurred_at']

    def __str__(self):
        return f"{self.event_type} ({self.severity}) on {self.attempt.attempt_code}"

    @classmethod
    def default_severity(cls, event_type):
        return cls.SEVERITY_MAP.get(event_type, cls.Severity.LOW)

    @property
    def is_violation(self):
        return self.event_type not in self.NON_VIOLATIONS
