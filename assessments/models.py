# assessments/models.py
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from exams.models import Exam, Question


class ExamAttempt(models.Model):
    """Tracks a candidate's specific attempt at an exam."""

    class Status(models.TextChoices):
        NOT_STARTED = "not_started", "Not Started"
        IN_PROGRESS = "in_progress", "In Progress"
        PAUSED = "paused", "Paused"
        SUBMITTED = "submitted", "Submitted"
        AUTO_SUBMITTED = "auto_submitted", "Auto Submitted"
        TERMINATED = "terminated", "Terminated"
        EXPIRED = "expired", "Expired"

    ACTIVE_STATUSES = (Status.IN_PROGRESS, Status.PAUSED)
    FINISHED_STATUSES = (Status.SUBMITTED, Status.AUTO_SUBMITTED, Status.TERMINATED, Status.EXPIRED)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='exam_attempts', on_delete=models.CASCADE)
    exam = models.ForeignKey(Exam, related_name='attempts', on_delete=models.CASCADE)
    attempt_code = models.CharField(max_length=30, unique=True)
    attempt_number = models.PositiveIntegerField(default=1)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.NOT_STARTED)

    started_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    last_activity_at = models.DateTimeField(null=True, blank=True)
    time_spent_seconds = models.PositiveIntegerField(default=0)

    # Question ids and per-question option ids in the order this candidate sees them
    question_order = models.JSONField(default=list, blank=True)
    option_order = models.JSONField(default=dict, blank=True)
    current_question_index = models.PositiveIntegerField(default=0)
    questions_answered = models.PositiveIntegerField(default=0)
    questions_marked_for_review = models.PositiveIntegerField(default=0)

    # Client info
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)

    # Integrity counters
    tab_switch_count = models.PositiveIntegerField(default=0)
    window_blur_count = models.PositiveIntegerField(default=0)
    copy_paste_attempts = models.PositiveIntegerField(default=0)
    fullscreen_exit_count = models.PositiveIntegerField(default=0)

    # Flags and termination
    is_flagged = models.BooleanField(default=False)
    flag_reason = models.TextField(blank=True)
    flagged_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='flagged_attempts',
                                   on_delete=models.SET_NULL, null=True, blank=True)
    flagged_at = models.DateTimeField(null=True, blank=True)
    termination_reason = models.TextField(blank=True)
    terminated_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='terminated_attempts',
                                      on_delete=models.SET_NULL, null=True, blank=True)
    terminated_at = models.DateTimeField(null=True, blank=True)

    resume_token = models.CharField(max_length=64, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['exam', 'user'],
                condition=models.Q(status__in=['in_progress', 'paused']),
                name='one_active_attempt_per_exam',
            ),
        ]

    def __str__(self):
        return f"{self.attempt_code} ({self.user} - {self.exam.title})"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    @property
    def is_finished(self):
        return self.status in self.FINISHED_STATUSES

    def remaining_seconds(self, now=None):
        if self.expires_at is None or not self.is_active:
            return 0
        now = now or timezone.now()
        return max(0, int((self.expires_at - now).total_seconds()))

    def is_overdue(self, now=None):
        """Past expires_at plus the submission grace period."""
        if self.expires_at is None:
            return False
        now = now or timezone.now()
        grace = timedelta(seconds=settings.CBT_SUBMIT_GRACE_SECONDS)
        return now > self.expires_at + grace


class ExamAnswer(models.Model):
    class GradingStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        AUTO_GRADED = "auto_graded", "Auto Graded"
        MANUALLY_GRADED = "manually_graded", "Manually Graded"

    attempt = models.ForeignKey(ExamAttempt, related_name='answers', on_delete=models.CASCADE)
    question = models.ForeignKey(Question, related_name='answers', on_delete=models.CASCADE)

    selected_options = models.JSONField(default=list, blank=True)
    text_answer = models.TextField(blank=True)
    numeric_answer = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)

    is_marked_for_review = models.BooleanField(default=False)
    is_answered = models.BooleanField(default=False)
    time_spent_seconds = models.PositiveIntegerField(default=0)
    change_count = models.PositiveIntegerField(default=0)
    first_answered_at = models.DateTimeField(null=True, blank=True)
    last_answered_at = models.DateTimeField(null=True, blank=True)

    # Grading
    marks_obtained = models.DecimalField(max_digits=6, decimal_places=2, default=0)
    is_correct = models.BooleanField(null=True)
    grading_status = models.CharField(max_length=20, choices=GradingStatus.choices, default=GradingStatus.PENDING)
    graded_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='graded_answers',
                                  on_delete=models.SET_NULL, null=True, blank=True)
    graded_at = models.DateTimeField(null=True, blank=True)
    feedback = models.TextField(blank=True)

    class Meta:
        unique_together = ('attempt', 'question')

    def __str__(self):
        return f"{self.attempt.attempt_code} / {self.question.code}"


class ExamSubmission(models.Model):
    class Type(models.TextChoices):
        MANUAL = "manual", "Submitted by candidate"
        AUTO = "auto", "Submitted automatically"
        FORCED = "forced", "Forced by supervisor"

    attempt = models.OneToOneField(ExamAttempt, related_name='submission', on_delete=models.CASCADE)
    submission_type = models.CharField(max_length=10, choices=Type.choices, default=Type.MANUAL)
    submitted_at = models.DateTimeField()
    total_questions = models.PositiveIntegerField(default=0)
    answered_questions = models.PositiveIntegerField(default=0)
    unanswered_questions = models.PositiveIntegerField(default=0)
    marked_for_review = models.PositiveIntegerField(default=0)
    time_taken_seconds = models.PositiveIntegerField(default=0)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    submission_hash = models.CharField(max_length=64)

    def __str__(self):
        return f"Submission {self.attempt.attempt_code} ({self.submission_type})"


class ExamResult(models.Model):
    class PassStatus(models.TextChoices):
        PASS = "pass", "Pass"
        FAIL = "fail", "Fail"
        PENDING = "pending", "Pending"

    attempt = models.OneToOneField(ExamAttempt, related_name='result', on_delete=models.CASCADE)

    total_marks = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    marks_obtained = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    negative_marks_deducted = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)

    total_questions = models.PositiveIntegerField(default=0)
    correct_answers = models.PositiveIntegerField(default=0)
    incorrect_answers = models.PositiveIntegerField(default=0)
    unanswered = models.PositiveIntegerField(default=0)
    marked_for_review = models.PositiveIntegerField(default=0)
    pending_manual = models.PositiveIntegerField(default=0)

    grade = models.CharField(max_length=3, blank=True)
    pass_status = models.CharField(max_length=10, choices=PassStatus.choices, default=PassStatus.PENDING)

    rank = models.PositiveIntegerField(null=True, blank=True)
    total_participants = models.PositiveIntegerField(null=True, blank=True)
    percentile = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    is_published = models.BooleanField(default=False)
    published_at = models.DateTimeField(null=True, blank=True)
    published_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='published_results',
                                     on_delete=models.SET_NULL, null=True, blank=True)
    is_reviewed = models.BooleanField(default=False)
    remarks = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Result {self.attempt.attempt_code}: {self.percentage}%"

    @property
    def is_visible(self):
        """Whether the candidate may see this result now."""
        exam = self.attempt.exam
        if exam.result_display == Exam.ResultDisplay.SCHEDULED:
            if exam.result_publish_datetime and timezone.now() >= exam.result_publish_datetime:
                return True
        return self.is_published
