# exams/models.py
from django.conf import settings
from django.db import models


class Subject(models.Model):
    code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    display_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['display_order', 'name']

    def __str__(self):
        return self.name


class Topic(models.Model):
    subject = models.ForeignKey(Subject, related_name='topics', on_delete=models.CASCADE)
    parent = models.ForeignKey('self', related_name='children', on_delete=models.CASCADE, null=True, blank=True)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['subject', 'name']

    def __str__(self):
        return f"{self.subject.code} / {self.name}"


class Question(models.Model):
    class QuestionType(models.TextChoices):
        SINGLE_CHOICE = "multiple_choice_single", "Multiple Choice (Single Answer)"
        MULTIPLE_CHOICE = "multiple_choice_multiple", "Multiple Choice (Multiple Answers)"
        TRUE_FALSE = "true_false", "True / False"
        SHORT_ANSWER = "short_answer", "Short Answer"
        NUMERIC = "numeric", "Numeric"
        ESSAY = "essay", "Essay"

    class Difficulty(models.TextChoices):
        EASY = "easy", "Easy"
        MEDIUM = "medium", "Medium"
        HARD = "hard", "Hard"
        EXPERT = "expert", "Expert"

    CHOICE_TYPES = (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE)

    code = models.CharField(max_length=30, unique=True)
    question_type = models.CharField(max_length=30, choices=QuestionType.choices,
                                     default=QuestionType.SINGLE_CHOICE)
    text = models.TextField()
    explanation = models.TextField(blank=True)

    # Numeric answers
    correct_answer_numeric = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    tolerance = models.DecimalField(max_digits=10, decimal_places=4, default=0)

    # Short answers
    correct_answer_text = models.TextField(blank=True)
    case_sensitive = models.BooleanField(default=False)

    # Essays
    min_words = models.PositiveIntegerField(null=True, blank=True)
    max_words = models.PositiveIntegerField(null=True, blank=True)

    subject = models.ForeignKey(Subject, related_name='questions', on_delete=models.SET_NULL, null=True, blank=True)
    topic = models.ForeignKey(Topic, related_name='questions', on_delete=models.SET_NULL, null=True, blank=True)
    difficulty = models.CharField(max_length=10, choices=Difficulty.choices, default=Difficulty.MEDIUM)
    tags = models.JSONField(default=list, blank=True)

    marks = models.DecimalField(max_digits=6, decimal_places=2, default=1)
    negative_marks = models.DecimalField(max_digits=6, decimal_places=2, default=0)
    times_used = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)
    is_verified = models.BooleanField(default=False)
    verified_at = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='questions_created',
                                   on_delete=models.SET_NULL, null=True, blank=True)
    updated_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='questions_updated',
                                   on_delete=models.SET_NULL, null=True, blank=True)
    verified_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='questions_verified',
                                    on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.code}: {self.text[:50]}"

    @property
    def is_choice(self):
        return self.question_type in self.CHOICE_TYPES

    @property
    def needs_manual_grading(self):
        if self.question_type == self.QuestionType.ESSAY:
            return True
        return self.question_type == self.QuestionType.SHORT_ANSWER and not self.correct_answer_text.strip()


class QuestionOption(models.Model):
    question = models.ForeignKey(Question, related_name='options', on_delete=models.CASCADE)
    key = models.CharField(max_length=5)
    text = models.TextField()
    is_correct = models.BooleanField(default=False)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['order', 'id']

    def __str__(self):
        return f"{self.key}. {self.text[:40]}"


class QuestionAttachment(models.Model):
    class FileType(models.TextChoices):
        IMAGE = "image", "Image"
        AUDIO = "audio", "Audio"
        VIDEO = "video", "Video"
        DOCUMENT = "document", "Document"

    class Context(models.TextChoices):
        QUESTION = "question", "Question"
        OPTION = "option", "Option"
        EXPLANATION = "explanation", "Explanation"

    question = models.ForeignKey(Question, related_name='attachments', on_delete=models.CASCADE)
    file = models.FileField(upload_to='questions/attachments/%Y/%m/')
    original_name = models.CharField(max_length=255, blank=True)
    file_type = models.CharField(max_length=10, choices=FileType.choices, default=FileType.IMAGE)
    mime_type = models.CharField(max_length=100, blank=True)
    size = models.PositiveIntegerField(default=0)
    context = models.CharField(max_length=15, choices=Context.choices, default=Context.QUESTION)
    uploaded_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.original_name or self.file.name


class Exam(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PUBLISHED = "published", "Published"
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        ARCHIVED = "archived", "Archived"

    class ResultDisplay(models.TextChoices):
        IMMEDIATE = "immediate", "Immediately after submission"
        SCHEDULED = "scheduled", "At a scheduled time"
        MANUAL = "manual", "When published by staff"

    code = models.CharField(max_length=20, unique=True)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    instructions = models.TextField(blank=True)

    # Timing
    duration_minutes = models.PositiveIntegerField(default=60)
    start_datetime = models.DateTimeField(null=True, blank=True)
    end_datetime = models.DateTimeField(null=True, blank=True)
    max_attempts = models.PositiveIntegerField(default=1)
    allow_resume = models.BooleanField(default=True)

    # Behaviour
    randomize_questions = models.BooleanField(default=False)
    randomize_options = models.BooleanField(default=False)

    # Scoring (totals are maintained by exams.services.recalculate_totals)
    total_questions = models.PositiveIntegerField(default=0)
    total_marks = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    pass_marks = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    enable_negative_marking = models.BooleanField(default=False)

    # Results
    result_display = models.CharField(max_length=10, choices=ResultDisplay.choices, default=ResultDisplay.IMMEDIATE)
    result_publish_datetime = models.DateTimeField(null=True, blank=True)
    show_correct_answers = models.BooleanField(default=False)
    allow_review = models.BooleanField(default=True)

    # Proctoring
    enable_tab_switch_detection = models.BooleanField(default=True)
    enable_screen_monitoring = models.BooleanField(default=False)
    fullscreen_required = models.BooleanField(default=False)
    max_tab_switches = models.PositiveIntegerField(default=5, help_text="0 disables the limit")
    require_selfie = models.BooleanField(default=False)
    blocked_ips = models.JSONField(default=list, blank=True)

    subject = models.ForeignKey(Subject, related_name='exams', on_delete=models.SET_NULL, null=True, blank=True)
    grade_level = models.ForeignKey('users.GradeLevel', related_name='exams', on_delete=models.SET_NULL,
                                    null=True, blank=True)

    status = models.CharField(max_length=10, choices=Status.choices, default=Status.DRAFT)
    is_public = models.BooleanField(default=False)
    access_code = models.CharField(max_length=50, blank=True)

    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='exams_created',
                                   on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.code} - {self.title}"


class ExamSection(models.Model):
    exam = models.ForeignKey(Exam, related_name='sections', on_delete=models.CASCADE)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    instructions = models.TextField(blank=True)
    order = models.PositiveIntegerField(default=0)
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ['order', 'id']

    def __str__(self):
        return f"{self.exam.code} / {self.title}"


class ExamQuestion(models.Model):
    exam = models.ForeignKey(Exam, related_name='exam_questions', on_delete=models.CASCADE)
    question = models.ForeignKey(Question, related_name='exam_links', on_delete=models.CASCADE)
    section = models.ForeignKey(ExamSection, related_name='exam_questions', on_delete=models.SET_NULL,
                                null=True, blank=True)
    order = models.PositiveIntegerField(default=0)
    marks = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    negative_marks = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    is_mandatory = models.BooleanField(default=True)

    class Meta:
        ordering = ['order', 'id']
        unique_together = ('exam', 'question')

    def __str__(self):
        return f"{self.exam.code} #{self.order}: {self.question.code}"

    @property
    def effective_marks(self):
        return self.marks if self.marks is not None else self.question.marks

    @property
    def effective_negative_marks(self):
        return self.negative_marks if self.negative_marks is not None else self.question.negative_marks


class ExamEligibility(models.Model):
    class Type(models.TextChoices):
        ALL = "all", "All students"
        SPECIFIC_USERS = "specific_users", "Specific users"
        CLASS = "class", "Class"
        GRADE_LEVEL = "grade_level", "Grade level"
        ROLE = "role", "Role"

    exam = models.ForeignKey(Exam, related_name='eligibility_rules', on_delete=models.CASCADE)
    eligibility_type = models.CharField(max_length=20, choices=Type.choices, default=Type.ALL)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, null=True, blank=True)
    school_class = models.ForeignKey('users.SchoolClass', on_delete=models.CASCADE, null=True, blank=True)
    grade_level = models.ForeignKey('users.GradeLevel', on_delete=models.CASCADE, null=True, blank=True)
    role = models.CharField(max_length=20, blank=True)
    is_exempt = models.BooleanField(default=False)

    class Meta:
        verbose_name_plural = "exam eligibility rules"

    def __str__(self):
        return f"{self.exam.code}: {self.eligibility_type}{' (exempt)' if self.is_exempt else ''}"

    def matches(self, user):
        if self.eligibility_type == self.Type.ALL:
            return True
        if self.eligibility_type == self.Type.SPECIFIC_USERS:
            return self.user_id == user.id
        if self.eligibility_type == self.Type.CLASS:
            return self.school_class_id is not None and self.school_class_id == user.school_class_id
        if self.eligibility_type == self.Type.GRADE_LEVEL:
            return self.grade_level_id is not None and self.grade_level_id == user.grade_level_id
        if self.eligibility_type == self.Type.ROLE:
            return self.role == user.role
        return False


class ExamSupervisor(models.Model):
    class Role(models.TextChoices):
        PRIMARY = "primary", "Primary"
        SECONDARY = "secondary", "Secondary"
        OBSERVER = "observer", "Observer"

    exam = models.ForeignKey(Exam, related_name='supervisors', on_delete=models.CASCADE)
    supervisor = models.ForeignKey(settings.AUTH_USER_MODEL, related_name='supervised_exams', on_delete=models.CASCADE)
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.PRIMARY)
    can_view_live = models.BooleanField(default=True)
    can_flag_candidates = models.BooleanField(default=True)
    can_terminate_sessions = models.BooleanField(default=False)

    class Meta:
        unique_together = ('exam', 'supervisor')

    def __str__(self):
        return f"{self.supervisor} supervises {self.exam.code}"
