# grading/models.py
from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from assessments.models import ExamAnswer
from exams.models import Subject


class GradingRubric(models.Model):
    class QuestionType(models.TextChoices):
        ESSAY = "essay", "Essay"
        SHORT_ANSWER = "short_answer", "Short Answer"
        FILE_UPLOAD = "file_upload", "File Upload"
        ALL = "all", "All manually graded types"

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    subject = models.ForeignKey(Subject, related_name='rubrics', on_delete=models.SET_NULL, null=True, blank=True)
    question_type = models.CharField(max_length=15, choices=QuestionType.choices, default=QuestionType.ALL)
    max_score = models.DecimalField(max_digits=6, decimal_places=2, default=10)
    is_default = models.BooleanField(default=False)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class RubricCriterion(models.Model):
    rubric = models.ForeignKey(GradingRubric, related_name='criteria', on_delete=models.CASCADE)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    max_points = models.DecimalField(max_digits=6, decimal_places=2)
    weight = models.PositiveIntegerField(default=100, validators=[MinValueValidator(0), MaxValueValidator(100)])
    order = models.PositiveIntegerField(default=0)
    # e.g. [{"label": "Excellent", "points": 5, "description": "..."}]
    performance_levels = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ['order', 'id']
        verbose_name_plural = "rubric criteria"

    def __str__(self):
        return f"{self.rubric.name} / {self.name}"


class AnswerGrade(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        FINAL = "final", "Final"

    answer = models.OneToOneField(ExamAnswer, related_name='grade', on_delete=models.CASCADE)
    rubric = models.ForeignKey(GradingRubric, on_delete=models.SET_NULL, null=True, blank=True)
    grader = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    marks = models.DecimalField(max_digits=6, decimal_places=2)
    feedback = models.TextField(blank=True)
    # {"<criterion id>": points}
    criteria_scores = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.FINAL)
    graded_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Grade {self.marks} for answer {self.answer_id} ({self.status})"
