from django.contrib import admin

from .models import AnswerGrade, GradingRubric, RubricCriterion


class RubricCriterionInline(admin.TabularInline):
    model = RubricCriterion
    extra = 0


@admin.register(GradingRubric)
class GradingRubricAdmin(admin.ModelAdmin):
    list_display = ('name', 'subject', 'question_type', 'max_score', 'is_default')
    list_filter = ('question_type', 'subject')
    inlines = [RubricCriterionInline]


@admin.register(AnswerGrade)
class AnswerGradeAdmin(admin.ModelAdmin):
    list_display = ('answer', 'grader', 'marks', 'status', 'graded_at')
    list_filter = ('status',)
