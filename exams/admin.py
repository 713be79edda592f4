from django.contrib import admin

# Register your models here.
from .models import (
    Exam, ExamEligibility, ExamQuestion, ExamSection, ExamSupervisor,
    Question, QuestionAttachment, QuestionOption, Subject, Topic,
)


class QuestionOptionInline(admin.TabularInline):
    model = QuestionOption
    extra = 0


class ExamQuestionInline(admin.TabularInline):
    model = ExamQuestion
    extra = 0
    raw_id_fields = ('question',)


@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ('code', 'question_type', 'subject', 'difficulty', 'marks', 'is_active', 'is_verified')
    list_filter = ('question_type', 'difficulty', 'is_active', 'is_verified', 'subject')
    search_fields = ('code', 'text')
    inlines = [QuestionOptionInline]


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    list_display = ('code', 'title', 'status', 'duration_minutes', 'total_questions', 'total_marks')
    list_filter = ('status', 'result_display', 'subject')
    search_fields = ('code', 'title')
    inlines = [ExamQuestionInline]


admin.site.register(Subject)
admin.site.register(Topic)
admin.site.register(QuestionAttachment)
admin.site.register(ExamSection)
admin.site.register(ExamEligibility)
admin.site.register(ExamSupervisor)
