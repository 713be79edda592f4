from django.contrib import admin

from .models import ExamAnswer, ExamAttempt, ExamResult, ExamSubmission


class ExamAnswerInline(admin.TabularInline):
    model = ExamAnswer
    extra = 0
    raw_id_fields = ('question',)
    fields = ('question', 'is_answered', 'is_correct', 'marks_obtained', 'grading_status')
    readonly_fields = fields


@admin.register(ExamAttempt)
class ExamAttemptAdmin(admin.ModelAdmin):
    list_display = ('attempt_code', 'user', 'exam', 'status', 'started_at', 'submitted_at', 'is_flagged')
    list_filter = ('status', 'is_flagged', 'exam')
    search_fields = ('attempt_code', 'user__email', 'exam__code')
    inlines = [ExamAnswerInline]


@admin.register(ExamResult)
class ExamResultAdmin(admin.ModelAdmin):
    list_display = ('attempt', 'marks_obtained', 'percentage', 'grade', 'pass_status', 'rank', 'is_published')
    list_filter = ('pass_status', 'is_published')


admin.site.register(ExamSubmission)
