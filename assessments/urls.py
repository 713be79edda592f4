from django.urls import path

from .views import (
    AttemptResultDetailView, AttemptSessionView, AvailableExamsView, ExamResultsStatisticsView,
    ExamResultsView, ExportExamResultsView, MyResultsView, PauseAttemptView, PublishExamResultsView,
    ResumeAttemptView, SaveAnswerView, StartExamView, StudentAttemptsView, StudentExamDetailView,
    StudentResultView, SubmitExamView, UpdateProgressView,
)

urlpatterns = [
    # --- Student Exam Flow ---
    path('student/exams/', AvailableExamsView.as_view(), name='student-exams'),
    path('student/exams/<int:exam_id>/', StudentExamDetailView.as_view(), name='student-exam-detail'),
    path('student/exams/<int:exam_id>/start/', StartExamView.as_view(), name='start-exam'),
    path('student/attempts/', StudentAttemptsView.as_view(), name='student-attempts'),
    path('student/attempts/<int:attempt_id>/', AttemptSessionView.as_view(), name='attempt-session'),
    path('student/attempts/<int:attempt_id>/answer/', SaveAnswerView.as_view(), name='attempt-answer'),
    path('student/attempts/<int:attempt_id>/progress/', UpdateProgressView.as_view(), name='attempt-progress'),
    path('student/attempts/<int:attempt_id>/pause/', PauseAttemptView.as_view(), name='attempt-pause'),
    path('student/attempts/<int:attempt_id>/resume/', ResumeAttemptView.as_view(), name='attempt-resume'),
    path('student/attempts/<int:attempt_id>/submit/', SubmitExamView.as_view(), name='attempt-submit'),
    path('student/attempts/<int:attempt_id>/result/', StudentResultView.as_view(), name='attempt-result'),
    path('student/results/', MyResultsView.as_view(), name='student-results'),

    # --- Results (Admin / Supervisor) ---
    path('results/exams/<int:exam_id>/', ExamResultsView.as_view(), name='exam-results'),
    path('results/exams/<int:exam_id>/statistics/', ExamResultsStatisticsView.as_view(), name='exam-results-statistics'),
    path('results/exams/<int:exam_id>/publish/', PublishExamResultsView.as_view(), name='exam-results-publish'),
    path('results/exams/<int:exam_id>/export/', ExportExamResultsView.as_view(), name='exam-results-export'),
    path('results/attempts/<int:attempt_id>/', AttemptResultDetailView.as_view(), name='attempt-result-detail'),
]
