from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    AnswerGradingView,
    BulkGradeView,
    GradingRubricViewSet,
    GradingStatisticsView,
    PendingGradingListView,
    PublishGradedResultsView,
)

router = DefaultRouter()
router.register(r'grading/rubrics', GradingRubricViewSet, basename='rubrics')

urlpatterns = [
    path('grading/pending/', PendingGradingListView.as_view(), name='grading-pending'),
    path('grading/answers/<int:answer_id>/', AnswerGradingView.as_view(), name='grading-answer'),
    path('grading/bulk/', BulkGradeView.as_view(), name='grading-bulk'),
    path('grading/publish/', PublishGradedResultsView.as_view(), name='grading-publish'),
    path('grading/statistics/', GradingStatisticsView.as_view(), name='grading-statistics'),
    path('', include(router.urls)),
]
