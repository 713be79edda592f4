from django.shortcuts import get_object_or_404
from rest_framework import generics, status, viewsets
from rest_framework.response import Response
from rest_framework.views import APIView

from assessments.models import ExamAnswer, ExamAttempt
from assessments.results import publish_results
from cores.models import AuditLog
from cores.serializers import exam_filter
from users.permissions import IsAdminOrSupervisor

from . import services
from .models import GradingRubric
from .serializers import (
    AnswerGradeSerializer, BulkGradeSerializer, GradeAnswerSerializer,
    GradingRubricSerializer, PendingAnswerSerializer, PublishResultsSerializer,
)


class GradingRubricViewSet(viewsets.ModelViewSet):
    queryset = GradingRubric.objects.select_related('subject').prefetch_related('criteria')
    serializer_class = GradingRubricSerializer
    permission_classes = [IsAdminOrSupervisor]

    def get_queryset(self):
        queryset = super().get_queryset()
        subject = self.request.query_params.get('subject')
        if subject:
            queryset = queryset.filter(subject_id=subject)
        question_type = self.request.query_params.get('question_type')
        if question_type:
            queryset = queryset.filter(question_type__in=[question_type, GradingRubric.QuestionType.ALL])
        return queryset

    def perform_create(self, serializer):
        serializer.save(created_by=self.request.user)


# --- Grading queue ---

class PendingGradingListView(generics.ListAPIView):
    """List all answers that require manual grading (?exam=<id> to filter)."""
    permission_classes = [IsAdminOrSupervisor]
    serializer_class = PendingAnswerSerializer

    def get_queryset(self):
        return services.pending_answers(exam_filter(self.request), user=self.request.user)


class AnswerGradingView(APIView):
    """GET the answer for grading, POST a grade for it."""
    permission_classes = [IsAdminOrSupervisor]

    def get_answer(self, answer_id):
        answer = get_object_or_404(
            ExamAnswer.objects.select_related('attempt', 'attempt__user', 'attempt__exam', 'question'),
            id=answer_id,
        )
        if not services.can_grade(self.request.user, answer.attempt.exam_id):
            self.permission_denied(self.request, message="You are not assigned to this exam.")
        return answer

    def get(self, request, answer_id):
        return Response(PendingAnswerSerializer(self.get_answer(answer_id)).data)

    def post(self, request, answer_id):
        answer = self.get_answer(answer_id)
        serializer = GradeAnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        grade = services.grade_answer(
            answer, request.user, data['marks'], data.get('feedback', ''),
            rubric=data.get('rubric'), criteria_scores=data.get('criteria_scores'), status=data['status'],
        )
        AuditLog.record(request, 'GRADE', answer, f"Graded answer {answer.id} with {grade.marks} ({grade.status})")
        return Response(AnswerGradeSerializer(grade).data)


class BulkGradeView(APIView):
    permission_classes = [IsAdminOrSupervisor]

    def post(self, request):
        serializer = BulkGradeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        report = services.bulk_grade(data['answer_ids'], request.user, data['marks'], data.get('feedback', ''))
        AuditLog.record(request, 'GRADE', 'ExamAnswer',
                        f"Bulk graded {report['graded_count']} answer(s), {report['failed_count']} failed")
        return Response(report)


class PublishGradedResultsView(APIView):
    """Publish results for the given attempts (grouped per exam)."""
    permission_classes = [IsAdminOrSupervisor]

    def post(self, request):
        serializer = PublishResultsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attempts = ExamAttempt.objects.filter(id__in=serializer.validated_data['attempt_ids']).select_related('exam')
        by_exam = {}
        for attempt in attempts:
            by_exam.setdefault(attempt.exam, []).append(attempt.id)
        if not by_exam:
            return Response({"error": "No matching attempts"}, status=status.HTTP_404_NOT_FOUND)
        for exam in by_exam:
            if not services.can_grade(request.user, exam.id):
                self.permission_denied(request, message=f"You are not assigned to exam {exam.code}.")

        published = 0
        for exam, ids in by_exam.items():
            published += publish_results(exam, attempt_ids=ids, user=request.user)
            AuditLog.record(request, 'PUBLISH', exam, f"Published {len(ids)} result(s) for {exam.code}")
        return Response({"published": published})


class GradingStatisticsView(APIView):
    permission_classes = [IsAdminOrSupervisor]

    def get(self, request):
        return Response(services.grading_statistics(exam_filter(request), user=request.user))
