from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import generics, status, views
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle

from cores.models import AuditLog, client_ip
from exams.models import Exam
from exams.serializers import StudentExamSerializer
from exams.services import check_eligibility, eligible_exams_for
from users.permissions import IsAdminOrSupervisor, IsStudent

from . import services
from .exports import results_xlsx_bytes
from .models import ExamAttempt, ExamResult
from .results import exam_results, publish_results, results_statistics
from .serializers import (
    AttemptSerializer, ProgressSerializer, PublishSerializer, ResultSerializer, SaveAnswerSerializer,
    StartAttemptSerializer, SubmissionSerializer, answer_breakdown, attempt_session,
)


def own_attempt(request, attempt_id):
    attempt = get_object_or_404(ExamAttempt.objects.select_related('exam'), id=attempt_id, user=request.user)
    return attempt


# --- STUDENT VIEWS ---

class AvailableExamsView(views.APIView):
    """Active exams the logged-in student is eligible to see."""
    permission_classes = [IsStudent]

    def get(self, request):
        data = []
        for exam in eligible_exams_for(request.user):
            item = StudentExamSerializer(exam).data
            item['eligibility'] = check_eligibility(exam, request.user, client_ip(request))
            data.append(item)
        return Response(data)


class StudentExamDetailView(views.APIView):
    permission_classes = [IsStudent]

    def get(self, request, exam_id):
        exam = get_object_or_404(Exam, id=exam_id)
        eligibility = check_eligibility(exam, request.user, client_ip(request))
        if exam.status != Exam.Status.ACTIVE and not eligibility['attempts_used']:
            return Response({"error": "Exam not found"}, status=status.HTTP_404_NOT_FOUND)
        active = ExamAttempt.objects.filter(
            exam=exam, user=request.user, status__in=ExamAttempt.ACTIVE_STATUSES
        ).first()
        data = StudentExamSerializer(exam).data
        data['eligibility'] = eligibility
        data['active_attempt'] = AttemptSerializer(active).data if active else None
        return Response(data)


class StartExamView(views.APIView):
    """
    Student starts an exam.
    Creates an attempt (or resumes the active one) and returns the exam session.
    """
    permission_classes = [IsStudent]

    def post(self, request, exam_id):
        exam = get_object_or_404(Exam, id=exam_id)
        serializer = StartAttemptSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        attempt, resumed = services.start_attempt(
            exam, request.user,
            access_code=serializer.validated_data['access_code'],
            ip_address=client_ip(request),
            user_agent=request.META.get('HTTP_USER_AGENT', ''),
        )
        data = attempt_session(attempt)
        data['resumed'] = resumed
        return Response(data, status=status.HTTP_200_OK if resumed else status.HTTP_201_CREATED)


class StudentAttemptsView(generics.ListAPIView):
    """List all attempts for the logged-in student (Lightweight)."""
    permission_classes = [IsStudent]
    serializer_class = AttemptSerializer

    def get_queryset(self):
        return ExamAttempt.objects.filter(user=self.request.user).select_related('exam', 'user')


class AttemptSessionView(views.APIView):
    permission_classes = [IsStudent]

    def get(self, request, attempt_id):
        attempt = own_attempt(request, attempt_id)
        services.finalize_if_overdue(attempt)
        if not attempt.is_active:
            return Response({"error": "Attempt is no longer active", "status": attempt.status},
                            status=status.HTTP_400_BAD_REQUEST)
        return Response(attempt_session(attempt))


class SaveAnswerView(views.APIView):
    permission_classes = [IsStudent]

    def post(self, request, attempt_id):
        attempt = own_attempt(request, attempt_id)
        serializer = SaveAnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        answer = services.save_answer(attempt, data.pop('question_id'), data)
        attempt.refresh_from_db()
        return Response({
            "question": answer.question_id,
            "is_answered": answer.is_answered,
            "is_marked_for_review": answer.is_marked_for_review,
            "questions_answered": attempt.questions_answered,
            "remaining_seconds": attempt.remaining_seconds(),
        })


class UpdateProgressView(views.APIView):
    permission_classes = [IsStudent]

    def post(self, request, attempt_id):
        attempt = own_attempt(request, attempt_id)
        serializer = ProgressSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attempt = services.update_progress(attempt, **serializer.validated_data)
        return Response(AttemptSerializer(attempt).data)


class PauseAttemptView(views.APIView):
    permission_classes = [IsStudent]

    def post(self, request, attempt_id):
        attempt = services.pause_attempt(own_attempt(request, attempt_id))
        return Response(AttemptSerializer(attempt).data)


class ResumeAttemptView(views.APIView):
    permission_classes = [IsStudent]

    def post(self, request, attempt_id):
        attempt = services.resume_attempt(own_attempt(request, attempt_id))
        return Response(attempt_session(attempt))


class SubmitExamView(views.APIView):
    """Student submits the attempt. Objective questions are scored immediately."""
    permission_classes = [IsStudent]

    def post(self, request, attempt_id):
        attempt = own_attempt(request, attempt_id)
        if attempt.is_finished:
            return Response({"error": "Exam already submitted"}, status=status.HTTP_400_BAD_REQUEST)
        attempt = services.submit_attempt(attempt, ip_address=client_ip(request))
        result = ExamResult.objects.get(attempt=attempt)
        return Response({
            "status": attempt.status,
            "attempt": AttemptSerializer(attempt).data,
            "submission": SubmissionSerializer(attempt.submission).data,
            "result": ResultSerializer(result).data if result.is_visible else None,
        })


class StudentResultView(views.APIView):
    permission_classes = [IsStudent]

    def get(self, request, attempt_id):
        attempt = own_attempt(request, attempt_id)
        result = ExamResult.objects.filter(attempt=attempt).first()
        if result is None or not result.is_visible:
            return Response({"error": "Result is not available yet"}, status=status.HTTP_404_NOT_FOUND)
        data = ResultSerializer(result).data
        if attempt.exam.allow_review:
            data['answers'] = answer_breakdown(attempt, include_answers=attempt.exam.show_correct_answers)
        return Response(data)


class MyResultsView(views.APIView):
    permission_classes = [IsStudent]

    def get(self, request):
        results = ExamResult.objects.filter(attempt__user=request.user).select_related(
            'attempt', 'attempt__exam', 'attempt__user').order_by('-attempt__submitted_at')
        visible = [r for r in results if r.is_visible]
        return Response(ResultSerializer(visible, many=True).data)


# --- STAFF VIEWS ---

class StaffExamMixin:
    permission_classes = [IsAdminOrSupervisor]

    def get_exam(self, request, exam_id):
        exam = get_object_or_404(Exam, id=exam_id)
        if not request.user.is_admin and not exam.supervisors.filter(supervisor=request.user).exists():
            self.permission_denied(request, message="You are not assigned to this exam.")
        return exam


class ExamResultsView(StaffExamMixin, generics.ListAPIView):
    serializer_class = ResultSerializer

    def get_queryset(self):
        exam = self.get_exam(self.request, self.kwargs['exam_id'])
        queryset = exam_results(exam)
        pass_status = self.request.query_params.get('pass_status')
        if pass_status:
            queryset = queryset.filter(pass_status=pass_status)
        return queryset


class ExamResultsStatisticsView(StaffExamMixin, views.APIView):

    def get(self, request, exam_id):
        return Response(results_statistics(self.get_exam(request, exam_id)))


class PublishExamResultsView(StaffExamMixin, views.APIView):
    """Publish every finished result of the exam, or only `attempt_ids`."""

    def post(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        serializer = PublishSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        count = publish_results(exam, serializer.validated_data.get('attempt_ids'), user=request.user)
        AuditLog.record(request, 'PUBLISH', exam, f"Published {count} result(s) for {exam.code}")
        return Response({"published": count})


class ExportExamResultsView(StaffExamMixin, views.APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'imports'

    def get(self, request, exam_id):
        exam = self.get_exam(request, exam_id)
        response = HttpResponse(
            results_xlsx_bytes(exam),
            content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        )
        response['Content-Disposition'] = (
            f'attachment; filename="{exam.code}_results_{timezone.now():%Y%m%d_%H%M}.xlsx"'
        )
        return response


class AttemptResultDetailView(StaffExamMixin, views.APIView):

    def get(self, request, attempt_id):
        attempt = get_object_or_404(ExamAttempt.objects.select_related('exam', 'user'), id=attempt_id)
        self.get_exam(request, attempt.exam_id)
        result = ExamResult.objects.filter(attempt=attempt).first()
        submission = getattr(attempt, 'submission', None) if attempt.is_finished else None
        return Response({
            "attempt": AttemptSerializer(attempt).data,
            "submission": SubmissionSerializer(submission).data if submission else None,
            "result": ResultSerializer(result).data if result else None,
            "answers": answer_breakdown(attempt, include_answers=True),
        })
