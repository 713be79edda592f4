from django.shortcuts import get_object_or_404
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from assessments.models import ExamAttempt
from assessments.serializers import AttemptSerializer
from cores.models import AuditLog, client_ip
from cores.serializers import exam_filter
from users.permissions import IsAdminOrSupervisor

from . import services
from .models import ProctoringSession
from .serializers import (
    HeartbeatSerializer, LogEventSerializer, ProctoringEventSerializer,
    ProctoringSessionSerializer, ReasonSerializer,
)


def own_attempt(request, attempt_id):
    return get_object_or_404(ExamAttempt.objects.select_related('exam'), id=attempt_id, user=request.user)


# --- STUDENT VIEWS ---

class HeartbeatView(APIView):
    """Keep-alive polled by the exam client; also closes out overdue attempts."""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, attempt_id):
        attempt = own_attempt(request, attempt_id)
        serializer = HeartbeatSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(services.heartbeat(attempt, serializer.validated_data.get('current_question_index')))


class LogEventView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = LogEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        attempt = ExamAttempt.objects.select_related('exam').filter(id=data['attempt_id']).first()
        if attempt is None:
            return Response({"error": "Attempt not found"}, status=status.HTTP_404_NOT_FOUND)
        # Verify user owns this attempt
        if attempt.user_id != request.user.id:
            return Response({"error": "Unauthorized"}, status=status.HTTP_403_FORBIDDEN)

        event = services.log_event(
            attempt, data['event_type'],
            severity=data.get('severity'),
            description=data.get('description', ''),
            event_data=data.get('event_data'),
            question_index=data.get('question_index'),
            ip_address=client_ip(request),
            reported_by=request.user,
        )
        return Response(ProctoringEventSerializer(event).data, status=status.HTTP_201_CREATED)


class ConnectionLostView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, attempt_id):
        session = services.connection_lost(own_attempt(request, attempt_id), client_ip(request))
        return Response(ProctoringSessionSerializer(session).data)


class ConnectionRestoredView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, attempt_id):
        session = services.connection_restored(own_attempt(request, attempt_id), client_ip(request))
        return Response(ProctoringSessionSerializer(session).data)


# --- SUPERVISOR VIEWS ---

class SupervisedAttemptMixin:
    permission_classes = [IsAdminOrSupervisor]
    required_permission = 'can_view_live'

    def get_attempt(self, request, attempt_id):
        attempt = get_object_or_404(ExamAttempt.objects.select_related('exam', 'user'), id=attempt_id)
        services.check_permission(request.user, attempt.exam, self.required_permission)
        return attempt


class LiveSessionsView(APIView):
    """Active attempts for polling dashboards (?exam=<id> to filter)."""
    permission_classes = [IsAdminOrSupervisor]

    def get(self, request):
        sessions = services.live_sessions(request.user, exam_filter(request))
        return Response({"count": len(sessions), "sessions": sessions})


class SessionDetailView(SupervisedAttemptMixin, APIView):

    def get(self, request, attempt_id):
        attempt = self.get_attempt(request, attempt_id)
        session = ProctoringSession.objects.filter(attempt=attempt).first()
        return Response({
            "attempt": AttemptSerializer(attempt).data,
            "student": {"id": attempt.user_id, "name": attempt.user.display_name, "email": attempt.user.email},
            "is_online": services.is_online(attempt),
            "session": ProctoringSessionSerializer(session).data if session else None,
            "recent_events": ProctoringEventSerializer(
                attempt.proctoring_events.all()[:20], many=True).data,
        })

    def patch(self, request, attempt_id):
        """Supervisor notes are the only editable part of a session."""
        attempt = self.get_attempt(request, attempt_id)
        session = get_object_or_404(ProctoringSession, attempt=attempt)
        serializer = ProctoringSessionSerializer(session, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class AttemptEventsView(SupervisedAttemptMixin, APIView):

    def get(self, request, attempt_id):
        attempt = self.get_attempt(request, attempt_id)
        events = attempt.proctoring_events.all()
        return Response({
            "attempt_id": attempt.id,
            "events": ProctoringEventSerializer(events, many=True).data,
            "summary": services.events_summary(attempt),
        })


class FlagAttemptView(SupervisedAttemptMixin, APIView):
    required_permission = 'can_flag_candidates'

    def post(self, request, attempt_id):
        attempt = self.get_attempt(request, attempt_id)
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attempt = services.flag_attempt(attempt, request.user, serializer.validated_data['reason'])
        AuditLog.record(request, 'STATUS', attempt, f"Flagged attempt {attempt.attempt_code}")
        return Response({"status": "Student flagged successfully", "is_flagged": attempt.is_flagged})


class TerminateAttemptView(SupervisedAttemptMixin, APIView):
    required_permission = 'can_terminate_sessions'

    def post(self, request, attempt_id):
        attempt = self.get_attempt(request, attempt_id)
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attempt = services.terminate(attempt, request.user, serializer.validated_data['reason'])
        AuditLog.record(request, 'TERMINATE', attempt,
                        f"Terminated attempt {attempt.attempt_code}: {serializer.validated_data['reason']}")
        return Response(AttemptSerializer(attempt).data)
