import mimetypes

from django.db.models import Count, Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import filters, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle

from cores.models import AuditLog
from cores.spreadsheets import SpreadsheetError, read_rows
from users.permissions import IsAdmin, IsAdminOrSupervisor

from . import services
from .importers import export_questions, import_questions, template_csv
from .models import Exam, ExamSection, Question, QuestionAttachment, Subject, Topic
from .serializers import (
    AddQuestionsSerializer, BulkIdsSerializer, BulkTagsSerializer,
    ExamDetailSerializer, ExamSerializer, QuestionAttachmentSerializer, QuestionSerializer,
    ReorderSerializer, SubjectSerializer, TopicSerializer,
)

TRUE_VALUES = ('1', 'true', 'yes')


class SubjectViewSet(viewsets.ModelViewSet):
    queryset = Subject.objects.all()
    serializer_class = SubjectSerializer
    pagination_class = None

    def get_permissions(self):
        if self.action in ['list', 'retrieve']:
            return [permissions.IsAuthenticated()]
        return [IsAdmin()]


class TopicViewSet(SubjectViewSet):
    queryset = Topic.objects.select_related('subject')
    serializer_class = TopicSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        subject_id = self.request.query_params.get('subject')
        if subject_id:
            queryset = queryset.filter(subject_id=subject_id)
        return queryset


class QuestionViewSet(viewsets.ModelViewSet):
    """
    The question bank. Admin only.
    Filters: ?type= &subject= &topic= &difficulty= &is_active= &is_verified= &tag= &search=
    """
    queryset = Question.objects.select_related('subject', 'topic').prefetch_related('options', 'attachments')
    serializer_class = QuestionSerializer
    permission_classes = [IsAdmin]
    parser_classes = (JSONParser, MultiPartParser, FormParser)

    filter_backends = [filters.SearchFilter]
    search_fields = ['text', 'code', 'explanation']

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params
        for param, field in (('type', 'question_type'), ('subject', 'subject_id'),
                             ('topic', 'topic_id'), ('difficulty', 'difficulty')):
            if params.get(param):
                queryset = queryset.filter(**{field: params[param]})
        for param in ('is_active', 'is_verified'):
            if params.get(param) is not None:
                queryset = queryset.filter(**{param: params[param].lower() in TRUE_VALUES})
        tag = params.get('tag')
        if tag:
            # JSON containment lookups are not portable to SQLite
            ids = [q.id for q in queryset.only('id', 'tags') if tag in (q.tags or [])]
            queryset = queryset.filter(id__in=ids)
        return queryset

    def get_throttles(self):
        if self.action in ['import_questions', 'export']:
            self.throttle_scope = 'imports'
            return [ScopedRateThrottle()]
        return super().get_throttles()

    def perform_create(self, serializer):
        question = serializer.save(created_by=self.request.user, updated_by=self.request.user)
        AuditLog.record(self.request, 'CREATE', question, f"Created question {question.code}")

    def perform_update(self, serializer):
        question = serializer.save(updated_by=self.request.user)
        AuditLog.record(self.request, 'UPDATE', question, f"Updated question {question.code}")

    def destroy(self, request, *args, **kwargs):
        question = self.get_object()
        if question.exam_links.exists():
            return Response({"error": "Question is used in an exam and cannot be deleted"},
                            status=status.HTTP_400_BAD_REQUEST)
        AuditLog.record(request, 'DELETE', question, f"Deleted question {question.code}")
        question.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'])
    def duplicate(self, request, pk=None):
        copy = services.duplicate_question(self.get_object(), request.user)
        return Response(QuestionSerializer(copy).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def verify(self, request, pk=None):
        question = self.get_object()
        question.is_verified = True
        question.verified_at = timezone.now()
        question.verified_by = request.user
        question.save(update_fields=['is_verified', 'verified_at', 'verified_by', 'updated_at'])
        return Response(QuestionSerializer(question).data)

    @action(detail=True, methods=['post'])
    def unverify(self, request, pk=None):
        question = self.get_object()
        question.is_verified = False
        question.verified_at = None
        question.verified_by = None
        question.save(update_fields=['is_verified', 'verified_at', 'verified_by', 'updated_at'])
        return Response(QuestionSerializer(question).data)

    @action(detail=True, methods=['post'], url_path='toggle-active')
    def toggle_active(self, request, pk=None):
        question = self.get_object()
        question.is_active = not question.is_active
        question.save(update_fields=['is_active', 'updated_at'])
        return Response({"id": question.id, "is_active": question.is_active})

    @action(detail=False, methods=['post'], url_path='bulk-delete')
    def bulk_delete(self, request):
        serializer = BulkIdsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        questions = Question.objects.filter(id__in=serializer.validated_data['ids'])
        in_use = list(questions.filter(exam_links__isnull=False).distinct().values_list('id', flat=True))
        deletable = questions.exclude(id__in=in_use)
        count = deletable.count()
        deletable.delete()
        AuditLog.record(request, 'DELETE', 'Question', f"Bulk deleted questions, skipped in-use ids {in_use}")
        return Response({"deleted": count, "skipped": in_use})

    @action(detail=False, methods=['post'], url_path='bulk-tags')
    def bulk_tags(self, request):
        serializer = BulkTagsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        updated = services.update_tags(Question.objects.filter(id__in=data['ids']), data['tags'], data['mode'])
        return Response({"updated": updated})

    @action(detail=False, methods=['get'])
    def statistics(self, request):
        queryset = Question.objects.order_by()
        return Response({
            "total": queryset.count(),
            "active": queryset.filter(is_active=True).count(),
            "verified": queryset.filter(is_verified=True).count(),
            "by_type": dict(queryset.values_list('question_type').annotate(c=Count('id'))),
            "by_difficulty": dict(queryset.values_list('difficulty').annotate(c=Count('id'))),
            "by_subject": list(
                queryset.filter(subject__isnull=False).values('subject__code', 'subject__name')
                .annotate(count=Count('id')).order_by('subject__code')
            ),
        })

    @action(detail=False, methods=['post'], url_path='import')
    def import_questions(self, request):
        """
        Upload questions via CSV or Excel (field name `file`).
        Rows that fail validation are reported; the rest are created.
        """
        file_obj = request.FILES.get('file')
        if not file_obj:
            return Response({"error": "No file uploaded"}, status=status.HTTP_400_BAD_REQUEST)
        try:
            rows = read_rows(file_obj)
        except SpreadsheetError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        report = import_questions(rows, request.user)
        AuditLog.record(request, 'IMPORT', 'Question',
                        f"Imported {report['success_count']} questions, {report['failed_count']} failed")
        code = status.HTTP_201_CREATED if report['success_count'] else status.HTTP_400_BAD_REQUEST
        return Response(report, status=code)

    @action(detail=False, methods=['get'])
    def export(self, request):
        content = export_questions(self.filter_queryset(self.get_queryset()))
        response = HttpResponse(content, content_type='text/csv')
        response['Content-Disposition'] = f'attachment; filename="questions_{timezone.now():%Y%m%d_%H%M%S}.csv"'
        return response

    @action(detail=False, methods=['get'])
    def template(self, request):
        response = HttpResponse(template_csv(), content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename="question_import_template.csv"'
        return response

    @action(detail=True, methods=['post'], parser_classes=[MultiPartParser, FormParser])
    def attachments(self, request, pk=None):
        question = self.get_object()
        file_obj = request.FILES.get('file')
        if not file_obj:
            return Response({"error": "No file uploaded"}, status=status.HTTP_400_BAD_REQUEST)

        mime_type = file_obj.content_type or mimetypes.guess_type(file_obj.name)[0] or ''
        family = mime_type.split('/')[0]
        file_type = family if family in ('image', 'audio', 'video') else QuestionAttachment.FileType.DOCUMENT
        serializer = QuestionAttachmentSerializer(data={
            'file': file_obj,
            'file_type': file_type,
            'context': request.data.get('context', QuestionAttachment.Context.QUESTION),
        })
        serializer.is_valid(raise_exception=True)
        attachment = serializer.save(
            question=question, original_name=file_obj.name, mime_type=mime_type,
            size=file_obj.size, uploaded_by=request.user,
        )
        return Response(QuestionAttachmentSerializer(attachment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['delete'], url_path=r'attachments/(?P<attachment_id>\d+)')
    def delete_attachment(self, request, pk=None, attachment_id=None):
        attachment = get_object_or_404(QuestionAttachment, id=attachment_id, question_id=pk)
        attachment.file.delete(save=False)
        attachment.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class ExamViewSet(viewsets.ModelViewSet):
    """
    Exam configuration. Admins manage; supervisors may read.
    Candidates use the assessments endpoints instead.
    """
    queryset = Exam.objects.select_related('subject').prefetch_related(
        'sections', 'eligibility_rules', 'supervisors__supervisor'
    )

    # Enable search on title and code
    filter_backends = [filters.SearchFilter]
    search_fields = ['title', 'code', 'subject__name']

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return ExamDetailSerializer
        return ExamSerializer

    def get_permissions(self):
        if self.action in ['list', 'retrieve', 'statistics', 'upcoming', 'ongoing']:
            return [IsAdminOrSupervisor()]
        return [IsAdmin()]

    def get_queryset(self):
        queryset = super().get_queryset()
        user = self.request.user
        if not user.is_admin:
            queryset = queryset.filter(supervisors__supervisor=user)
        params = self.request.query_params
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        if params.get('subject'):
            queryset = queryset.filter(subject_id=params['subject'])
        return queryset

    def perform_create(self, serializer):
        exam = serializer.save(created_by=self.request.user)
        AuditLog.record(self.request, 'CREATE', exam, f"Created exam {exam.code}: {exam.title}")

    def perform_update(self, serializer):
        exam = serializer.save()
        AuditLog.record(self.request, 'UPDATE', exam, f"Updated exam {exam.code}")

    def destroy(self, request, *args, **kwargs):
        exam = self.get_object()
        if exam.attempts.exists():
            return Response({"error": "Exam has attempts and cannot be deleted. Archive it instead."},
                            status=status.HTTP_400_BAD_REQUEST)
        AuditLog.record(request, 'DELETE', exam, f"Deleted exam {exam.code}")
        exam.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    def _transition(self, request, change, verb):
        exam = change(self.get_object())
        AuditLog.record(request, 'STATUS', exam, f"{verb} exam {exam.code}")
        return Response(ExamSerializer(exam).data)

    @action(detail=True, methods=['post'])
    def publish(self, request, pk=None):
        return self._transition(request, services.publish_exam, 'Published')

    @action(detail=True, methods=['post'])
    def activate(self, request, pk=None):
        return self._transition(request, services.activate_exam, 'Activated')

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        return self._transition(request, services.complete_exam, 'Completed')

    @action(detail=True, methods=['post'])
    def archive(self, request, pk=None):
        return self._transition(request, services.archive_exam, 'Archived')

    @action(detail=True, methods=['post'])
    def duplicate(self, request, pk=None):
        copy = services.duplicate_exam(self.get_object(), request.user)
        AuditLog.record(request, 'CREATE', copy, f"Duplicated exam as {copy.code}")
        return Response(ExamDetailSerializer(copy).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='add-questions')
    def add_questions(self, request, pk=None):
        """
        Adds questions from the bank to this exam.
        Payload: { "question_ids": [1, 2, 3], "section_id": null, "marks": null }
        """
        exam = self.get_object()
        serializer = AddQuestionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        section = None
        if data.get('section_id'):
            section = get_object_or_404(ExamSection, id=data['section_id'], exam=exam)
        added = services.add_questions(exam, data['question_ids'], section=section, marks=data.get('marks'))
        exam.refresh_from_db()
        return Response({"added": added, "total_questions": exam.total_questions, "total_marks": exam.total_marks})

    @action(detail=True, methods=['delete'], url_path=r'questions/(?P<question_id>\d+)')
    def remove_question(self, request, pk=None, question_id=None):
        exam = self.get_object()
        services.remove_question(exam, int(question_id))
        return Response({"total_questions": exam.total_questions, "total_marks": exam.total_marks})

    @action(detail=True, methods=['post'])
    def reorder(self, request, pk=None):
        exam = self.get_object()
        serializer = ReorderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.reorder_questions(exam, serializer.validated_data['questions'])
        return Response({"status": "Questions reordered"})

    @action(detail=True, methods=['get'])
    def statistics(self, request, pk=None):
        return Response(services.exam_statistics(self.get_object()))

    @action(detail=False, methods=['get'])
    def upcoming(self, request):
        now = timezone.now()
        queryset = self.get_queryset().filter(
            status__in=[Exam.Status.PUBLISHED, Exam.Status.ACTIVE], start_datetime__gt=now
        ).order_by('start_datetime')
        return Response(ExamSerializer(queryset, many=True).data)

    @action(detail=False, methods=['get'])
    def ongoing(self, request):
        now = timezone.now()
        queryset = self.get_queryset().filter(status=Exam.Status.ACTIVE).filter(
            Q(start_datetime__isnull=True) | Q(start_datetime__lte=now),
            Q(end_datetime__isnull=True) | Q(end_datetime__gte=now),
        )
        return Response(ExamSerializer(queryset, many=True).data)
