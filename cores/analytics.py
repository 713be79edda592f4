# cores/analytics.py
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.db.models import Count, Q
from django.utils import timezone

from assessments.models import ExamAttempt
from exams.models import Exam, Question

User = get_user_model()

TAB_SWITCH_ALERT = 5


def _counts(queryset, field):
    return dict(queryset.order_by().values_list(field).annotate(c=Count('id')))


def dashboard_overview():
    today = timezone.localdate()
    attempts = ExamAttempt.objects.all()
    return {
        'users': {
            'total': User.objects.count(),
            'active': User.objects.filter(is_active=True).count(),
            'by_role': _counts(User.objects.all(), 'role'),
        },
        'exams': {
            'total': Exam.objects.count(),
            'by_status': _counts(Exam.objects.all(), 'status'),
        },
        'questions': {
            'total': Question.objects.count(),
            'active': Question.objects.filter(is_active=True).count(),
            'by_type': _counts(Question.objects.all(), 'question_type'),
        },
        'attempts': attempts.aggregate(
            total=Count('id'),
            completed=Count('id', filter=Q(status__in=ExamAttempt.FINISHED_STATUSES)),
            in_progress=Count('id', filter=Q(status__in=ExamAttempt.ACTIVE_STATUSES)),
            today=Count('id', filter=Q(started_at__date=today)),
        ),
        'proctoring': attempts.aggregate(
            flagged=Count('id', filter=Q(is_flagged=True)),
            terminated=Count('id', filter=Q(status=ExamAttempt.Status.TERMINATED)),
            high_tab_switches=Count('id', filter=Q(tab_switch_count__gt=TAB_SWITCH_ALERT)),
        ),
    }


def recent_activity(search=None, days=30):
    """
    Attempts, registrations and exam creations of the last `days` days,
    newest first, as one list of plain dicts.
    """
    since = timezone.now() - timedelta(days=days)
    attempts = ExamAttempt.objects.filter(created_at__gte=since).select_related('user', 'exam')
    users = User.objects.filter(date_joined__gte=since)
    exams = Exam.objects.filter(created_at__gte=since).select_related('created_by')

    if search:
        attempts = attempts.filter(
            Q(user__email__icontains=search) | Q(user__first_name__icontains=search)
            | Q(user__last_name__icontains=search) | Q(exam__title__icontains=search)
        )
        users = users.filter(
            Q(email__icontains=search) | Q(first_name__icontains=search) | Q(last_name__icontains=search)
        )
        exams = exams.filter(Q(title__icontains=search) | Q(code__icontains=search))

    items = [
        {
            'type': 'attempt',
            'id': a.id,
            'title': f"{a.user.display_name} {a.get_status_display().lower()} {a.exam.title}",
            'status': a.status,
            'user': a.user.email,
            'timestamp': a.submitted_at or a.started_at or a.created_at,
        }
        for a in attempts
    ]
    items += [
        {
            'type': 'registration',
            'id': u.id,
            'title': f"{u.display_name} registered as {u.get_role_display().lower()}",
            'status': 'active' if u.is_active else 'inactive',
            'user': u.email,
            'timestamp': u.date_joined,
        }
        for u in users
    ]
    items += [
        {
            'type': 'exam',
            'id': e.id,
            'title': f"Exam {e.code} created: {e.title}",
            'status': e.status,
            'user': e.created_by.email if e.created_by else None,
            'timestamp': e.created_at,
        }
        for e in exams
    ]
    items.sort(key=lambda item: item['timestamp'], reverse=True)
    return items
