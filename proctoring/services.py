# proctoring/services.py
import logging
from datetime import datetime, timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from assessments import services as attempt_services
from assessments.models import ExamAttempt
from cores.models import PlatformSetting
from exams.services import supervisor_assignment

from .models import ProctoringEvent, ProctoringSession

logger = logging.getLogger(__name__)

# Attempt counters bumped by each event type
COUNTERS = {
    'tab_switch': 'tab_switch_count',
    'window_blur': 'window_blur_count',
    'copy_attempt': 'copy_paste_attempts',
    'paste_attempt': 'copy_paste_attempts',
    'fullscreen_exit': 'fullscreen_exit_count',
}


def parse_user_agent(user_agent):
    """Very small browser / OS sniffing, enough for the supervisor view."""
    ua = user_agent or ''
    if 'Firefox' in ua:
        browser = 'Firefox'
    elif 'Edg' in ua:
        browser = 'Edge'
    elif 'Chrome' in ua:
        browser = 'Chrome'
    elif 'Safari' in ua:
        browser = 'Safari'
    else:
        browser = 'Unknown'

    if 'Windows' in ua:
        os_name = 'Windows'
    elif 'Android' in ua:
        os_name = 'Android'
    elif 'iPhone' in ua or 'iPad' in ua or 'iOS' in ua:
        os_name = 'iOS'
    elif 'Mac' in ua:
        os_name = 'macOS'
    elif 'Linux' in ua:
        os_name = 'Linux'
    else:
        os_name = 'Unknown'
    return browser, os_name


# --- Session lifecycle ---

def open_session(attempt, screen_info=None):
    browser, os_name = parse_user_agent(attempt.user_agent)
    session, created = ProctoringSession.objects.get_or_create(
        attempt=attempt,
        defaults={
            'browser': browser,
            'os': os_name,
            'screen_info': screen_info or {},
            'last_activity_at': timezone.now(),
        },
    )
    if created:
        logger.info("Proctoring session opened for attempt %s", attempt.attempt_code)
    return session


def close_session(attempt):
    session = ProctoringSession.objects.filter(attempt=attempt, status=ProctoringSession.Status.ACTIVE).first()
    if session is None:
        return None
    session.status = (ProctoringSession.Status.TERMINATED if attempt.status == ExamAttempt.Status.TERMINATED
                      else ProctoringSession.Status.COMPLETED)
    session.ended_at = timezone.now()
    session.save(update_fields=['status', 'ended_at'])
    logger.info("Proctoring session for %s closed as %s (%s violations)",
                attempt.attempt_code, session.status, session.total_violations)
    return session


def _active_session(attempt):
    session = ProctoringSession.objects.filter(attempt=attempt).first()
    if session is None and attempt.is_active:
        session = open_session(attempt)
    return session


def _require_active(attempt):
    attempt_services.finalize_if_overdue(attempt, raise_closed=True)
    if not attempt.is_active:
        raise ValidationError({"error": "Attempt is not active."})


# --- Student side ---

def heartbeat(attempt, current_question_index=None):
    finalized = attempt_services.finalize_if_overdue(attempt)
    now = timezone.now()
    if attempt.is_active:
        fields = ['last_activity_at', 'updated_at']
        attempt.last_activity_at = now
        if current_question_index is not None:
            attempt.current_question_index = current_question_index
            fields.append('current_question_index')
        attempt.save(update_fields=fields)

        session = ProctoringSession.objects.filter(attempt=attempt, status=ProctoringSession.Status.ACTIVE).first()
        if session is not None:
            session.last_activity_at = now
            session.connection_status = ProctoringSession.Connection.STABLE
            if current_question_index is not None:
                session.current_question_index = current_question_index
            session.save(update_fields=['last_activity_at', 'connection_status', 'current_question_index'])

    return {
        'status': attempt.status,
        'is_active': attempt.is_active,
        'auto_submitted': finalized,
        'remaining_seconds': attempt.remaining_seconds(now),
        'server_time': now,
    }


def log_event(attempt, event_type, severity=None, description='', event_data=None,
              question_index=None, ip_address=None, reported_by=None):
    """
    Record a client-reported event. Violations bump the attempt's integrity
    counters and the session summary; going over the exam's tab switch
    limit flags the attempt.
    """
    _require_active(attempt)
    now = timezone.now()
    severity = severity or ProctoringEvent.default_severity(event_type)

    with transaction.atomic():
        attempt = ExamAttempt.objects.select_for_update().select_related('exam').get(pk=attempt.pk)
        session = _active_session(attempt)
        seconds_in = int((now - attempt.started_at).total_seconds()) if attempt.started_at else None

        event = ProctoringEvent.objects.create(
            attempt=attempt,
            session=session,
            event_type=event_type,
            description=description or '',
            event_data=event_data or {},
            severity=severity,
            question_index=question_index,
            seconds_into_exam=seconds_in,
            ip_address=ip_address,
            reported_by=reported_by,
            requires_review=severity in (ProctoringEvent.Severity.HIGH, ProctoringEvent.Severity.CRITICAL),
            occurred_at=now,
        )

        if event.is_violation:
            counter = COUNTERS.get(event_type)
            if counter:
                setattr(attempt, counter, getattr(attempt, counter) + 1)
            attempt.last_activity_at = now
            attempt.save()

            if session is not None:
                summary = dict(session.violation_summary or {})
                summary[event_type] = summary.get(event_type, 0) + 1
                session.violation_summary = summary
                session.total_violations += 1
                session.last_activity_at = now
                session.save(update_fields=['violation_summary', 'total_violations', 'last_activity_at'])

            _check_tab_switch_limit(attempt, event_type, now)

    logger.info("Proctoring event %s (%s) on attempt %s", event_type, severity, attempt.attempt_code)
    return event


def _check_tab_switch_limit(attempt, event_type, now):
    limit = attempt.exam.max_tab_switches
    if event_type != 'tab_switch' or not limit or attempt.is_flagged:
        return
    if attempt.tab_switch_count <= limit:
        return
    if not PlatformSetting.load().auto_flag_on_tab_switch_limit:
        return
    attempt.is_flagged = True
    attempt.flag_reason = f"Exceeded the maximum of {limit} tab switches"
    attempt.flagged_at = now
    attempt.save(update_fields=['is_flagged', 'flag_reason', 'flagged_at', 'updated_at'])
    logger.warning("Attempt %s auto-flagged after %s tab switches", attempt.attempt_code, attempt.tab_switch_count)


def connection_lost(attempt, ip_address=None):
    _require_active(attempt)
    session = _active_session(attempt)
    now = timezone.now()
    log = list(session.disconnection_log or [])
    log.append({'disconnected_at': now.isoformat(), 'reconnected_at': None, 'duration_seconds': None})
    session.disconnection_log = log
    session.disconnection_count += 1
    session.connection_status = ProctoringSession.Connection.DISCONNECTED
    session.save(update_fields=['disconnection_log', 'disconnection_count', 'connection_status'])
    log_event(attempt, 'network_disconnect', ip_address=ip_address)
    session.refresh_from_db()
    return session


def connection_restored(attempt, ip_address=None):
    _require_active(attempt)
    session = _active_session(attempt)
    now = timezone.now()
    log = list(session.disconnection_log or [])
    if log and log[-1].get('reconnected_at') is None:
        started = datetime.fromisoformat(log[-1]['disconnected_at'])
        log[-1]['reconnected_at'] = now.isoformat()
        log[-1]['duration_seconds'] = int((now - started).total_seconds())
    session.disconnection_log = log
    session.connection_status = ProctoringSession.Connection.STABLE
    session.last_activity_at = now
    session.save(update_fields=['disconnection_log', 'connection_status', 'last_activity_at'])
    log_event(attempt, 'network_reconnect', severity=ProctoringEvent.Severity.LOW, ip_address=ip_address)
    session.refresh_from_db()
    return session


# --- Supervisor side ---

def check_permission(user, exam, permission='can_view_live'):
    """Admins may do anything; supervisors need an assignment with `permission`."""
    if user.is_admin:
        return
    assignment = supervisor_assignment(exam, user) if user.is_supervisor else None
    if assignment is None or not getattr(assignment, permission):
        raise PermissionDenied("You are not allowed to supervise this exam.")


def is_online(attempt, now=None):
    if attempt.last_activity_at is None:
        return False
    now = now or timezone.now()
    return now - attempt.last_activity_at <= timedelta(seconds=settings.CBT_HEARTBEAT_TIMEOUT_SECONDS)


def severity_counts(events):
    counts = {level: 0 for level in ProctoringEvent.Severity.values}
    for row in events.order_by().values('severity').annotate(c=Count('id')):
        counts[row['severity']] = row['c']
    return counts


def live_sessions(user, exam_id=None):
    attempts = (
        ExamAttempt.objects.filter(status__in=ExamAttempt.ACTIVE_STATUSES)
        .select_related('user', 'exam')
        .order_by('started_at')
    )
    if exam_id:
        attempts = attempts.filter(exam_id=exam_id)
    if not user.is_admin:
        attempts = attempts.filter(
            exam__supervisors__supervisor=user, exam__supervisors__can_view_live=True
        )

    now = timezone.now()
    recent_limit = settings.CBT_LIVE_RECENT_EVENTS
    sessions = []
    for attempt in attempts:
        events = attempt.proctoring_events.all()
        sessions.append({
            'attempt_id': attempt.id,
            'attempt_code': attempt.attempt_code,
            'status': attempt.status,
            'student': {'id': attempt.user_id, 'name': attempt.user.display_name, 'email': attempt.user.email},
            'exam': {'id': attempt.exam_id, 'code': attempt.exam.code, 'title': attempt.exam.title},
            'started_at': attempt.started_at,
            'remaining_seconds': attempt.remaining_seconds(now),
            'last_activity_at': attempt.last_activity_at,
            'is_online': is_online(attempt, now),
            'current_question_index': attempt.current_question_index,
            'questions_answered': attempt.questions_answered,
            'total_questions': len(attempt.question_order),
            'tab_switch_count': attempt.tab_switch_count,
            'is_flagged': attempt.is_flagged,
            'event_counts': severity_counts(events),
            'recent_events': [
                {'id': e.id, 'event_type': e.event_type, 'severity': e.severity, 'occurred_at': e.occurred_at}
                for e in events[:recent_limit]
            ],
        })
    return sessions


def events_summary(attempt):
    events = attempt.proctoring_events.all()
    by_type = dict(events.order_by().values_list('event_type').annotate(c=Count('id')))
    return {'total': events.count(), **severity_counts(events), 'by_type': by_type}


def flag_attempt(attempt, by, reason):
    now = timezone.now()
    attempt.is_flagged = True
    attempt.flag_reason = reason
    attempt.flagged_by = by
    attempt.flagged_at = now
    attempt.save(update_fields=['is_flagged', 'flag_reason', 'flagged_by', 'flagged_at', 'updated_at'])
    ProctoringEvent.objects.create(
        attempt=attempt,
        session=ProctoringSession.objects.filter(attempt=attempt).first(),
        event_type='flagged_by_supervisor',
        description=reason,
        event_data={'supervisor_id': by.id, 'supervisor': by.display_name},
        severity=ProctoringEvent.Severity.HIGH,
        reported_by=by,
        is_flagged=True,
        occurred_at=now,
    )
    logger.warning("Attempt %s flagged by %s: %s", attempt.attempt_code, by.email, reason)
    return attempt


def terminate(attempt, by, reason):
    attempt = attempt_services.terminate_attempt(attempt, by, reason)
    ProctoringEvent.objects.create(
        attempt=attempt,
        session=ProctoringSession.objects.filter(attempt=attempt).first(),
        event_type='attempt_terminated',
        description=reason,
        event_data={'terminated_by': by.id},
        severity=ProctoringEvent.Severity.CRITICAL,
        reported_by=by,
        occurred_at=timezone.now(),
    )
    return attempt
