from datetime import timedelta

import pytest
from django.utils import timezone

from assessments.models import ExamAttempt, ExamResult, ExamSubmission
from assessments.services import start_attempt
from cores.models import PlatformSetting
from proctoring.models import ProctoringEvent, ProctoringSession

pytestmark = pytest.mark.django_db


@pytest.fixture
def attempt(exam, student):
    attempt, _ = start_attempt(exam, student, user_agent='Mozilla/5.0 (Windows NT 10.0) Chrome/120.0')
    return attempt


def log(client, attempt, event_type, **extra):
    return client.post('/api/proctoring/events/', {'attempt_id': attempt.id, 'event_type': event_type, **extra},
                       format='json')


def test_session_opened_at_start_with_client_info(attempt):
    session = ProctoringSession.objects.get(attempt=attempt)

    assert session.status == ProctoringSession.Status.ACTIVE
    assert (session.browser, session.os) == ('Chrome', 'Windows')


def test_event_severity_defaults_and_counters(student_client, attempt):
    response = log(student_client, attempt, 'fullscreen_exit')

    assert response.status_code == 201
    assert response.data['severity'] == 'critical'
    assert response.data['requires_review'] is True
    attempt.refresh_from_db()
    assert attempt.fullscreen_exit_count == 1
    session = ProctoringSession.objects.get(attempt=attempt)
    assert session.total_violations == 1
    assert session.violation_summary == {'fullscreen_exit': 1}


def test_unknown_event_type_is_low(student_client, attempt):
    assert log(student_client, attempt, 'mouse_left_window').data['severity'] == 'low'


def test_cannot_log_events_for_someone_elses_attempt(api_client, other_student, attempt):
    api_client.force_authenticate(other_student)

    assert log(api_client, attempt, 'tab_switch').status_code == 403


def test_exceeding_tab_switch_limit_flags_attempt(student_client, attempt, exam):
    exam.max_tab_switches = 2
    exam.save()

    for _ in range(2):
        log(student_client, attempt, 'tab_switch')
    attempt.refresh_from_db()
    assert attempt.is_flagged is False

    log(student_client, attempt, 'tab_switch')
    attempt.refresh_from_db()
    assert attempt.tab_switch_count == 3
    assert attempt.is_flagged is True
    assert 'tab switches' in attempt.flag_reason


def test_auto_flag_can_be_disabled(student_client, attempt, exam):
    exam.max_tab_switches = 1
    exam.save()
    settings = PlatformSetting.load()
    settings.auto_flag_on_tab_switch_limit = False
    settings.save()

    for _ in range(3):
        log(student_client, attempt, 'tab_switch')

    attempt.refresh_from_db()
    assert attempt.is_flagged is False


def test_connection_lost_returns_current_counters(student_client, attempt):
    response = student_client.post(f'/api/proctoring/attempts/{attempt.id}/connection-lost/')

    assert response.status_code == 200
    assert response.data['connection_status'] == 'disconnected'
    assert response.data['total_violations'] == 1
    assert response.data['violation_summary'] == {'network_disconnect': 1}


def test_reconnect_is_not_a_violation(student_client, attempt):
    student_client.post(f'/api/proctoring/attempts/{attempt.id}/connection-lost/')
    response = student_client.post(f'/api/proctoring/attempts/{attempt.id}/connection-restored/')

    assert response.status_code == 200
    assert response.data['connection_status'] == 'stable'
    assert response.data['disconnection_count'] == 1
    assert response.data['disconnection_log'][0]['duration_seconds'] is not None
    session = ProctoringSession.objects.get(attempt=attempt)
    assert session.total_violations == 1
    assert session.violation_summary == {'network_disconnect': 1}


def test_heartbeat_refreshes_activity(student_client, attempt):
    response = student_client.post(f'/api/proctoring/attempts/{attempt.id}/heartbeat/',
                                   {'current_question_index': 1}, format='json')

    assert response.status_code == 200
    assert response.data['is_active'] is True
    assert response.data['auto_submitted'] is False
    attempt.refresh_from_db()
    assert attempt.current_question_index == 1


def test_heartbeat_auto_submits_overdue_attempt(student_client, attempt):
    ExamAttempt.objects.filter(id=attempt.id).update(expires_at=timezone.now() - timedelta(minutes=2))

    response = student_client.post(f'/api/proctoring/attempts/{attempt.id}/heartbeat/', {}, format='json')

    assert response.data['auto_submitted'] is True
    assert response.data['status'] == 'auto_submitted'
    assert response.data['remaining_seconds'] == 0
    assert ProctoringSession.objects.get(attempt=attempt).status == ProctoringSession.Status.COMPLETED


def test_heartbeat_expires_overdue_paused_attempt(student_client, attempt):
    ExamAttempt.objects.filter(id=attempt.id).update(
        status=ExamAttempt.Status.PAUSED, expires_at=timezone.now() - timedelta(minutes=2))

    response = student_client.post(f'/api/proctoring/attempts/{attempt.id}/heartbeat/', {}, format='json')

    assert response.data['auto_submitted'] is True
    assert response.data['status'] == 'expired'
    assert response.data['is_active'] is False
    attempt.refresh_from_db()
    assert attempt.submission.submission_type == ExamSubmission.Type.AUTO
    assert ExamResult.objects.filter(attempt=attempt).exists()


def test_events_rejected_after_submission(student_client, attempt):
    student_client.post(f'/api/student/attempts/{attempt.id}/submit/')

    assert log(student_client, attempt, 'tab_switch').status_code == 400


# --- Supervision ---

def test_live_sessions_for_assigned_supervisor(supervisor_client, supervisor, attempt, exam, student_client):
    log(student_client, attempt, 'tab_switch')
    assert supervisor_client.get('/api/proctoring/live/').data['count'] == 0

    exam.supervisors.create(supervisor=supervisor)
    response = supervisor_client.get('/api/proctoring/live/', {'exam': exam.id})

    session = response.data['sessions'][0]
    assert session['attempt_id'] == attempt.id
    assert session['is_online'] is True
    assert session['event_counts']['high'] == 1
    assert session['recent_events'][0]['event_type'] == 'tab_switch'


def test_live_sessions_reject_non_numeric_exam_filter(admin_client, attempt):
    response = admin_client.get('/api/proctoring/live/', {'exam': 'abc'})

    assert response.status_code == 400
    assert 'exam' in response.data


def test_supervisor_needs_flag_permission(supervisor_client, supervisor, attempt, exam):
    assignment = exam.supervisors.create(supervisor=supervisor, can_flag_candidates=False)
    url = f'/api/proctoring/attempts/{attempt.id}/flag/'

    assert supervisor_client.post(url, {'reason': 'Looking around'}, format='json').status_code == 403

    assignment.can_flag_candidates = True
    assignment.save()
    response = supervisor_client.post(url, {'reason': 'Looking around'}, format='json')
    assert response.status_code == 200
    attempt.refresh_from_db()
    assert attempt.is_flagged and attempt.flagged_by == supervisor
    flagged_event = ProctoringEvent.objects.get(attempt=attempt, event_type='flagged_by_supervisor')
    assert flagged_event.is_violation is False


def test_terminate_forces_submission(supervisor_client, supervisor, attempt, exam):
    exam.supervisors.create(supervisor=supervisor, can_terminate_sessions=True)

    response = supervisor_client.post(f'/api/proctoring/attempts/{attempt.id}/terminate/',
                                      {'reason': 'Phone on desk'}, format='json')

    assert response.status_code == 200
    assert response.data['status'] == 'terminated'
    attempt.refresh_from_db()
    assert attempt.submission.submission_type == ExamSubmission.Type.FORCED
    result = ExamResult.objects.get(attempt=attempt)
    assert result.remarks == 'Attempt terminated by supervisor: Phone on desk'
    assert ProctoringSession.objects.get(attempt=attempt).status == ProctoringSession.Status.TERMINATED

    response = supervisor_client.post(f'/api/proctoring/attempts/{attempt.id}/terminate/',
                                      {'reason': 'Again'}, format='json')
    assert response.status_code == 400


def test_default_supervisor_cannot_terminate(supervisor_client, supervisor, attempt, exam):
    exam.supervisors.create(supervisor=supervisor)

    response = supervisor_client.post(f'/api/proctoring/attempts/{attempt.id}/terminate/',
                                      {'reason': 'Phone on desk'}, format='json')

    assert response.status_code == 403


def test_events_summary_and_notes(admin_client, student_client, attempt):
    log(student_client, attempt, 'tab_switch')
    log(student_client, attempt, 'right_click')

    data = admin_client.get(f'/api/proctoring/attempts/{attempt.id}/events/').data
    assert data['summary']['total'] == 2
    assert data['summary']['by_type'] == {'tab_switch': 1, 'right_click': 1}
    assert data['summary']['medium'] == 1

    response = admin_client.patch(f'/api/proctoring/attempts/{attempt.id}/',
                                  {'supervisor_notes': 'Watch closely', 'total_violations': 0}, format='json')
    assert response.data['supervisor_notes'] == 'Watch closely'
    assert response.data['total_violations'] == 2
