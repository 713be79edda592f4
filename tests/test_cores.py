import pytest

from assessments.services import start_attempt, submit_attempt
from cores.models import AuditLog, PlatformSetting

pytestmark = pytest.mark.django_db


def test_health_is_public(api_client):
    response = api_client.get('/api/health/')

    assert response.status_code == 200
    assert response.data['database'] == 'ok'


def test_settings_singleton_update_is_audited(admin_client):
    response = admin_client.put('/api/settings/', {'default_exam_duration': 45, 'site_name': 'Mock CBT'},
                                format='json')

    assert response.status_code == 200
    assert PlatformSetting.load().default_exam_duration == 45
    assert PlatformSetting.objects.count() == 1
    log = AuditLog.objects.get(action='SETTINGS')
    assert 'default_exam_duration' in log.details


def test_settings_reject_pass_percentage_over_100(admin_client):
    response = admin_client.put('/api/settings/', {'default_pass_percentage': 120}, format='json')

    assert response.status_code == 400


def test_settings_require_admin(supervisor_client):
    assert supervisor_client.get('/api/settings/').status_code == 403


def test_audit_log_filter(admin_client, student):
    admin_client.patch(f'/api/users/{student.id}/toggle-status/')
    admin_client.put('/api/settings/', {'site_name': 'Mock CBT'}, format='json')

    response = admin_client.get('/api/audit-logs/', {'action': 'STATUS'})

    assert response.data['count'] == 1
    assert response.data['results'][0]['target_model'] == 'User'


def test_dashboard_counts(admin_client, exam, student, supervisor):
    attempt, _ = start_attempt(exam, student)
    submit_attempt(attempt)
    start_attempt(exam, student)

    data = admin_client.get('/api/analytics/dashboard/').data

    assert data['users']['by_role'] == {'admin': 1, 'student': 1, 'supervisor': 1}
    assert data['exams']['by_status'] == {'active': 1}
    assert data['questions']['total'] == 4
    assert data['attempts']['total'] == 2
    assert data['attempts']['completed'] == 1
    assert data['attempts']['in_progress'] == 1
    assert data['attempts']['today'] == 2
    assert data['proctoring']['flagged'] == 0


def test_recent_activity_feed_search(admin_client, exam, student):
    start_attempt(exam, student)

    response = admin_client.get('/api/analytics/recent-activity/')
    types = {item['type'] for item in response.data['results']}
    assert types == {'attempt', 'registration', 'exam'}

    response = admin_client.get('/api/analytics/recent-activity/', {'search': 'Mid-term'})
    assert {item['type'] for item in response.data['results']} == {'attempt', 'exam'}
