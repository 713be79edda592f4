import pytest
from django.contrib.auth import authenticate
from django.core.files.uploadedfile import SimpleUploadedFile

from cores.models import AuditLog
from users.models import User

from .conftest import make_user

pytestmark = pytest.mark.django_db


def test_login_returns_tokens_and_user(api_client, student):
    response = api_client.post('/api/auth/login/', {'email': 'student@example.com', 'password': 'Str0ng-pass!'})

    assert response.status_code == 200
    assert 'access' in response.data and 'refresh' in response.data
    assert response.data['user']['role'] == 'student'


def test_inactive_user_cannot_login(api_client, student):
    student.is_active = False
    student.save()

    response = api_client.post('/api/auth/login/', {'email': 'student@example.com', 'password': 'Str0ng-pass!'})

    assert response.status_code == 401


def test_register_admin_is_open_until_first_admin_exists(api_client):
    payload = {
        'email': 'root@example.com', 'first_name': 'Root', 'last_name': 'User',
        'password': 'An0ther-Strong-pass', 'role': 'student',
    }
    response = api_client.post('/api/auth/register-admin/', payload)

    assert response.status_code == 201
    user = User.objects.get(email='root@example.com')
    assert user.role == User.Role.ADMIN
    assert user.is_staff

    payload['email'] = 'second@example.com'
    response = api_client.post('/api/auth/register-admin/', payload)
    assert response.status_code == 403


def test_logout_blacklists_refresh_token(api_client, student):
    tokens = api_client.post(
        '/api/auth/login/', {'email': 'student@example.com', 'password': 'Str0ng-pass!'}).data
    api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")

    assert api_client.post('/api/auth/logout/', {'refresh': tokens['refresh']}).status_code == 200
    assert api_client.post('/api/auth/logout/', {'refresh': tokens['refresh']}).status_code == 400


def test_change_password_checks_current_password(student_client, student):
    response = student_client.post('/api/auth/change-password/', {
        'current_password': 'wrong', 'new_password': 'Brand-new-pass-9'})
    assert response.status_code == 400

    response = student_client.post('/api/auth/change-password/', {
        'current_password': 'Str0ng-pass!', 'new_password': 'Brand-new-pass-9'})
    assert response.status_code == 200
    student.refresh_from_db()
    assert student.check_password('Brand-new-pass-9')


def test_profile_cannot_change_role(student_client, student):
    response = student_client.patch('/api/auth/me/', {'role': 'admin', 'bio': 'Hello'}, format='json')

    assert response.status_code == 200
    student.refresh_from_db()
    assert student.role == User.Role.STUDENT
    assert student.bio == 'Hello'


def test_students_cannot_manage_users(student_client):
    assert student_client.get('/api/users/').status_code == 403


def test_users_by_role_and_toggle_status(admin_client, admin_user, student, supervisor):
    response = admin_client.get('/api/users/role/supervisor/')
    assert response.status_code == 200
    assert [u['email'] for u in response.data['results']] == ['supervisor@example.com']

    assert admin_client.get('/api/users/role/janitor/').status_code == 400

    response = admin_client.patch(f'/api/users/{student.id}/toggle-status/')
    assert response.status_code == 200
    assert response.data['is_active'] is False
    assert AuditLog.objects.filter(action='STATUS', target_object_id=str(student.id)).exists()

    assert admin_client.patch(f'/api/users/{admin_user.id}/toggle-status/').status_code == 400


def test_import_students_from_json_reports_duplicates(admin_client, student):
    response = admin_client.post('/api/users/import/students/', {'users': [
        {'name': 'Ada Lovelace', 'email': 'ada@example.com', 'student_id': 'STU-100'},
        {'name': 'Copy Cat', 'email': 'student@example.com'},
    ]}, format='json')

    assert response.status_code == 201
    assert response.data['success_count'] == 1
    assert response.data['failed_count'] == 1
    assert response.data['failed'][0]['line'] == 2
    created = response.data['created'][0]
    assert 'password' in created

    ada = User.objects.get(email='ada@example.com')
    assert ada.role == User.Role.STUDENT
    assert ada.first_name == 'Ada' and ada.last_name == 'Lovelace'
    assert ada.check_password(created['password'])


def test_import_supervisors_from_csv(admin_client):
    content = b"name,email,password\nGrace Hopper,grace@example.com,Cobol-1959!\n,missing-name@example.com,\n"
    upload = SimpleUploadedFile('staff.csv', content, content_type='text/csv')

    response = admin_client.post('/api/users/import/supervisors/', {'file': upload}, format='multipart')

    assert response.status_code == 201
    assert response.data['success_count'] == 2
    grace = User.objects.get(email='grace@example.com')
    assert grace.role == User.Role.SUPERVISOR
    assert grace.check_password('Cobol-1959!')


def test_grade_levels_readable_by_students_but_not_writable(student_client, admin_client):
    assert admin_client.post('/api/grade-levels/', {'name': 'Grade 10', 'code': 'G10'}).status_code == 201
    response = student_client.get('/api/grade-levels/')
    assert response.status_code == 200
    assert response.data[0]['code'] == 'G10'
    assert student_client.post('/api/grade-levels/', {'name': 'Grade 11', 'code': 'G11'}).status_code == 403


def test_email_backend_accepts_username(db):
    make_user('casey@example.com', User.Role.STUDENT)
    assert authenticate(username='CASEY@example.com', password='Str0ng-pass!') is not None
