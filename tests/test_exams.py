from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from django.utils import timezone

from assessments.services import start_attempt
from exams.models import Exam, ExamEligibility, ExamQuestion, Question
from exams.services import check_eligibility, generate_exam_code, is_user_allowed
from users.models import SchoolClass

from .conftest import make_choice_question

pytestmark = pytest.mark.django_db


def question_payload(subject, **overrides):
    payload = {
        'question_type': 'multiple_choice_single',
        'text': 'Which planet is largest?',
        'subject': subject.id,
        'marks': '1.00',
        'options': [
            {'text': 'Mars', 'is_correct': False},
            {'text': 'Jupiter', 'is_correct': True},
        ],
    }
    payload.update(overrides)
    return payload


def test_create_question_with_options(admin_client, admin_user, subject):
    response = admin_client.post('/api/questions/', question_payload(subject), format='json')

    assert response.status_code == 201
    question = Question.objects.get(id=response.data['id'])
    assert question.code.startswith('Q-')
    assert question.created_by == admin_user
    assert [(o.key, o.is_correct) for o in question.options.all()] == [('A', False), ('B', True)]


def test_explicit_option_keys_are_kept(admin_client, subject):
    payload = question_payload(subject, options=[
        {'key': 'X', 'text': 'Mars', 'is_correct': False},
        {'key': 'Y', 'text': 'Jupiter', 'is_correct': True},
    ])
    response = admin_client.post('/api/questions/', payload, format='json')

    assert response.status_code == 201
    assert [o['key'] for o in response.data['options']] == ['X', 'Y']


def test_single_choice_rejects_two_correct_options(admin_client, subject):
    payload = question_payload(subject, options=[
        {'text': 'Mars', 'is_correct': True},
        {'text': 'Jupiter', 'is_correct': True},
    ])
    response = admin_client.post('/api/questions/', payload, format='json')

    assert response.status_code == 400
    assert 'options' in response.data


def test_numeric_question_needs_answer(admin_client, subject):
    payload = question_payload(subject, question_type='numeric', options=[])
    response = admin_client.post('/api/questions/', payload, format='json')

    assert response.status_code == 400
    assert 'correct_answer_numeric' in response.data


def test_questions_used_in_exams_cannot_be_deleted(admin_client, exam, questions, subject):
    response = admin_client.delete(f"/api/questions/{questions['single'].id}/")
    assert response.status_code == 400

    spare = make_choice_question(subject, "Spare question", ["x", "y"], "A")
    response = admin_client.post('/api/questions/bulk-delete/',
                                 {'ids': [questions['numeric'].id, spare.id]}, format='json')
    assert response.status_code == 200
    assert response.data['deleted'] == 1
    assert not Question.objects.filter(id=spare.id).exists()


def test_bulk_tags_add_remove_replace(admin_client, questions):
    ids = [questions['single'].id, questions['multiple'].id]
    admin_client.post('/api/questions/bulk-tags/', {'ids': ids, 'tags': ['algebra'], 'mode': 'add'}, format='json')
    questions['single'].refresh_from_db()
    assert questions['single'].tags == ['algebra']

    admin_client.post('/api/questions/bulk-tags/', {'ids': ids, 'tags': ['exam'], 'mode': 'replace'}, format='json')
    admin_client.post('/api/questions/bulk-tags/', {'ids': ids, 'tags': ['exam'], 'mode': 'remove'}, format='json')
    questions['multiple'].refresh_from_db()
    assert questions['multiple'].tags == []


def test_duplicate_and_verify_question(admin_client, questions):
    response = admin_client.post(f"/api/questions/{questions['single'].id}/duplicate/")
    assert response.status_code == 201
    assert response.data['text'].endswith('(Copy)')
    assert len(response.data['options']) == 3

    response = admin_client.post(f"/api/questions/{questions['single'].id}/verify/")
    assert response.data['is_verified'] is True


def test_import_questions_reports_bad_rows(admin_client, subject):
    content = (
        "question_type,question_text,subject_code,marks,option_a,option_b,correct_answer\n"
        "multiple_choice_single,Largest planet?,MTH,1,Mars,Jupiter,B\n"
        "true_false,The sun is a star.,MTH,1,,,True\n"
        "multiple_choice_single,No answer given,MTH,1,Mars,Jupiter,\n"
    ).encode()
    upload = SimpleUploadedFile('questions.csv', content, content_type='text/csv')

    response = admin_client.post('/api/questions/import/', {'file': upload}, format='multipart')

    assert response.status_code == 201
    assert response.data['success_count'] == 2
    assert response.data['failed_count'] == 1
    assert response.data['errors'][0]['line'] == 4
    true_false = Question.objects.get(text='The sun is a star.')
    assert [o.text for o in true_false.options.filter(is_correct=True)] == ['True']


def test_export_and_template_are_csv(admin_client, questions):
    response = admin_client.get('/api/questions/export/')
    assert response.status_code == 200
    assert response['Content-Type'] == 'text/csv'
    assert b'Pi to two places?' in response.content

    response = admin_client.get('/api/questions/template/')
    assert response.content.decode().startswith('question_type,question_text')


# --- Exams ---

def test_exam_code_format(db):
    assert generate_exam_code() == f"EX-{timezone.now().year}-001"


def test_create_exam_uses_platform_defaults(admin_client, subject):
    response = admin_client.post('/api/exams/', {'title': 'Quiz', 'subject': subject.id}, format='json')

    assert response.status_code == 201
    assert response.data['status'] == 'draft'
    assert response.data['duration_minutes'] == 60
    assert response.data['code'].startswith('EX-')


def test_exam_end_must_follow_start(admin_client):
    now = timezone.now()
    response = admin_client.post('/api/exams/', {
        'title': 'Quiz', 'start_datetime': now.isoformat(),
        'end_datetime': (now - timedelta(hours=1)).isoformat(),
    }, format='json')

    assert response.status_code == 400
    assert 'end_datetime' in response.data


def test_publish_requires_questions_then_activate(admin_client, admin_user, questions):
    exam = Exam.objects.create(code='EX-2026-050', title='Draft exam', created_by=admin_user)

    assert admin_client.post(f'/api/exams/{exam.id}/publish/').status_code == 400
    assert admin_client.post(f'/api/exams/{exam.id}/activate/').status_code == 400

    response = admin_client.post(f'/api/exams/{exam.id}/add-questions/',
                                 {'question_ids': [questions['single'].id, questions['numeric'].id]}, format='json')
    assert response.status_code == 200
    assert response.data['added'] == 2
    assert Decimal(str(response.data['total_marks'])) == Decimal('4')

    assert admin_client.post(f'/api/exams/{exam.id}/publish/').data['status'] == 'published'
    assert admin_client.post(f'/api/exams/{exam.id}/activate/').data['status'] == 'active'


def test_add_questions_skips_duplicates_and_appends(admin_client, exam, questions, essay_question):
    response = admin_client.post(f'/api/exams/{exam.id}/add-questions/',
                                 {'question_ids': [questions['single'].id, essay_question.id]}, format='json')

    assert response.data['added'] == 1
    assert response.data['total_questions'] == 5
    link = ExamQuestion.objects.get(exam=exam, question=essay_question)
    assert link.order == 5
    essay_question.refresh_from_db()
    assert essay_question.times_used == 1


def test_remove_question_recalculates_totals(admin_client, exam, questions):
    response = admin_client.delete(f"/api/exams/{exam.id}/questions/{questions['short'].id}/")

    assert response.status_code == 200
    assert response.data['total_questions'] == 3
    exam.refresh_from_db()
    assert exam.total_marks == Decimal('6')


def test_question_marks_change_refreshes_exam_totals(admin_client, exam, questions):
    response = admin_client.patch(f"/api/questions/{questions['single'].id}/", {'marks': '10.00'}, format='json')

    assert response.status_code == 200
    exam.refresh_from_db()
    assert exam.total_marks == Decimal('16')


def test_options_are_locked_once_an_exam_has_attempts(admin_client, exam, questions, student):
    start_attempt(exam, student)
    question = questions['single']
    option_ids = sorted(question.options.values_list('id', flat=True))

    response = admin_client.patch(f'/api/questions/{question.id}/', {'options': [
        {'text': 'Four', 'is_correct': True},
        {'text': 'Five', 'is_correct': False},
    ]}, format='json')

    assert response.status_code == 400
    assert 'options' in response.data
    assert sorted(question.options.values_list('id', flat=True)) == option_ids


def test_exam_with_attempts_cannot_be_deleted(admin_client, exam, student):
    start_attempt(exam, student)

    assert admin_client.delete(f'/api/exams/{exam.id}/').status_code == 400


def test_supervisor_sees_only_assigned_exams(supervisor_client, supervisor, exam):
    assert supervisor_client.get('/api/exams/').data['count'] == 0
    exam.supervisors.create(supervisor=supervisor)
    assert supervisor_client.get('/api/exams/').data['count'] == 1
    assert supervisor_client.post(f'/api/exams/{exam.id}/archive/').status_code == 403


# --- Eligibility ---

def test_eligibility_checks_schedule_and_attempts(exam, student):
    assert check_eligibility(exam, student)['eligible'] is True

    exam.start_datetime = timezone.now() + timedelta(hours=1)
    exam.save()
    assert check_eligibility(exam, student)['reason'] == "Exam has not started yet."

    exam.start_datetime = None
    exam.blocked_ips = ['10.0.0.5']
    exam.save()
    assert check_eligibility(exam, student, '10.0.0.5')['eligible'] is False
    assert check_eligibility(exam, student, '10.0.0.6')['eligible'] is True


def test_private_exam_needs_matching_rule_and_exempt_wins(exam, student, other_student):
    exam.is_public = False
    exam.save()
    assert is_user_allowed(exam, student) is False

    school_class = SchoolClass.objects.create(name='JSS1 A', code='JSS1A')
    student.school_class = school_class
    student.save()
    ExamEligibility.objects.create(exam=exam, eligibility_type='class', school_class=school_class)
    assert is_user_allowed(exam, student) is True
    assert is_user_allowed(exam, other_student) is False

    ExamEligibility.objects.create(exam=exam, eligibility_type='specific_users', user=student, is_exempt=True)
    assert is_user_allowed(exam, student) is False
