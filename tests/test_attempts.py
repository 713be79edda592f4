from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.utils import timezone

from assessments.models import ExamAnswer, ExamAttempt, ExamResult, ExamSubmission
from assessments.scoring import letter_grade
from assessments.services import expire_overdue_attempts, save_answer, start_attempt, submit_attempt
from exams.models import Exam

from .conftest import attach

pytestmark = pytest.mark.django_db


def option_id(question, key):
    return question.options.get(key=key).id


def start(client, exam, **data):
    return client.post(f'/api/student/exams/{exam.id}/start/', data, format='json')


def answer(client, attempt_id, question_id, **data):
    data['question_id'] = question_id
    return client.post(f'/api/student/attempts/{attempt_id}/answer/', data, format='json')


def test_letter_grades():
    assert letter_grade(Decimal('95')) == 'A+'
    assert letter_grade(Decimal('80')) == 'A'
    assert letter_grade(Decimal('43.75')) == 'D'
    assert letter_grade(Decimal('39.99')) == 'F'


def test_available_exams_lists_active_public_exams(student_client, exam, admin_user):
    Exam.objects.create(code='EX-2026-099', title='Hidden draft', created_by=admin_user)

    response = student_client.get('/api/student/exams/')

    assert response.status_code == 200
    assert [e['id'] for e in response.data] == [exam.id]
    assert response.data[0]['eligibility']['eligible'] is True


def test_staff_cannot_take_exams(admin_client, exam):
    assert start(admin_client, exam).status_code == 403


def test_start_returns_session_without_answer_key(student_client, exam):
    response = start(student_client, exam)

    assert response.status_code == 201
    assert response.data['resumed'] is False
    assert response.data['attempt']['attempt_code'].startswith('EXM-')
    assert len(response.data['questions']) == 4
    for question in response.data['questions']:
        for option in question['options']:
            assert set(option) == {'id', 'key', 'text'}
    assert 0 < response.data['remaining_seconds'] <= 30 * 60


def test_starting_again_resumes_active_attempt(student_client, exam, student):
    first = start(student_client, exam)
    second = start(student_client, exam)

    assert second.status_code == 200
    assert second.data['resumed'] is True
    assert second.data['attempt']['id'] == first.data['attempt']['id']
    assert ExamAttempt.objects.filter(exam=exam, user=student).count() == 1


def test_second_active_attempt_is_rejected_by_the_database(exam, student):
    attempt, _ = start_attempt(exam, student)
    attempt.pk = None
    attempt.attempt_code = 'EXM-20260101-ABCDEF'

    with pytest.raises(IntegrityError), transaction.atomic():
        attempt.save()


def test_access_code_is_enforced(student_client, exam):
    exam.access_code = 'OPEN-SESAME'
    exam.save()

    assert start(student_client, exam).status_code == 403
    assert start(student_client, exam, access_code='OPEN-SESAME').status_code == 201


def test_randomized_options_keep_the_same_set(exam, student, questions):
    exam.randomize_questions = True
    exam.randomize_options = True
    exam.save()

    attempt, _ = start_attempt(exam, student)

    assert sorted(attempt.question_order) == sorted(q.id for q in questions.values())
    single = questions['single']
    assert sorted(attempt.option_order[str(single.id)]) == sorted(single.options.values_list('id', flat=True))


def test_save_answer_tracks_progress_and_changes(student_client, exam, questions):
    attempt_id = start(student_client, exam).data['attempt']['id']
    single = questions['single']

    response = answer(student_client, attempt_id, single.id, selected_options=[option_id(single, 'A')])
    assert response.status_code == 200
    assert response.data['questions_answered'] == 1

    answer(student_client, attempt_id, single.id, selected_options=[option_id(single, 'B')],
           is_marked_for_review=True)
    saved = ExamAnswer.objects.get(attempt_id=attempt_id, question=single)
    assert saved.selected_options == [option_id(single, 'B')]
    assert saved.change_count == 1
    assert saved.is_marked_for_review is True


def test_single_choice_rejects_two_options(student_client, exam, questions):
    attempt_id = start(student_client, exam).data['attempt']['id']
    single = questions['single']

    response = answer(student_client, attempt_id, single.id,
                      selected_options=[option_id(single, 'A'), option_id(single, 'B')])

    assert response.status_code == 400


def test_submit_scores_objective_answers(student_client, exam, questions):
    attempt_id = start(student_client, exam).data['attempt']['id']
    answer(student_client, attempt_id, questions['single'].id, selected_options=[option_id(questions['single'], 'B')])
    answer(student_client, attempt_id, questions['multiple'].id,
           selected_options=[option_id(questions['multiple'], 'A')])
    answer(student_client, attempt_id, questions['numeric'].id, numeric_answer='3.141')

    response = student_client.post(f'/api/student/attempts/{attempt_id}/submit/')

    assert response.status_code == 200
    assert response.data['status'] == 'submitted'
    assert response.data['submission']['submission_type'] == 'manual'
    assert len(response.data['submission']['submission_hash']) == 64

    result = ExamResult.objects.get(attempt_id=attempt_id)
    # 2 + 2 correct, 0.5 deducted for the partial multiple choice, short answer left blank
    assert result.marks_obtained == Decimal('3.50')
    assert result.negative_marks_deducted == Decimal('0.50')
    assert result.percentage == Decimal('43.75')
    assert (result.correct_answers, result.incorrect_answers, result.unanswered) == (2, 1, 1)
    assert result.grade == 'D'
    assert result.pass_status == ExamResult.PassStatus.FAIL
    assert result.is_published is True
    assert response.data['result']['marks_obtained'] == '3.50'

    assert student_client.post(f'/api/student/attempts/{attempt_id}/submit/').status_code == 400


def test_total_never_drops_below_zero(student_client, exam, questions):
    attempt_id = start(student_client, exam).data['attempt']['id']
    answer(student_client, attempt_id, questions['single'].id, selected_options=[option_id(questions['single'], 'A')])
    answer(student_client, attempt_id, questions['numeric'].id, numeric_answer='2.5')
    answer(student_client, attempt_id, questions['short'].id, text_answer='london')

    student_client.post(f'/api/student/attempts/{attempt_id}/submit/')

    result = ExamResult.objects.get(attempt_id=attempt_id)
    assert result.marks_obtained == Decimal('0')
    assert result.negative_marks_deducted == Decimal('1.50')
    assert result.grade == 'F'


def test_short_answer_ignores_case_unless_case_sensitive(student_client, exam, questions):
    attempt_id = start(student_client, exam).data['attempt']['id']
    answer(student_client, attempt_id, questions['short'].id, text_answer='  paris ')
    student_client.post(f'/api/student/attempts/{attempt_id}/submit/')

    graded = ExamAnswer.objects.get(attempt_id=attempt_id, question=questions['short'])
    assert graded.is_correct is True
    assert graded.marks_obtained == Decimal('2')


def test_essay_keeps_result_pending(student_client, exam, essay_question):
    attach(exam, essay_question)
    exam.exam_questions.filter(question=essay_question).update(order=5)
    attempt_id = start(student_client, exam).data['attempt']['id']
    answer(student_client, attempt_id, essay_question.id, text_answer='Zero is the additive identity.')

    student_client.post(f'/api/student/attempts/{attempt_id}/submit/')

    result = ExamResult.objects.get(attempt_id=attempt_id)
    assert result.pass_status == ExamResult.PassStatus.PENDING
    assert result.pending_manual == 1
    assert result.grade == ''
    graded = ExamAnswer.objects.get(attempt_id=attempt_id, question=essay_question)
    assert graded.grading_status == ExamAnswer.GradingStatus.PENDING


def test_pass_percentage_fallback_when_no_pass_marks(student, exam, questions):
    exam.pass_marks = 0
    exam.save()
    attempt, _ = start_attempt(exam, student)
    save_answer(attempt, questions['single'].id, {'selected_options': [option_id(questions['single'], 'B')]})
    save_answer(attempt, questions['numeric'].id, {'numeric_answer': '3.14'})

    submit_attempt(attempt)

    # 4 of 8 marks is exactly the default 50%
    assert ExamResult.objects.get(attempt=attempt).pass_status == ExamResult.PassStatus.PASS


def test_max_attempts_blocks_new_attempts(student_client, exam):
    for _ in range(2):
        attempt_id = start(student_client, exam).data['attempt']['id']
        student_client.post(f'/api/student/attempts/{attempt_id}/submit/')

    response = start(student_client, exam)

    assert response.status_code == 403
    assert 'Maximum attempts' in str(response.data['detail'])


def test_pause_and_resume(student_client, exam, questions):
    attempt_id = start(student_client, exam).data['attempt']['id']

    response = student_client.post(f'/api/student/attempts/{attempt_id}/pause/')
    assert response.data['status'] == 'paused'
    assert answer(student_client, attempt_id, questions['numeric'].id, numeric_answer='3').status_code == 400

    response = student_client.post(f'/api/student/attempts/{attempt_id}/resume/')
    assert response.status_code == 200
    assert response.data['attempt']['status'] == 'in_progress'


def test_pause_not_allowed_without_resume(student_client, exam):
    exam.allow_resume = False
    exam.save()
    attempt_id = start(student_client, exam).data['attempt']['id']

    assert student_client.post(f'/api/student/attempts/{attempt_id}/pause/').status_code == 400


def test_update_progress(student_client, exam):
    attempt_id = start(student_client, exam).data['attempt']['id']

    response = student_client.post(f'/api/student/attempts/{attempt_id}/progress/',
                                   {'current_question_index': 2}, format='json')
    assert response.data['current_question_index'] == 2

    response = student_client.post(f'/api/student/attempts/{attempt_id}/progress/',
                                   {'current_question_index': 9}, format='json')
    assert response.status_code == 400


def test_overdue_attempt_is_auto_submitted_on_save(student_client, exam, questions):
    attempt_id = start(student_client, exam).data['attempt']['id']
    ExamAttempt.objects.filter(id=attempt_id).update(expires_at=timezone.now() - timedelta(minutes=5))

    response = answer(student_client, attempt_id, questions['numeric'].id, numeric_answer='3.14')

    assert response.status_code == 400
    attempt = ExamAttempt.objects.get(id=attempt_id)
    assert attempt.status == ExamAttempt.Status.AUTO_SUBMITTED
    assert attempt.submission.submission_type == ExamSubmission.Type.AUTO
    assert ExamResult.objects.filter(attempt=attempt).exists()


def test_save_inside_grace_window_is_accepted(student_client, exam, questions, settings):
    settings.CBT_SUBMIT_GRACE_SECONDS = 60
    attempt_id = start(student_client, exam).data['attempt']['id']
    ExamAttempt.objects.filter(id=attempt_id).update(expires_at=timezone.now() - timedelta(seconds=10))

    response = answer(student_client, attempt_id, questions['numeric'].id, numeric_answer='3.14')

    assert response.status_code == 200
    assert ExamAttempt.objects.get(id=attempt_id).status == ExamAttempt.Status.IN_PROGRESS


def test_result_counts_the_attempts_own_questions(exam, student, essay_question):
    attempt, _ = start_attempt(exam, student)
    attach(exam, essay_question)

    submit_attempt(attempt)

    assert exam.total_questions == 5
    assert ExamResult.objects.get(attempt=attempt).total_questions == 4


def test_paused_overdue_attempt_expires(exam, student):
    attempt, _ = start_attempt(exam, student)
    ExamAttempt.objects.filter(id=attempt.id).update(
        status=ExamAttempt.Status.PAUSED, expires_at=timezone.now() - timedelta(minutes=5))

    assert expire_overdue_attempts() == 1
    attempt.refresh_from_db()
    assert attempt.status == ExamAttempt.Status.EXPIRED


def test_expire_attempts_command(exam, student, capsys):
    attempt, _ = start_attempt(exam, student)
    ExamAttempt.objects.filter(id=attempt.id).update(expires_at=timezone.now() - timedelta(minutes=5))

    call_command('expire_attempts')

    assert 'Finalized 1 overdue attempt(s)' in capsys.readouterr().out
    attempt.refresh_from_db()
    assert attempt.status == ExamAttempt.Status.AUTO_SUBMITTED


def test_other_students_attempts_are_hidden(student_client, exam, other_student):
    attempt, _ = start_attempt(exam, other_student)

    assert student_client.get(f'/api/student/attempts/{attempt.id}/').status_code == 404
    assert student_client.get('/api/student/attempts/').data['count'] == 0
