from decimal import Decimal

import pytest

from assessments.models import ExamAnswer, ExamResult
from assessments.services import save_answer, start_attempt, submit_attempt
from grading.models import AnswerGrade, GradingRubric

from .conftest import attach

pytestmark = pytest.mark.django_db


@pytest.fixture
def essay_answer(exam, student, essay_question):
    attach(exam, essay_question)
    attempt, _ = start_attempt(exam, student)
    save_answer(attempt, essay_question.id, {'text_answer': 'Zero is neither positive nor negative.'})
    submit_attempt(attempt)
    return ExamAnswer.objects.get(attempt=attempt, question=essay_question)


@pytest.fixture
def rubric(admin_client, subject):
    response = admin_client.post('/api/grading/rubrics/', {
        'name': 'Essay rubric', 'subject': subject.id, 'question_type': 'essay', 'max_score': '5',
        'criteria': [
            {'name': 'Accuracy', 'max_points': '3'},
            {'name': 'Clarity', 'max_points': '2'},
        ],
    }, format='json')
    assert response.status_code == 201
    return GradingRubric.objects.get(id=response.data['id'])


def test_rubric_criteria_cannot_exceed_max_score(admin_client):
    response = admin_client.post('/api/grading/rubrics/', {
        'name': 'Too generous', 'max_score': '2',
        'criteria': [{'name': 'Everything', 'max_points': '3'}],
    }, format='json')

    assert response.status_code == 400


def test_rubric_update_replaces_criteria(admin_client, rubric):
    response = admin_client.patch(f'/api/grading/rubrics/{rubric.id}/', {
        'criteria': [{'name': 'Overall', 'max_points': '5'}],
    }, format='json')

    assert response.status_code == 200
    assert [c.name for c in rubric.criteria.all()] == ['Overall']


def test_pending_queue_lists_essays(supervisor_client, supervisor, exam, essay_answer):
    exam.supervisors.create(supervisor=supervisor)
    response = supervisor_client.get('/api/grading/pending/')

    assert response.status_code == 200
    assert [a['id'] for a in response.data['results']] == [essay_answer.id]
    assert response.data['results'][0]['max_marks'] == Decimal('5.00')


def test_students_cannot_grade(student_client, essay_answer):
    assert student_client.get('/api/grading/pending/').status_code == 403


def test_marks_above_maximum_are_rejected(admin_client, essay_answer):
    response = admin_client.post(f'/api/grading/answers/{essay_answer.id}/', {'marks': '6'}, format='json')

    assert response.status_code == 400


def test_draft_grade_does_not_touch_result(admin_client, essay_answer):
    response = admin_client.post(f'/api/grading/answers/{essay_answer.id}/',
                                 {'marks': '4', 'status': 'draft'}, format='json')

    assert response.status_code == 200
    essay_answer.refresh_from_db()
    assert essay_answer.grading_status == ExamAnswer.GradingStatus.PENDING
    assert ExamResult.objects.get(attempt=essay_answer.attempt).pass_status == ExamResult.PassStatus.PENDING


def test_final_grade_with_rubric_recomputes_result(admin_client, essay_answer, rubric):
    accuracy, clarity = rubric.criteria.all()
    response = admin_client.post(f'/api/grading/answers/{essay_answer.id}/', {
        'marks': '4', 'feedback': 'Good', 'rubric': rubric.id,
        'criteria_scores': {str(accuracy.id): '3', str(clarity.id): '1'},
    }, format='json')

    assert response.status_code == 200
    essay_answer.refresh_from_db()
    assert essay_answer.grading_status == ExamAnswer.GradingStatus.MANUALLY_GRADED
    assert essay_answer.marks_obtained == Decimal('4')
    result = ExamResult.objects.get(attempt=essay_answer.attempt)
    assert result.pending_manual == 0
    assert result.pass_status != ExamResult.PassStatus.PENDING
    assert result.marks_obtained == Decimal('4')


def test_criteria_scores_are_bounded(admin_client, essay_answer, rubric):
    clarity = rubric.criteria.get(name='Clarity')
    response = admin_client.post(f'/api/grading/answers/{essay_answer.id}/', {
        'marks': '4', 'rubric': rubric.id, 'criteria_scores': {str(clarity.id): '2.5'},
    }, format='json')

    assert response.status_code == 400
    assert not AnswerGrade.objects.exists()


def test_bulk_grade_reports_failures(admin_client, essay_answer):
    response = admin_client.post('/api/grading/bulk/', {
        'answer_ids': [essay_answer.id, 999999], 'marks': '3',
    }, format='json')

    assert response.data['graded'] == [essay_answer.id]
    assert response.data['failed'][0]['answer_id'] == 999999


def test_publish_and_statistics(admin_client, essay_answer):
    admin_client.post(f'/api/grading/answers/{essay_answer.id}/', {'marks': '5'}, format='json')

    response = admin_client.post('/api/grading/publish/', {'attempt_ids': [essay_answer.attempt_id]}, format='json')
    assert response.status_code == 200

    stats = admin_client.get('/api/grading/statistics/').data
    assert stats['pending'] == 0
    assert stats['manually_graded'] == 1
    assert stats['results_published'] == 1


def test_unassigned_supervisor_cannot_grade_or_publish(supervisor_client, essay_answer):
    assert supervisor_client.get('/api/grading/pending/').data['count'] == 0
    assert supervisor_client.get(f'/api/grading/answers/{essay_answer.id}/').status_code == 403
    assert supervisor_client.post(f'/api/grading/answers/{essay_answer.id}/', {'marks': '4'},
                                  format='json').status_code == 403

    response = supervisor_client.post('/api/grading/bulk/', {'answer_ids': [essay_answer.id], 'marks': '4'},
                                      format='json')
    assert response.data['graded'] == []
    assert response.data['failed'][0]['answer_id'] == essay_answer.id

    response = supervisor_client.post('/api/grading/publish/', {'attempt_ids': [essay_answer.attempt_id]},
                                      format='json')
    assert response.status_code == 403
    assert supervisor_client.get('/api/grading/statistics/').data['pending'] == 0


def test_assigned_supervisor_grades_final(supervisor_client, supervisor, exam, essay_answer):
    exam.supervisors.create(supervisor=supervisor)

    response = supervisor_client.post(f'/api/grading/answers/{essay_answer.id}/', {'marks': '4'}, format='json')

    assert response.status_code == 200
    essay_answer.refresh_from_db()
    assert essay_answer.grading_status == ExamAnswer.GradingStatus.MANUALLY_GRADED
    assert essay_answer.graded_by == supervisor


def test_exam_filter_must_be_numeric(admin_client, essay_answer):
    assert admin_client.get('/api/grading/pending/', {'exam': 'abc'}).status_code == 400
    assert admin_client.get('/api/grading/statistics/', {'exam': 'abc'}).status_code == 400
