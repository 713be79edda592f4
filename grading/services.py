# grading/services.py
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from assessments import scoring
from assessments.models import ExamAnswer, ExamAttempt, ExamResult
from assessments.results import recompute_ranks
from exams.models import ExamQuestion, ExamSupervisor

from .models import AnswerGrade

logger = logging.getLogger(__name__)


def assigned_to(queryset, user):
    """Narrow `queryset` to exams a non-admin grader supervises."""
    if user is None or user.is_admin:
        return queryset
    exams = ExamSupervisor.objects.filter(supervisor=user).values('exam_id')
    return queryset.filter(attempt__exam_id__in=exams)


def can_grade(user, exam_id):
    return user.is_admin or ExamSupervisor.objects.filter(exam_id=exam_id, supervisor=user).exists()


def pending_answers(exam_id=None, user=None):
    queryset = (
        ExamAnswer.objects.filter(
            grading_status=ExamAnswer.GradingStatus.PENDING,
            attempt__status__in=ExamAttempt.FINISHED_STATUSES,
        )
        .select_related('attempt', 'attempt__user', 'attempt__exam', 'question')
        .order_by('attempt__submitted_at', 'id')
    )
    if exam_id:
        queryset = queryset.filter(attempt__exam_id=exam_id)
    return assigned_to(queryset, user)


def max_marks_for(answer):
    link = ExamQuestion.objects.filter(exam_id=answer.attempt.exam_id, question_id=answer.question_id).first()
    return link.effective_marks if link else answer.question.marks


def _validate_criteria(rubric, criteria_scores):
    if not criteria_scores:
        return {}
    if rubric is None:
        raise ValidationError({"criteria_scores": "Criteria scores need a rubric."})
    criteria = {str(c.id): c for c in rubric.criteria.all()}
    cleaned = {}
    for key, points in criteria_scores.items():
        criterion = criteria.get(str(key))
        if criterion is None:
            raise ValidationError({"criteria_scores": f"Criterion {key} is not part of rubric '{rubric.name}'."})
        points = Decimal(str(points))
        if points < 0 or points > criterion.max_points:
            raise ValidationError(
                {"criteria_scores": f"Points for '{criterion.name}' must be between 0 and {criterion.max_points}."})
        cleaned[str(key)] = str(points)
    return cleaned


def grade_answer(answer, grader, marks, feedback='', rubric=None, criteria_scores=None, status=AnswerGrade.Status.FINAL):
    """
    Store a manual grade. Final grades close the answer and refresh the
    attempt's result; drafts are only saved.
    """
    if not can_grade(grader, answer.attempt.exam_id):
        raise PermissionDenied("You are not assigned to this exam.")
    if not answer.attempt.is_finished:
        raise ValidationError({"error": "Only answers of finished attempts can be graded."})
    maximum = max_marks_for(answer)
    marks = Decimal(str(marks))
    if marks < 0 or marks > maximum:
        raise ValidationError({"marks": f"Marks must be between 0 and {maximum}."})
    criteria = _validate_criteria(rubric, criteria_scores)

    with transaction.atomic():
        grade, _ = AnswerGrade.objects.update_or_create(
            answer=answer,
            defaults={
                'rubric': rubric,
                'grader': grader,
                'marks': marks,
                'feedback': feedback or '',
                'criteria_scores': criteria,
                'status': status,
            },
        )
        if status == AnswerGrade.Status.FINAL:
            answer.marks_obtained = marks
            answer.is_correct = marks >= maximum if maximum else None
            answer.grading_status = ExamAnswer.GradingStatus.MANUALLY_GRADED
            answer.graded_by = grader
            answer.graded_at = timezone.now()
            answer.feedback = feedback or ''
            answer.save()
            result = scoring.compute_result(answer.attempt)
            if result.is_published:
                recompute_ranks(answer.attempt.exam)

    logger.info("Answer %s graded %s/%s by %s (%s)", answer.id, marks, maximum, grader.email, status)
    return grade


def bulk_grade(answer_ids, grader, marks, feedback=''):
    """Apply the same final grade to many answers. Failures are reported, not raised."""
    graded, failed = [], []
    answers = ExamAnswer.objects.filter(id__in=answer_ids).select_related('attempt', 'question')
    found = {a.id: a for a in answers}
    for answer_id in answer_ids:
        answer = found.get(answer_id)
        if answer is None:
            failed.append({'answer_id': answer_id, 'error': 'Answer not found'})
            continue
        try:
            grade_answer(answer, grader, marks, feedback)
        except (ValidationError, PermissionDenied) as e:
            logger.warning("Bulk grading failed for answer %s: %s", answer_id, e.detail)
            failed.append({'answer_id': answer_id, 'error': e.detail})
            continue
        graded.append(answer_id)
    return {'graded': graded, 'failed': failed, 'graded_count': len(graded), 'failed_count': len(failed)}


def grading_statistics(exam_id=None, user=None):
    answers = assigned_to(ExamAnswer.objects.filter(attempt__status__in=ExamAttempt.FINISHED_STATUSES), user)
    results = assigned_to(ExamResult.objects.all(), user)
    if exam_id:
        answers = answers.filter(attempt__exam_id=exam_id)
        results = results.filter(attempt__exam_id=exam_id)
    return {
        'pending': answers.filter(grading_status=ExamAnswer.GradingStatus.PENDING).count(),
        'manually_graded': answers.filter(grading_status=ExamAnswer.GradingStatus.MANUALLY_GRADED).count(),
        'auto_graded': answers.filter(grading_status=ExamAnswer.GradingStatus.AUTO_GRADED).count(),
        'draft_grades': AnswerGrade.objects.filter(answer__in=answers, status=AnswerGrade.Status.DRAFT).count(),
        'results_pending': results.filter(pass_status=ExamResult.PassStatus.PENDING).count(),
        'results_published': results.filter(is_published=True).count(),
        'results_unpublished': results.filter(is_published=False).exclude(
            pass_status=ExamResult.PassStatus.PENDING).count(),
    }
