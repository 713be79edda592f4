# assessments/services.py
"""
The exam attempt lifecycle.

    not_started -> in_progress <-> paused
    in_progress -> submitted | auto_submitted | terminated
    paused      -> submitted | expired | terminated

Every finished attempt gets exactly one ExamSubmission and one ExamResult.
"""
import hashlib
import json
import logging
import random
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from django.utils.crypto import get_random_string
from rest_framework.exceptions import PermissionDenied, ValidationError

from exams.models import Exam, ExamQuestion, Question
from exams.services import check_eligibility

from . import scoring
from .models import ExamAnswer, ExamAttempt, ExamSubmission
from .results import publish_results

logger = logging.getLogger(__name__)

HEX = '0123456789ABCDEF'


class AttemptClosed(ValidationError):
    """Raised after an overdue attempt has been finalized on access."""
    default_detail = "Time is up. The attempt has been submitted automatically."


def generate_attempt_code():
    prefix = f"EXM-{timezone.now():%Y%m%d}-"
    code = prefix + get_random_string(6, HEX)
    while ExamAttempt.objects.filter(attempt_code=code).exists():
        code = prefix + get_random_string(6, HEX)
    return code


def submission_hash(attempt):
    payload = json.dumps({
        'attempt_id': attempt.id,
        'user_id': attempt.user_id,
        'exam_id': attempt.exam_id,
        'submitted_at': attempt.submitted_at.isoformat(),
    }, sort_keys=True)
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


def _lock(attempt):
    return ExamAttempt.objects.select_for_update().select_related('exam', 'user').get(pk=attempt.pk)


# --- Start / resume ---

def start_attempt(exam, user, access_code='', ip_address=None, user_agent=''):
    """
    Start a new attempt, or resume the active one. Returns (attempt, resumed).
    """
    # Anything left over from an earlier sitting is closed out first
    for stale in ExamAttempt.objects.filter(exam=exam, user=user, status__in=ExamAttempt.ACTIVE_STATUSES):
        finalize_if_overdue(stale)

    with transaction.atomic():
        # Serializes concurrent starts by the same student
        get_user_model().objects.select_for_update().filter(pk=user.pk).first()
        active = (
            ExamAttempt.objects.select_for_update()
            .filter(exam=exam, user=user, status__in=ExamAttempt.ACTIVE_STATUSES)
            .first()
        )
        if active is not None:
            if active.status == ExamAttempt.Status.PAUSED:
                _resume(active)
            active.last_activity_at = timezone.now()
            active.save(update_fields=['last_activity_at', 'updated_at'])
            logger.info("Attempt %s resumed by %s", active.attempt_code, user.email)
            return active, True

        report = check_eligibility(exam, user, ip_address)
        if not report['eligible']:
            raise PermissionDenied(report['reason'])
        if exam.access_code and access_code != exam.access_code:
            raise PermissionDenied("Invalid access code.")

        links = list(exam.exam_questions.select_related('question').prefetch_related('question__options'))
        if not links:
            raise ValidationError({"error": "This exam has no questions."})

        question_ids = [link.question_id for link in links]
        if exam.randomize_questions:
            random.shuffle(question_ids)
        option_order = {}
        for link in links:
            option_ids = [o.id for o in link.question.options.all()]
            if exam.randomize_options and link.question.question_type != Question.QuestionType.TRUE_FALSE:
                random.shuffle(option_ids)
            option_order[str(link.question_id)] = option_ids

        now = timezone.now()
        expires_at = now + timedelta(minutes=exam.duration_minutes)
        if exam.end_datetime and exam.end_datetime < expires_at:
            expires_at = exam.end_datetime

        attempt = ExamAttempt.objects.create(
            user=user,
            exam=exam,
            attempt_code=generate_attempt_code(),
            attempt_number=ExamAttempt.objects.filter(exam=exam, user=user).count() + 1,
            status=ExamAttempt.Status.IN_PROGRESS,
            started_at=now,
            expires_at=expires_at,
            last_activity_at=now,
            question_order=question_ids,
            option_order=option_order,
            ip_address=ip_address,
            user_agent=user_agent or '',
            resume_token=get_random_string(32),
        )
        ExamAnswer.objects.bulk_create([ExamAnswer(attempt=attempt, question_id=qid) for qid in question_ids])

        if exam.enable_tab_switch_detection or exam.enable_screen_monitoring:
            from proctoring.services import open_session
            open_session(attempt)

    logger.info("Attempt %s started by %s on exam %s", attempt.attempt_code, user.email, exam.code)
    return attempt, False


def pause_attempt(attempt):
    if attempt.status != ExamAttempt.Status.IN_PROGRESS:
        raise ValidationError({"error": "Only attempts in progress can be paused."})
    if not attempt.exam.allow_resume:
        raise ValidationError({"error": "This exam cannot be paused."})
    finalize_if_overdue(attempt, raise_closed=True)
    attempt.status = ExamAttempt.Status.PAUSED
    attempt.paused_at = timezone.now()
    attempt.save(update_fields=['status', 'paused_at', 'updated_at'])
    logger.info("Attempt %s paused", attempt.attempt_code)
    return attempt


def resume_attempt(attempt):
    if attempt.status != ExamAttempt.Status.PAUSED:
        raise ValidationError({"error": "Only paused attempts can be resumed."})
    finalize_if_overdue(attempt, raise_closed=True)
    _resume(attempt)
    return attempt


def _resume(attempt):
    if not attempt.exam.allow_resume:
        raise ValidationError({"error": "This exam does not allow resuming."})
    attempt.status = ExamAttempt.Status.IN_PROGRESS
    attempt.paused_at = None
    attempt.resume_token = get_random_string(32)
    attempt.last_activity_at = timezone.now()
    attempt.save(update_fields=['status', 'paused_at', 'resume_token', 'last_activity_at', 'updated_at'])


# --- Answers and progress ---

def _answer_values(question, data):
    """Validate the submitted answer payload for `question`; returns changed fields."""
    values = {}
    if 'selected_options' in data:
        selected = [int(i) for i in (data.get('selected_options') or [])]
        valid = set(question.options.values_list('id', flat=True))
        if any(i not in valid for i in selected):
            raise ValidationError({"selected_options": "Unknown option for this question."})
        if question.question_type != Question.QuestionType.MULTIPLE_CHOICE and len(selected) > 1:
            raise ValidationError({"selected_options": "Only one option can be selected."})
        values['selected_options'] = sorted(set(selected))
    if 'text_answer' in data:
        values['text_answer'] = data.get('text_answer') or ''
    if 'numeric_answer' in data:
        raw = data.get('numeric_answer')
        if raw in (None, ''):
            values['numeric_answer'] = None
        else:
            try:
                values['numeric_answer'] = Decimal(str(raw))
            except InvalidOperation:
                raise ValidationError({"numeric_answer": "A number is required."})
    return values


def _has_response(question, answer):
    if question.is_choice:
        return bool(answer.selected_options)
    if question.question_type == Question.QuestionType.NUMERIC:
        return answer.numeric_answer is not None
    return bool((answer.text_answer or '').strip())


def save_answer(attempt, question_id, data):
    finalize_if_overdue(attempt, raise_closed=True)
    if attempt.status != ExamAttempt.Status.IN_PROGRESS:
        raise ValidationError({"error": "Answers can only be saved while the attempt is in progress."})
    if question_id not in attempt.question_order:
        raise ValidationError({"question_id": "Question is not part of this attempt."})

    question = Question.objects.prefetch_related('options').get(pk=question_id)
    values = _answer_values(question, data)
    now = timezone.now()

    with transaction.atomic():
        answer, _ = ExamAnswer.objects.select_for_update().get_or_create(attempt=attempt, question=question)
        changed = any(getattr(answer, field) != value for field, value in values.items())
        for field, value in values.items():
            setattr(answer, field, value)
        if changed and answer.is_answered:
            answer.change_count += 1
        answer.is_answered = _has_response(question, answer)
        if answer.is_answered and answer.first_answered_at is None:
            answer.first_answered_at = now
        if changed:
            answer.last_answered_at = now
        if 'is_marked_for_review' in data:
            answer.is_marked_for_review = bool(data['is_marked_for_review'])
        if data.get('time_spent_seconds'):
            answer.time_spent_seconds += int(data['time_spent_seconds'])
        answer.save()

        _refresh_progress(attempt, now)
    return answer


def _refresh_progress(attempt, now=None):
    answers = attempt.answers.all()
    attempt.questions_answered = answers.filter(is_answered=True).count()
    attempt.questions_marked_for_review = answers.filter(is_marked_for_review=True).count()
    attempt.last_activity_at = now or timezone.now()
    attempt.save(update_fields=['questions_answered', 'questions_marked_for_review', 'last_activity_at', 'updated_at'])


def update_progress(attempt, current_question_index=None, time_spent_seconds=None):
    finalize_if_overdue(attempt, raise_closed=True)
    if not attempt.is_active:
        raise ValidationError({"error": "Attempt is not active."})
    fields = ['last_activity_at', 'updated_at']
    if current_question_index is not None:
        if not 0 <= current_question_index < max(len(attempt.question_order), 1):
            raise ValidationError({"current_question_index": "Out of range."})
        attempt.current_question_index = current_question_index
        fields.append('current_question_index')
    if time_spent_seconds is not None:
        attempt.time_spent_seconds = time_spent_seconds
        fields.append('time_spent_seconds')
    attempt.last_activity_at = timezone.now()
    attempt.save(update_fields=fields)
    return attempt


# --- Finalization ---

def submit_attempt(attempt, ip_address=None):
    with transaction.atomic():
        attempt = _lock(attempt)
        if not attempt.is_active:
            raise ValidationError({"error": "Exam already submitted"})
        if attempt.is_overdue():
            return _finalize_overdue(attempt)
        return _finalize(attempt, ExamAttempt.Status.SUBMITTED, ExamSubmission.Type.MANUAL, ip_address=ip_address)


def terminate_attempt(attempt, by, reason):
    with transaction.atomic():
        attempt = _lock(attempt)
        if not attempt.is_active:
            raise ValidationError({"error": "Only active attempts can be terminated."})
        now = timezone.now()
        attempt.termination_reason = reason
        attempt.terminated_by = by
        attempt.terminated_at = now
        attempt = _finalize(
            attempt, ExamAttempt.Status.TERMINATED, ExamSubmission.Type.FORCED,
            remarks=f"Attempt terminated by supervisor: {reason}",
        )
    logger.warning("Attempt %s terminated by %s: %s", attempt.attempt_code, by.email, reason)
    return attempt


def finalize_if_overdue(attempt, raise_closed=False):
    """
    Finalize `attempt` if it is active and past expires_at + grace.
    Returns True when the attempt was finalized by this call.
    """
    if not attempt.is_active or not attempt.is_overdue():
        return False
    with transaction.atomic():
        locked = _lock(attempt)
        if not locked.is_active:
            finalized = False
        else:
            _finalize_overdue(locked)
            finalized = True
    attempt.refresh_from_db()
    if raise_closed:
        raise AttemptClosed()
    return finalized


def _finalize_overdue(attempt):
    status = (ExamAttempt.Status.EXPIRED if attempt.status == ExamAttempt.Status.PAUSED
              else ExamAttempt.Status.AUTO_SUBMITTED)
    return _finalize(attempt, status, ExamSubmission.Type.AUTO)


def _finalize(attempt, status, submission_type, ip_address=None, remarks=None):
    """Close the attempt, grade it and snapshot the submission. Caller holds the row lock."""
    exam = attempt.exam
    now = timezone.now()
    end = min(now, attempt.expires_at) if attempt.expires_at else now

    attempt.status = status
    attempt.submitted_at = now
    if attempt.started_at:
        attempt.time_spent_seconds = max(0, int((end - attempt.started_at).total_seconds()))
    attempt.save()

    links = {
        link.question_id: link
        for link in ExamQuestion.objects.filter(exam=exam, question_id__in=attempt.question_order)
        .select_related('question').prefetch_related('question__options')
    }
    answers = {a.question_id: a for a in attempt.answers.all()}
    for question_id in attempt.question_order:
        link = links.get(question_id)
        if link is None:
            continue
        answer = answers.get(question_id) or ExamAnswer(attempt=attempt, question_id=question_id)
        scoring.auto_grade(answer, link, exam)
        answer.save()

    answered = attempt.answers.filter(is_answered=True).count()
    total = len(attempt.question_order)
    marked = attempt.answers.filter(is_marked_for_review=True).count()
    ExamSubmission.objects.create(
        attempt=attempt,
        submission_type=submission_type,
        submitted_at=now,
        total_questions=total,
        answered_questions=answered,
        unanswered_questions=total - answered,
        marked_for_review=marked,
        time_taken_seconds=attempt.time_spent_seconds,
        ip_address=ip_address or attempt.ip_address,
        submission_hash=submission_hash(attempt),
    )
    attempt.questions_answered = answered
    attempt.questions_marked_for_review = marked
    attempt.save(update_fields=['questions_answered', 'questions_marked_for_review'])

    scoring.compute_result(attempt, remarks=remarks)
    if exam.result_display == Exam.ResultDisplay.IMMEDIATE:
        publish_results(exam, attempt_ids=[attempt.id])

    from proctoring.services import close_session
    close_session(attempt)

    logger.info("Attempt %s finalized as %s (%s submission)", attempt.attempt_code, status, submission_type)
    return attempt


def expire_overdue_attempts():
    """Finalize every active attempt past its deadline. Returns the number finalized."""
    grace = timedelta(seconds=settings.CBT_SUBMIT_GRACE_SECONDS)
    cutoff = timezone.now() - grace
    overdue = ExamAttempt.objects.filter(status__in=ExamAttempt.ACTIVE_STATUSES, expires_at__lt=cutoff)
    finalized = 0
    for attempt in overdue:
        if finalize_if_overdue(attempt):
            finalized += 1
    return finalized
