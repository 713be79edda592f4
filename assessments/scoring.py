# assessments/scoring.py
"""
Answer grading and result aggregation.

Objective questions are graded when the attempt is finalized. Essays and
short answers without a reference answer stay pending until a grader
marks them (see grading.services).
"""
import logging
from decimal import Decimal, InvalidOperation

from django.utils import timezone

from cores.models import PlatformSetting
from exams.models import Question

from .models import ExamAnswer, ExamResult

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')

GRADE_BOUNDARIES = [
    (Decimal('90'), 'A+'),
    (Decimal('80'), 'A'),
    (Decimal('70'), 'B+'),
    (Decimal('60'), 'B'),
    (Decimal('50'), 'C'),
    (Decimal('40'), 'D'),
]


def letter_grade(percentage):
    for boundary, letter in GRADE_BOUNDARIES:
        if percentage >= boundary:
            return letter
    return 'F'


def is_correct(question, answer):
    """True / False for objective questions, None when a human must decide."""
    qtype = question.question_type

    if question.is_choice:
        correct = {o.id for o in question.options.all() if o.is_correct}
        selected = {int(i) for i in answer.selected_options or []}
        return bool(selected) and selected == correct

    if qtype == Question.QuestionType.NUMERIC:
        if answer.numeric_answer is None or question.correct_answer_numeric is None:
            return False
        return abs(Decimal(answer.numeric_answer) - question.correct_answer_numeric) <= (question.tolerance or ZERO)

    if qtype == Question.QuestionType.SHORT_ANSWER and question.correct_answer_text.strip():
        given = (answer.text_answer or '').strip()
        expected = question.correct_answer_text.strip()
        if question.case_sensitive:
            return given == expected
        return given.casefold() == expected.casefold()

    return None


def auto_grade(answer, link, exam):
    """Grade one answer in place (not saved). `link` is the ExamQuestion."""
    question = link.question
    now = timezone.now()

    if not answer.is_answered:
        answer.marks_obtained = ZERO
        answer.is_correct = None
        answer.grading_status = ExamAnswer.GradingStatus.AUTO_GRADED
        answer.graded_at = now
        return answer

    if question.needs_manual_grading:
        answer.grading_status = ExamAnswer.GradingStatus.PENDING
        return answer

    try:
        correct = is_correct(question, answer)
    except (InvalidOperation, TypeError, ValueError):
        logger.warning("Could not grade answer %s for question %s", answer.pk, question.code)
        correct = False

    if correct:
        answer.marks_obtained = link.effective_marks
    elif exam.enable_negative_marking:
        answer.marks_obtained = -(link.effective_negative_marks or ZERO)
    else:
        answer.marks_obtained = ZERO
    answer.is_correct = correct
    answer.grading_status = ExamAnswer.GradingStatus.AUTO_GRADED
    answer.graded_at = now
    return answer


def compute_result(attempt, remarks=None):
    """
    Create or refresh the attempt's ExamResult from its graded answers.
    The total never drops below zero; the result stays pending while
    any answer awaits manual grading.
    """
    exam = attempt.exam
    answers = list(attempt.answers.all())

    earned = ZERO
    deducted = ZERO
    correct = incorrect = unanswered = marked = pending = 0
    for answer in answers:
        if answer.is_marked_for_review:
            marked += 1
        if answer.grading_status == ExamAnswer.GradingStatus.PENDING:
            pending += 1
            continue
        if not answer.is_answered:
            unanswered += 1
            continue
        marks = answer.marks_obtained or ZERO
        if marks < 0:
            deducted += -marks
        else:
            earned += marks
        if answer.is_correct:
            correct += 1
        elif answer.is_correct is False:
            incorrect += 1

    obtained = max(ZERO, earned - deducted)
    total_marks = exam.total_marks or ZERO
    percentage = (obtained / total_marks * HUNDRED).quantize(Decimal('0.01')) if total_marks > 0 else ZERO

    if pending:
        pass_status = ExamResult.PassStatus.PENDING
    elif exam.pass_marks and exam.pass_marks > 0:
        pass_status = ExamResult.PassStatus.PASS if obtained >= exam.pass_marks else ExamResult.PassStatus.FAIL
    else:
        threshold = Decimal(PlatformSetting.load().default_pass_percentage)
        pass_status = ExamResult.PassStatus.PASS if percentage >= threshold else ExamResult.PassStatus.FAIL

    result, _ = ExamResult.objects.get_or_create(attempt=attempt)
    result.total_marks = total_marks
    result.marks_obtained = obtained
    result.negative_marks_deducted = deducted
    result.percentage = min(percentage, HUNDRED)
    result.total_questions = len(attempt.question_order) or len(answers)
    result.correct_answers = correct
    result.incorrect_answers = incorrect
    result.unanswered = unanswered
    result.marked_for_review = marked
    result.pending_manual = pending
    result.grade = '' if pending else letter_grade(result.percentage)
    result.pass_status = pass_status
    if remarks is not None:
        result.remarks = remarks
    result.save()

    logger.debug("Result for %s: %s/%s (%s)", attempt.attempt_code, obtained, total_marks, pass_status)
    return result
