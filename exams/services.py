# exams/services.py
import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Avg, F, Max
from django.utils import timezone
from django.utils.crypto import get_random_string
from rest_framework.exceptions import ValidationError

from .models import Exam, ExamEligibility, ExamQuestion, ExamSection, ExamSupervisor, Question, QuestionOption

logger = logging.getLogger(__name__)

CODE_CHARS = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'


# --- Codes ---

def generate_exam_code():
    year = timezone.now().year
    prefix = f"EX-{year}-"
    number = Exam.objects.filter(code__startswith=prefix).count() + 1
    code = f"{prefix}{number:03d}"
    while Exam.objects.filter(code=code).exists():
        number += 1
        code = f"{prefix}{number:03d}"
    return code


def generate_question_code():
    code = f"Q-{get_random_string(8, CODE_CHARS)}"
    while Question.objects.filter(code=code).exists():
        code = f"Q-{get_random_string(8, CODE_CHARS)}"
    return code


# --- Totals ---

def recalculate_totals(exam):
    """Refresh total_questions / total_marks from the exam's question links."""
    links = exam.exam_questions.select_related('question')
    total = sum((link.effective_marks for link in links), Decimal('0'))
    exam.total_questions = links.count()
    exam.total_marks = total
    exam.save(update_fields=['total_questions', 'total_marks', 'updated_at'])
    return exam


# --- Question bank ---

def duplicate_question(question, user):
    with transaction.atomic():
        options = list(question.options.all())
        copy = Question.objects.get(pk=question.pk)
        copy.pk = None
        copy.code = generate_question_code()
        copy.text = f"{question.text} (Copy)"
        copy.times_used = 0
        copy.is_verified = False
        copy.verified_at = None
        copy.verified_by = None
        copy.created_by = user
        copy.updated_by = user
        copy.save()
        QuestionOption.objects.bulk_create([
            QuestionOption(question=copy, key=o.key, text=o.text, is_correct=o.is_correct, order=o.order)
            for o in options
        ])
    return copy


def update_tags(questions, tags, mode):
    """Apply `tags` to every question with mode add, remove or replace."""
    if mode not in ('add', 'remove', 'replace'):
        raise ValidationError({"mode": "Must be one of add, remove, replace."})
    updated = 0
    for question in questions:
        current = list(question.tags or [])
        if mode == 'add':
            new = current + [t for t in tags if t not in current]
        elif mode == 'remove':
            new = [t for t in current if t not in tags]
        else:
            new = list(dict.fromkeys(tags))
        if new != current:
            question.tags = new
            question.save(update_fields=['tags', 'updated_at'])
            updated += 1
    return updated


def validate_options(question_type, options):
    """Choice questions need options and the right number of correct ones."""
    if question_type not in Question.CHOICE_TYPES:
        return
    if len(options) < 2:
        raise ValidationError({"options": "Choice questions need at least two options."})
    correct = sum(1 for o in options if o.get('is_correct'))
    if correct == 0:
        raise ValidationError({"options": "At least one option must be marked correct."})
    if question_type != Question.QuestionType.MULTIPLE_CHOICE and correct > 1:
        raise ValidationError({"options": "Only one option can be correct for this question type."})


# --- Exam status transitions ---

def publish_exam(exam):
    if exam.status != Exam.Status.DRAFT:
        raise ValidationError({"error": "Only draft exams can be published."})
    if not exam.exam_questions.exists():
        raise ValidationError({"error": "Cannot publish an exam without questions."})
    return _set_status(exam, Exam.Status.PUBLISHED)


def activate_exam(exam):
    if exam.status != Exam.Status.PUBLISHED:
        raise ValidationError({"error": "Only published exams can be activated."})
    return _set_status(exam, Exam.Status.ACTIVE)


def complete_exam(exam):
    if exam.status not in (Exam.Status.PUBLISHED, Exam.Status.ACTIVE):
        raise ValidationError({"error": "Only published or active exams can be completed."})
    return _set_status(exam, Exam.Status.COMPLETED)


def archive_exam(exam):
    if exam.status == Exam.Status.ARCHIVED:
        raise ValidationError({"error": "Exam is already archived."})
    return _set_status(exam, Exam.Status.ARCHIVED)


def _set_status(exam, status):
    previous = exam.status
    exam.status = status
    exam.save(update_fields=['status', 'updated_at'])
    logger.info("Exam %s moved from %s to %s", exam.code, previous, status)
    return exam


# --- Exam questions ---

def add_questions(exam, question_ids, section=None, marks=None):
    """Attach questions to the exam, skipping ones already linked. Returns the number added."""
    existing = set(exam.exam_questions.values_list('question_id', flat=True))
    wanted = [qid for qid in dict.fromkeys(question_ids) if qid not in existing]
    questions = {q.id: q for q in Question.objects.filter(id__in=wanted)}
    missing = [qid for qid in wanted if qid not in questions]
    if missing:
        raise ValidationError({"question_ids": f"Unknown question ids: {missing}"})

    with transaction.atomic():
        next_order = (exam.exam_questions.aggregate(m=Max('order'))['m'] or 0) + 1
        links = []
        for qid in wanted:
            links.append(ExamQuestion(exam=exam, question=questions[qid], section=section,
                                      order=next_order, marks=marks))
            next_order += 1
        ExamQuestion.objects.bulk_create(links)
        Question.objects.filter(id__in=wanted).update(times_used=F('times_used') + 1)
        recalculate_totals(exam)
    return len(links)


def remove_question(exam, question_id):
    deleted, _ = ExamQuestion.objects.filter(exam=exam, question_id=question_id).delete()
    if not deleted:
        raise ValidationError({"error": "Question is not part of this exam."})
    recalculate_totals(exam)


def reorder_questions(exam, items):
    """`items` is a list of {"question_id", "order"} (optionally "section_id")."""
    links = {link.question_id: link for link in exam.exam_questions.all()}
    with transaction.atomic():
        for item in items:
            link = links.get(item.get('question_id'))
            if link is None:
                raise ValidationError({"error": f"Question {item.get('question_id')} is not part of this exam."})
            link.order = item.get('order', link.order)
            if 'section_id' in item:
                link.section_id = item['section_id']
            link.save(update_fields=['order', 'section'])


def duplicate_exam(exam, user):
    with transaction.atomic():
        sections = list(exam.sections.all())
        links = list(exam.exam_questions.all())
        rules = list(exam.eligibility_rules.all())

        copy = Exam.objects.get(pk=exam.pk)
        copy.pk = None
        copy.code = generate_exam_code()
        copy.title = f"{exam.title} (Copy)"
        copy.status = Exam.Status.DRAFT
        copy.created_by = user
        copy.save()

        section_map = {}
        for section in sections:
            section_map[section.id] = ExamSection.objects.create(
                exam=copy, title=section.title, description=section.description,
                instructions=section.instructions, order=section.order, duration_minutes=section.duration_minutes,
            )
        ExamQuestion.objects.bulk_create([
            ExamQuestion(exam=copy, question_id=link.question_id, section=section_map.get(link.section_id),
                         order=link.order, marks=link.marks, negative_marks=link.negative_marks,
                         is_mandatory=link.is_mandatory)
            for link in links
        ])
        ExamEligibility.objects.bulk_create([
            ExamEligibility(exam=copy, eligibility_type=r.eligibility_type, user_id=r.user_id,
                            school_class_id=r.school_class_id, grade_level_id=r.grade_level_id,
                            role=r.role, is_exempt=r.is_exempt)
            for r in rules
        ])
        recalculate_totals(copy)
    logger.info("Exam %s duplicated as %s", exam.code, copy.code)
    return copy


def exam_statistics(exam):
    from assessments.models import ExamAttempt, ExamResult

    attempts = ExamAttempt.objects.filter(exam=exam)
    results = ExamResult.objects.filter(attempt__exam=exam)
    by_type = {}
    for link in exam.exam_questions.select_related('question'):
        key = link.question.question_type
        by_type[key] = by_type.get(key, 0) + 1
    passed = results.filter(pass_status='pass').count()
    graded = results.exclude(pass_status='pending').count()
    return {
        'total_questions': exam.total_questions,
        'total_marks': exam.total_marks,
        'questions_by_type': by_type,
        'total_attempts': attempts.count(),
        'in_progress': attempts.filter(status__in=ExamAttempt.ACTIVE_STATUSES).count(),
        'completed': attempts.filter(status__in=ExamAttempt.FINISHED_STATUSES).count(),
        'average_percentage': round(results.exclude(pass_status='pending').aggregate(
            avg=Avg('percentage'))['avg'] or 0, 2),
        'pass_rate': round(passed * 100 / graded, 2) if graded else 0,
    }


# --- Eligibility ---

def check_eligibility(exam, user, ip_address=None):
    """
    Returns {"eligible": bool, "reason": str, "attempts_used": int,
    "attempts_remaining": int}. Active attempts do not block: they are resumed.
    """
    from assessments.models import ExamAttempt

    used = ExamAttempt.objects.filter(
        exam=exam, user=user, status__in=ExamAttempt.FINISHED_STATUSES
    ).count()
    report = {
        'eligible': False,
        'reason': '',
        'attempts_used': used,
        'attempts_remaining': max(exam.max_attempts - used, 0),
    }
    now = timezone.now()

    if exam.status != Exam.Status.ACTIVE:
        report['reason'] = "Exam is not active."
    elif exam.start_datetime and now < exam.start_datetime:
        report['reason'] = "Exam has not started yet."
    elif exam.end_datetime and now > exam.end_datetime:
        report['reason'] = "Exam has ended."
    elif not is_user_allowed(exam, user):
        report['reason'] = "You are not eligible for this exam."
    elif ip_address and ip_address in (exam.blocked_ips or []):
        report['reason'] = "Access from your network is blocked for this exam."
    elif used >= exam.max_attempts:
        report['reason'] = "Maximum attempts reached."
    else:
        report['eligible'] = True
    return report


def is_user_allowed(exam, user):
    rules = list(exam.eligibility_rules.all())
    if any(rule.is_exempt and rule.matches(user) for rule in rules):
        return False
    if exam.is_public:
        return True
    return any(not rule.is_exempt and rule.matches(user) for rule in rules)


def eligible_exams_for(user):
    """Active exams the user may see in the 'available' list."""
    exams = Exam.objects.filter(status=Exam.Status.ACTIVE).prefetch_related('eligibility_rules')
    now = timezone.now()
    return [
        exam for exam in exams
        if is_user_allowed(exam, user) and not (exam.end_datetime and exam.end_datetime < now)
    ]


def supervisor_assignment(exam, user):
    return ExamSupervisor.objects.filter(exam=exam, supervisor=user).first()
