# exams/importers.py
"""
Question bank import / export.

Columns: question_type, question_text, subject_code, topic, difficulty,
marks, negative_marks, option_a .. option_f, correct_answer, tolerance,
case_sensitive, explanation, tags

correct_answer holds option keys for choice questions ("B" or "A,C"),
"True"/"False" for true_false, the number for numeric and the reference
text for short answers. Tags are separated by "|".
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from rest_framework.exceptions import ValidationError

from cores.spreadsheets import write_csv

from .models import Question, QuestionOption, Subject, Topic
from .services import generate_question_code, validate_options

logger = logging.getLogger(__name__)

OPTION_KEYS = ['A', 'B', 'C', 'D', 'E', 'F']

COLUMNS = [
    'question_type', 'question_text', 'subject_code', 'topic', 'difficulty', 'marks', 'negative_marks',
    *[f'option_{k.lower()}' for k in OPTION_KEYS],
    'correct_answer', 'tolerance', 'case_sensitive', 'explanation', 'tags',
]

TEMPLATE_ROWS = [
    ['multiple_choice_single', 'What is 2 + 2?', 'MTH', 'Arithmetic', 'easy', '1', '0',
     '3', '4', '5', '6', '', '', 'B', '', '', 'Basic addition', 'addition|basics'],
    ['multiple_choice_multiple', 'Which of these are prime numbers?', 'MTH', '', 'medium', '2', '0',
     '2', '4', '5', '9', '', '', 'A,C', '', '', '', 'primes'],
    ['true_false', 'The earth orbits the sun.', 'SCI', '', 'easy', '1', '0',
     '', '', '', '', '', '', 'True', '', '', '', ''],
    ['numeric', 'What is the value of pi to two decimal places?', 'MTH', '', 'medium', '1', '0',
     '', '', '', '', '', '', '3.14', '0.01', '', '', ''],
    ['short_answer', 'What is the capital of France?', 'GEO', '', 'easy', '1', '0',
     '', '', '', '', '', '', 'Paris', '', 'false', '', ''],
    ['essay', 'Discuss the causes of the First World War.', 'HIS', '', 'hard', '10', '0',
     '', '', '', '', '', '', '', '', '', '', ''],
]

TRUE_VALUES = ('1', 'true', 'yes', 'y')


class RowError(ValueError):
    pass


def _decimal(value, field, default='0'):
    try:
        return Decimal(value or default)
    except InvalidOperation:
        raise RowError(f"{field} must be a number")


def _options_from_row(question_type, row):
    correct_raw = (row.get('correct_answer') or '').strip()

    if question_type == Question.QuestionType.TRUE_FALSE:
        answer = correct_raw.lower()
        if answer not in ('true', 'false'):
            raise RowError("correct_answer must be True or False")
        return [
            {'key': 'A', 'text': 'True', 'is_correct': answer == 'true', 'order': 1},
            {'key': 'B', 'text': 'False', 'is_correct': answer == 'false', 'order': 2},
        ]

    correct_keys = {k.strip().upper() for k in correct_raw.replace('|', ',').split(',') if k.strip()}
    options = []
    for order, key in enumerate(OPTION_KEYS, start=1):
        text = (row.get(f'option_{key.lower()}') or '').strip()
        if text:
            options.append({'key': key, 'text': text, 'is_correct': key in correct_keys, 'order': order})
    return options


def build_question(row, user):
    """Validate one import row and create the question (with options)."""
    question_type = (row.get('question_type') or '').strip().lower()
    if question_type not in Question.QuestionType.values:
        raise RowError(f"Unknown question_type '{question_type}'")
    text = (row.get('question_text') or '').strip()
    if not text:
        raise RowError("question_text is required")

    difficulty = (row.get('difficulty') or Question.Difficulty.MEDIUM).strip().lower()
    if difficulty not in Question.Difficulty.values:
        raise RowError(f"Unknown difficulty '{difficulty}'")

    subject = None
    subject_code = (row.get('subject_code') or '').strip()
    if subject_code:
        subject = Subject.objects.filter(code__iexact=subject_code).first()
        if subject is None:
            raise RowError(f"Unknown subject_code '{subject_code}'")

    topic = None
    topic_name = (row.get('topic') or '').strip()
    if topic_name:
        if subject is None:
            raise RowError("topic requires subject_code")
        topic, _ = Topic.objects.get_or_create(subject=subject, name=topic_name)

    fields = {
        'question_type': question_type,
        'text': text,
        'explanation': (row.get('explanation') or '').strip(),
        'difficulty': difficulty,
        'subject': subject,
        'topic': topic,
        'marks': _decimal(row.get('marks'), 'marks', '1'),
        'negative_marks': _decimal(row.get('negative_marks'), 'negative_marks'),
        'tags': [t.strip() for t in (row.get('tags') or '').split('|') if t.strip()],
        'created_by': user,
        'updated_by': user,
    }

    options = []
    if question_type in Question.CHOICE_TYPES:
        options = _options_from_row(question_type, row)
        validate_options(question_type, options)
    elif question_type == Question.QuestionType.NUMERIC:
        if not row.get('correct_answer'):
            raise RowError("correct_answer is required for numeric questions")
        fields['correct_answer_numeric'] = _decimal(row['correct_answer'], 'correct_answer')
        fields['tolerance'] = _decimal(row.get('tolerance'), 'tolerance')
    elif question_type == Question.QuestionType.SHORT_ANSWER:
        fields['correct_answer_text'] = (row.get('correct_answer') or '').strip()
        fields['case_sensitive'] = (row.get('case_sensitive') or '').strip().lower() in TRUE_VALUES

    with transaction.atomic():
        question = Question.objects.create(code=generate_question_code(), **fields)
        QuestionOption.objects.bulk_create([QuestionOption(question=question, **o) for o in options])
    return question


def _flatten(detail):
    if isinstance(detail, dict):
        return [m for value in detail.values() for m in _flatten(value)]
    if isinstance(detail, list):
        return [m for value in detail for m in _flatten(value)]
    return [str(detail)]


def import_questions(rows, user):
    created, errors = [], []
    for line, row in rows:
        try:
            question = build_question(row, user)
        except RowError as e:
            errors.append({'line': line, 'error': str(e)})
            continue
        except ValidationError as e:
            errors.append({'line': line, 'error': '; '.join(_flatten(e.detail))})
            continue
        created.append(question.id)

    logger.info("Question import: %s created, %s failed", len(created), len(errors))
    return {
        'total': len(rows),
        'success_count': len(created),
        'failed_count': len(errors),
        'created_ids': created,
        'errors': errors,
    }


def export_questions(queryset):
    rows = []
    for q in queryset.select_related('subject', 'topic').prefetch_related('options'):
        by_key = {o.key: o for o in q.options.all()}
        if q.question_type == Question.QuestionType.TRUE_FALSE:
            correct = next((o.text for o in by_key.values() if o.is_correct), '')
        elif q.is_choice:
            correct = ','.join(o.key for o in by_key.values() if o.is_correct)
        elif q.question_type == Question.QuestionType.NUMERIC:
            correct = '' if q.correct_answer_numeric is None else str(q.correct_answer_numeric.normalize())
        else:
            correct = q.correct_answer_text

        option_cells = []
        for key in OPTION_KEYS:
            option = by_key.get(key)
            option_cells.append(option.text if option and q.question_type != Question.QuestionType.TRUE_FALSE else '')

        rows.append([
            q.question_type, q.text, q.subject.code if q.subject else '', q.topic.name if q.topic else '',
            q.difficulty, q.marks, q.negative_marks, *option_cells, correct,
            q.tolerance if q.question_type == Question.QuestionType.NUMERIC else '',
            'true' if q.case_sensitive else '', q.explanation, '|'.join(q.tags or []),
        ])
    return write_csv(COLUMNS, rows)


def template_csv():
    return write_csv(COLUMNS, TEMPLATE_ROWS)
