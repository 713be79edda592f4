from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from exams.models import Exam, ExamQuestion, Question, QuestionOption, Subject
from exams.services import recalculate_totals
from users.models import User


@pytest.fixture(autouse=True)
def clear_cache():
    # Throttle counters and the cached PlatformSetting live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    return APIClient()


def make_user(email, role, password="Str0ng-pass!", **extra):
    return User.objects.create_user(
        username=email, email=email, password=password,
        first_name=extra.pop('first_name', 'Test'), last_name=extra.pop('last_name', role.title()),
        role=role, **extra,
    )


@pytest.fixture
def admin_user(db):
    return make_user("admin@example.com", User.Role.ADMIN)


@pytest.fixture
def supervisor(db):
    return make_user("supervisor@example.com", User.Role.SUPERVISOR)


@pytest.fixture
def student(db):
    return make_user("student@example.com", User.Role.STUDENT, student_id="STU-001")


@pytest.fixture
def other_student(db):
    return make_user("other@example.com", User.Role.STUDENT, student_id="STU-002")


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(admin_user)
    return client


@pytest.fixture
def supervisor_client(supervisor):
    client = APIClient()
    client.force_authenticate(supervisor)
    return client


@pytest.fixture
def student_client(student):
    client = APIClient()
    client.force_authenticate(student)
    return client


@pytest.fixture
def subject(db):
    return Subject.objects.create(code="MTH", name="Mathematics")


def make_choice_question(subject, text, options, correct, marks="2", negative="0.5",
                         question_type=Question.QuestionType.SINGLE_CHOICE):
    question = Question.objects.create(
        code=f"Q-{text[:6].upper().replace(' ', '')}{Question.objects.count()}",
        question_type=question_type, text=text, subject=subject,
        marks=Decimal(marks), negative_marks=Decimal(negative),
    )
    for index, option_text in enumerate(options):
        QuestionOption.objects.create(
            question=question, key="ABCDEF"[index], text=option_text,
            is_correct="ABCDEF"[index] in correct, order=index + 1,
        )
    return question


@pytest.fixture
def questions(subject):
    single = make_choice_question(subject, "What is 2 + 2?", ["3", "4", "5"], "B")
    multiple = make_choice_question(
        subject, "Which are primes?", ["2", "4", "5", "9"], "AC",
        question_type=Question.QuestionType.MULTIPLE_CHOICE,
    )
    numeric = Question.objects.create(
        code="Q-NUMERIC1", question_type=Question.QuestionType.NUMERIC, text="Pi to two places?",
        subject=subject, marks=Decimal("2"), negative_marks=Decimal("0.5"),
        correct_answer_numeric=Decimal("3.14"), tolerance=Decimal("0.01"),
    )
    short = Question.objects.create(
        code="Q-SHORT001", question_type=Question.QuestionType.SHORT_ANSWER, text="Capital of France?",
        subject=subject, marks=Decimal("2"), negative_marks=Decimal("0.5"), correct_answer_text="Paris",
    )
    return {'single': single, 'multiple': multiple, 'numeric': numeric, 'short': short}


@pytest.fixture
def essay_question(subject):
    return Question.objects.create(
        code="Q-ESSAY001", question_type=Question.QuestionType.ESSAY, text="Discuss the number zero.",
        subject=subject, marks=Decimal("5"),
    )


def attach(exam, *qs):
    for order, question in enumerate(qs, start=1):
        ExamQuestion.objects.create(exam=exam, question=question, order=order)
    recalculate_totals(exam)
    return exam


@pytest.fixture
def exam(admin_user, subject, questions):
    exam = Exam.objects.create(
        code="EX-2026-001", title="Mid-term Mathematics", duration_minutes=30,
        subject=subject, status=Exam.Status.ACTIVE, is_public=True, max_attempts=2,
        pass_marks=Decimal("4"), enable_negative_marking=True, created_by=admin_user,
    )
    return attach(exam, questions['single'], questions['multiple'], questions['numeric'], questions['short'])
