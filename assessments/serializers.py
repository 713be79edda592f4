from django.utils import timezone
from rest_framework import serializers

from exams.models import ExamQuestion, Question
from exams.serializers import StudentExamSerializer

from .models import ExamAnswer, ExamAttempt, ExamResult, ExamSubmission


class AttemptSerializer(serializers.ModelSerializer):
    """Lightweight serializer for lists / dashboard history."""
    exam_title = serializers.CharField(source='exam.title', read_only=True)
    exam_code = serializers.CharField(source='exam.code', read_only=True)
    student_name = serializers.CharField(source='user.display_name', read_only=True)
    remaining_seconds = serializers.SerializerMethodField()
    total_questions = serializers.SerializerMethodField()

    class Meta:
        model = ExamAttempt
        fields = [
            'id', 'attempt_code', 'attempt_number', 'exam', 'exam_code', 'exam_title', 'user', 'student_name',
            'status', 'started_at', 'submitted_at', 'expires_at', 'paused_at', 'time_spent_seconds',
            'remaining_seconds', 'current_question_index', 'questions_answered', 'questions_marked_for_review',
            'total_questions', 'tab_switch_count', 'window_blur_count', 'copy_paste_attempts',
            'fullscreen_exit_count', 'is_flagged', 'flag_reason', 'termination_reason',
        ]
        read_only_fields = fields

    def get_remaining_seconds(self, obj):
        return obj.remaining_seconds()

    def get_total_questions(self, obj):
        return len(obj.question_order)


class SubmissionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ExamSubmission
        fields = ['submission_type', 'submitted_at', 'total_questions', 'answered_questions',
                  'unanswered_questions', 'marked_for_review', 'time_taken_seconds', 'submission_hash']


class SavedAnswerSerializer(serializers.ModelSerializer):
    """An answer as the candidate sees it while sitting the exam."""
    class Meta:
        model = ExamAnswer
        fields = ['question', 'selected_options', 'text_answer', 'numeric_answer',
                  'is_marked_for_review', 'is_answered', 'time_spent_seconds']


def attempt_session(attempt):
    """
    Everything the exam client needs to render the attempt: questions in
    this attempt's order, options in this attempt's order, saved answers
    and the clock. Correct answers are never included.
    """
    exam = attempt.exam
    links = {
        link.question_id: link
        for link in ExamQuestion.objects.filter(exam=exam, question_id__in=attempt.question_order)
        .select_related('question', 'section').prefetch_related('question__options')
    }
    answers = {a.question_id: a for a in attempt.answers.all()}

    questions = []
    for index, question_id in enumerate(attempt.question_order):
        link = links.get(question_id)
        if link is None:
            continue
        question = link.question
        options = {o.id: o for o in question.options.all()}
        ordered = attempt.option_order.get(str(question_id)) or list(options)
        answer = answers.get(question_id)
        questions.append({
            'index': index,
            'id': question.id,
            'question_type': question.question_type,
            'text': question.text,
            'marks': link.effective_marks,
            'section': link.section.title if link.section else None,
            'min_words': question.min_words,
            'max_words': question.max_words,
            'options': [
                {'id': options[oid].id, 'key': options[oid].key, 'text': options[oid].text}
                for oid in ordered if oid in options
            ],
            'answer': SavedAnswerSerializer(answer).data if answer else None,
        })

    return {
        'attempt': AttemptSerializer(attempt).data,
        'exam': StudentExamSerializer(exam).data,
        'resume_token': attempt.resume_token,
        'server_time': timezone.now(),
        'remaining_seconds': attempt.remaining_seconds(),
        'questions': questions,
        'progress': {
            'total': len(questions),
            'answered': attempt.questions_answered,
            'marked_for_review': attempt.questions_marked_for_review,
            'current_question_index': attempt.current_question_index,
        },
    }


# --- Payloads ---

class StartAttemptSerializer(serializers.Serializer):
    access_code = serializers.CharField(required=False, allow_blank=True, default='')


class SaveAnswerSerializer(serializers.Serializer):
    question_id = serializers.IntegerField()
    selected_options = serializers.ListField(child=serializers.IntegerField(), required=False)
    text_answer = serializers.CharField(required=False, allow_blank=True)
    numeric_answer = serializers.DecimalField(max_digits=14, decimal_places=4, required=False, allow_null=True)
    is_marked_for_review = serializers.BooleanField(required=False)
    time_spent_seconds = serializers.IntegerField(required=False, min_value=0)


class ProgressSerializer(serializers.Serializer):
    current_question_index = serializers.IntegerField(required=False, min_value=0)
    time_spent_seconds = serializers.IntegerField(required=False, min_value=0)


class PublishSerializer(serializers.Serializer):
    attempt_ids = serializers.ListField(child=serializers.IntegerField(), required=False)


# --- Results ---

class ResultSerializer(serializers.ModelSerializer):
    attempt_code = serializers.CharField(source='attempt.attempt_code', read_only=True)
    attempt_status = serializers.CharField(source='attempt.status', read_only=True)
    exam_id = serializers.IntegerField(source='attempt.exam_id', read_only=True)
    exam_title = serializers.CharField(source='attempt.exam.title', read_only=True)
    student_id = serializers.IntegerField(source='attempt.user_id', read_only=True)
    student_name = serializers.CharField(source='attempt.user.display_name', read_only=True)
    submitted_at = serializers.DateTimeField(source='attempt.submitted_at', read_only=True)

    class Meta:
        model = ExamResult
        fields = [
            'id', 'attempt', 'attempt_code', 'attempt_status', 'exam_id', 'exam_title', 'student_id',
            'student_name', 'submitted_at', 'total_marks', 'marks_obtained', 'negative_marks_deducted',
            'percentage', 'total_questions', 'correct_answers', 'incorrect_answers', 'unanswered',
            'marked_for_review', 'pending_manual', 'grade', 'pass_status', 'rank', 'total_participants',
            'percentile', 'is_published', 'published_at', 'is_reviewed', 'remarks',
        ]
        read_only_fields = fields


def _correct_answer(question):
    if question.is_choice:
        return [o.id for o in question.options.all() if o.is_correct]
    if question.question_type == Question.QuestionType.NUMERIC:
        return question.correct_answer_numeric
    return question.correct_answer_text or None


def answer_breakdown(attempt, include_answers):
    """Per-question breakdown of a finished attempt. Correct answers only when `include_answers`."""
    answers = {
        a.question_id: a
        for a in attempt.answers.select_related('question').prefetch_related('question__options')
    }
    rows = []
    for index, question_id in enumerate(attempt.question_order):
        answer = answers.get(question_id)
        if answer is None:
            continue
        question = answer.question
        row = {
            'index': index,
            'question_id': question.id,
            'question_type': question.question_type,
            'text': question.text,
            'selected_options': answer.selected_options,
            'text_answer': answer.text_answer,
            'numeric_answer': answer.numeric_answer,
            'is_answered': answer.is_answered,
            'is_correct': answer.is_correct,
            'marks_obtained': answer.marks_obtained,
            'grading_status': answer.grading_status,
            'feedback': answer.feedback,
        }
        if include_answers:
            row['correct_answer'] = _correct_answer(question)
            row['explanation'] = question.explanation
        rows.append(row)
    return rows
