from django.db import transaction
from rest_framework import serializers

from assessments.models import ExamAnswer

from .models import AnswerGrade, GradingRubric, RubricCriterion
from .services import max_marks_for


class RubricCriterionSerializer(serializers.ModelSerializer):
    class Meta:
        model = RubricCriterion
        fields = ['id', 'name', 'description', 'max_points', 'weight', 'order', 'performance_levels']
        read_only_fields = ['id']


class GradingRubricSerializer(serializers.ModelSerializer):
    criteria = RubricCriterionSerializer(many=True, required=False)
    subject_name = serializers.CharField(source='subject.name', read_only=True)

    class Meta:
        model = GradingRubric
        fields = ['id', 'name', 'description', 'subject', 'subject_name', 'question_type', 'max_score',
                  'is_default', 'criteria', 'created_by', 'created_at', 'updated_at']
        read_only_fields = ['created_by', 'created_at', 'updated_at']

    def validate(self, attrs):
        criteria = attrs.get('criteria')
        max_score = attrs.get('max_score', getattr(self.instance, 'max_score', None))
        if criteria and max_score is not None:
            total = sum(c['max_points'] for c in criteria)
            if total > max_score:
                raise serializers.ValidationError(
                    {"criteria": f"Criteria points ({total}) exceed the rubric max score ({max_score})."})
        return attrs

    def create(self, validated_data):
        criteria = validated_data.pop('criteria', [])
        with transaction.atomic():
            rubric = GradingRubric.objects.create(**validated_data)
            self._save_criteria(rubric, criteria)
        return rubric

    def update(self, instance, validated_data):
        criteria = validated_data.pop('criteria', None)
        with transaction.atomic():
            instance = super().update(instance, validated_data)
            if criteria is not None:
                # Criteria are replaced wholesale on update
                instance.criteria.all().delete()
                self._save_criteria(instance, criteria)
        return instance

    def _save_criteria(self, rubric, criteria):
        for index, data in enumerate(criteria):
            data.setdefault('order', index)
            RubricCriterion.objects.create(rubric=rubric, **data)


class AnswerGradeSerializer(serializers.ModelSerializer):
    grader_name = serializers.CharField(source='grader.display_name', read_only=True)

    class Meta:
        model = AnswerGrade
        fields = ['id', 'answer', 'rubric', 'grader', 'grader_name', 'marks', 'feedback',
                  'criteria_scores', 'status', 'graded_at']


class PendingAnswerSerializer(serializers.ModelSerializer):
    """An answer awaiting manual grading, with what the grader needs to see."""
    attempt_code = serializers.CharField(source='attempt.attempt_code', read_only=True)
    student_name = serializers.CharField(source='attempt.user.display_name', read_only=True)
    exam_id = serializers.IntegerField(source='attempt.exam_id', read_only=True)
    exam_title = serializers.CharField(source='attempt.exam.title', read_only=True)
    question_code = serializers.CharField(source='question.code', read_only=True)
    question_type = serializers.CharField(source='question.question_type', read_only=True)
    question_text = serializers.CharField(source='question.text', read_only=True)
    reference_answer = serializers.CharField(source='question.correct_answer_text', read_only=True)
    min_words = serializers.IntegerField(source='question.min_words', read_only=True)
    max_words = serializers.IntegerField(source='question.max_words', read_only=True)
    word_count = serializers.SerializerMethodField()
    max_marks = serializers.SerializerMethodField()
    grade = AnswerGradeSerializer(read_only=True)

    class Meta:
        model = ExamAnswer
        fields = [
            'id', 'attempt', 'attempt_code', 'student_name', 'exam_id', 'exam_title',
            'question', 'question_code', 'question_type', 'question_text', 'reference_answer',
            'min_words', 'max_words', 'text_answer', 'word_count', 'max_marks',
            'marks_obtained', 'grading_status', 'feedback', 'grade',
        ]

    def get_word_count(self, obj):
        return len((obj.text_answer or '').split())

    def get_max_marks(self, obj):
        return max_marks_for(obj)


class GradeAnswerSerializer(serializers.Serializer):
    marks = serializers.DecimalField(max_digits=6, decimal_places=2, min_value=0)
    feedback = serializers.CharField(required=False, allow_blank=True, default='')
    rubric = serializers.PrimaryKeyRelatedField(queryset=GradingRubric.objects.all(), required=False, allow_null=True)
    criteria_scores = serializers.DictField(child=serializers.DecimalField(max_digits=6, decimal_places=2),
                                            required=False)
    status = serializers.ChoiceField(choices=AnswerGrade.Status.choices, default=AnswerGrade.Status.FINAL)


class BulkGradeSerializer(serializers.Serializer):
    answer_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
    marks = serializers.DecimalField(max_digits=6, decimal_places=2, min_value=0)
    feedback = serializers.CharField(required=False, allow_blank=True, default='')


class PublishResultsSerializer(serializers.Serializer):
    attempt_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
