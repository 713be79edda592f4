# exams/serializers.py
from django.db import transaction
from rest_framework import serializers

from cores.models import PlatformSetting

from .models import (
    Exam, ExamEligibility, ExamQuestion, ExamSection, ExamSupervisor,
    Question, QuestionAttachment, QuestionOption, Subject, Topic,
)
from .services import generate_exam_code, generate_question_code, recalculate_totals, validate_options

# --- Helper Serializers ---

class SubjectSerializer(serializers.ModelSerializer):
    question_count = serializers.IntegerField(source='questions.count', read_only=True)

    class Meta:
        model = Subject
        fields = ['id', 'code', 'name', 'description', 'is_active', 'display_order', 'question_count']


class TopicSerializer(serializers.ModelSerializer):
    subject_name = serializers.CharField(source='subject.name', read_only=True)

    class Meta:
        model = Topic
        fields = ['id', 'subject', 'subject_name', 'parent', 'name', 'description', 'is_active']

    def validate(self, attrs):
        parent = attrs.get('parent')
        subject = attrs.get('subject') or getattr(self.instance, 'subject', None)
        if parent and parent.subject_id != subject.id:
            raise serializers.ValidationError({"parent": "Parent topic must belong to the same subject."})
        return attrs


class QuestionOptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = QuestionOption
        fields = ['id', 'key', 'text', 'is_correct', 'order']
        read_only_fields = ['id']
        extra_kwargs = {'key': {'required': False, 'allow_blank': True}}


class StudentOptionSerializer(serializers.ModelSerializer):
    """Options as shown during an attempt: never carries the answer key."""
    class Meta:
        model = QuestionOption
        fields = ['id', 'key', 'text']


class QuestionAttachmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = QuestionAttachment
        fields = ['id', 'question', 'file', 'original_name', 'file_type', 'mime_type', 'size', 'context', 'created_at']
        read_only_fields = ['question', 'original_name', 'mime_type', 'size', 'created_at']


# --- Question Serializers ---

class QuestionSerializer(serializers.ModelSerializer):
    options = QuestionOptionSerializer(many=True, required=False)
    attachments = QuestionAttachmentSerializer(many=True, read_only=True)
    subject_name = serializers.CharField(source='subject.name', read_only=True)
    topic_name = serializers.CharField(source='topic.name', read_only=True)

    class Meta:
        model = Question
        fields = [
            'id', 'code', 'question_type', 'text', 'explanation',
            'correct_answer_numeric', 'tolerance', 'correct_answer_text', 'case_sensitive',
            'min_words', 'max_words', 'subject', 'subject_name', 'topic', 'topic_name',
            'difficulty', 'tags', 'marks', 'negative_marks', 'times_used',
            'is_active', 'is_verified', 'verified_at', 'options', 'attachments',
            'created_by', 'created_at', 'updated_at',
        ]
        read_only_fields = ['code', 'times_used', 'is_verified', 'verified_at', 'created_by', 'created_at', 'updated_at']

    def validate(self, attrs):
        question_type = attrs.get('question_type') or getattr(self.instance, 'question_type', None)
        options = attrs.get('options')
        if options is None and self.instance is None:
            options = []
        if options is not None:
            validate_options(question_type, options)

        if question_type == Question.QuestionType.NUMERIC:
            numeric = attrs.get('correct_answer_numeric', getattr(self.instance, 'correct_answer_numeric', None))
            if numeric is None:
                raise serializers.ValidationError({"correct_answer_numeric": "Numeric questions need an answer."})

        min_words = attrs.get('min_words', getattr(self.instance, 'min_words', None))
        max_words = attrs.get('max_words', getattr(self.instance, 'max_words', None))
        if min_words and max_words and min_words > max_words:
            raise serializers.ValidationError({"max_words": "max_words must not be below min_words."})

        topic = attrs.get('topic')
        subject = attrs.get('subject', getattr(self.instance, 'subject', None))
        if topic and subject and topic.subject_id != subject.id:
            raise serializers.ValidationError({"topic": "Topic does not belong to the selected subject."})
        return attrs

    def create(self, validated_data):
        options = validated_data.pop('options', [])
        with transaction.atomic():
            question = Question.objects.create(code=generate_question_code(), **validated_data)
            self._save_options(question, options)
        return question

    def update(self, instance, validated_data):
        options = validated_data.pop('options', None)
        if options is not None and instance.exam_links.filter(exam__attempts__isnull=False).exists():
            raise serializers.ValidationError(
                {"options": "Options cannot be replaced while the question is used in an exam with attempts."}
            )
        marks_changed = 'marks' in validated_data and validated_data['marks'] != instance.marks
        with transaction.atomic():
            instance = super().update(instance, validated_data)
            if options is not None:
                instance.options.all().delete()
                self._save_options(instance, options)
            if marks_changed:
                for link in instance.exam_links.select_related('exam'):
                    recalculate_totals(link.exam)
        return instance

    def _save_options(self, question, options):
        keys = 'ABCDEFGHIJ'
        for index, option in enumerate(options):
            QuestionOption.objects.create(
                question=question,
                key=option.get('key') or keys[index % len(keys)],
                text=option['text'],
                is_correct=option.get('is_correct', False),
                order=option.get('order') or index + 1,
            )


class StudentQuestionSerializer(serializers.ModelSerializer):
    """A question as delivered to a candidate."""
    options = StudentOptionSerializer(many=True, read_only=True)

    class Meta:
        model = Question
        fields = ['id', 'question_type', 'text', 'min_words', 'max_words', 'options']


# --- Exam Serializers ---

class ExamSectionSerializer(serializers.ModelSerializer):
    id = serializers.IntegerField(required=False)

    class Meta:
        model = ExamSection
        fields = ['id', 'title', 'description', 'instructions', 'order', 'duration_minutes']


class ExamEligibilitySerializer(serializers.ModelSerializer):
    class Meta:
        model = ExamEligibility
        fields = ['id', 'eligibility_type', 'user', 'school_class', 'grade_level', 'role', 'is_exempt']

    def validate(self, attrs):
        kind = attrs.get('eligibility_type', ExamEligibility.Type.ALL)
        required = {
            ExamEligibility.Type.SPECIFIC_USERS: 'user',
            ExamEligibility.Type.CLASS: 'school_class',
            ExamEligibility.Type.GRADE_LEVEL: 'grade_level',
            ExamEligibility.Type.ROLE: 'role',
        }.get(kind)
        if required and not attrs.get(required):
            raise serializers.ValidationError({required: f"Required for eligibility type '{kind}'."})
        return attrs


class ExamSupervisorSerializer(serializers.ModelSerializer):
    supervisor_name = serializers.CharField(source='supervisor.display_name', read_only=True)

    class Meta:
        model = ExamSupervisor
        fields = ['id', 'supervisor', 'supervisor_name', 'role',
                  'can_view_live', 'can_flag_candidates', 'can_terminate_sessions']

    def validate_supervisor(self, value):
        if not (value.is_supervisor or value.is_admin):
            raise serializers.ValidationError("User is not a supervisor.")
        return value


class ExamQuestionSerializer(serializers.ModelSerializer):
    question = QuestionSerializer(read_only=True)
    effective_marks = serializers.DecimalField(max_digits=6, decimal_places=2, read_only=True)

    class Meta:
        model = ExamQuestion
        fields = ['id', 'question', 'section', 'order', 'marks', 'negative_marks', 'effective_marks', 'is_mandatory']


class ExamSerializer(serializers.ModelSerializer):
    sections = ExamSectionSerializer(many=True, required=False)
    eligibility_rules = ExamEligibilitySerializer(many=True, required=False)
    supervisors = ExamSupervisorSerializer(many=True, required=False)
    subject_name = serializers.CharField(source='subject.name', read_only=True)

    class Meta:
        model = Exam
        fields = [
            'id', 'code', 'title', 'description', 'instructions',
            'duration_minutes', 'start_datetime', 'end_datetime', 'max_attempts', 'allow_resume',
            'randomize_questions', 'randomize_options',
            'total_questions', 'total_marks', 'pass_marks', 'enable_negative_marking',
            'result_display', 'result_publish_datetime', 'show_correct_answers', 'allow_review',
            'enable_tab_switch_detection', 'enable_screen_monitoring', 'fullscreen_required',
            'max_tab_switches', 'require_selfie', 'blocked_ips',
            'subject', 'subject_name', 'grade_level', 'status', 'is_public', 'access_code',
            'sections', 'eligibility_rules', 'supervisors', 'created_by', 'created_at', 'updated_at',
        ]
        read_only_fields = ['code', 'total_questions', 'total_marks', 'status', 'created_by', 'created_at', 'updated_at']
        extra_kwargs = {
            'duration_minutes': {'required': False},
            'max_attempts': {'required': False},
            'max_tab_switches': {'required': False},
        }

    def validate(self, attrs):
        start = attrs.get('start_datetime', getattr(self.instance, 'start_datetime', None))
        end = attrs.get('end_datetime', getattr(self.instance, 'end_datetime', None))
        if start and end and end <= start:
            raise serializers.ValidationError({"end_datetime": "End must be after start."})

        display = attrs.get('result_display', getattr(self.instance, 'result_display', None))
        publish_at = attrs.get('result_publish_datetime', getattr(self.instance, 'result_publish_datetime', None))
        if display == Exam.ResultDisplay.SCHEDULED and not publish_at:
            raise serializers.ValidationError(
                {"result_publish_datetime": "Scheduled result display needs a publish date."})

        if 'duration_minutes' in attrs and attrs['duration_minutes'] < 1:
            raise serializers.ValidationError({"duration_minutes": "Duration must be at least one minute."})
        if 'max_attempts' in attrs and attrs['max_attempts'] < 1:
            raise serializers.ValidationError({"max_attempts": "At least one attempt must be allowed."})
        return attrs

    def create(self, validated_data):
        sections = validated_data.pop('sections', [])
        rules = validated_data.pop('eligibility_rules', [])
        supervisors = validated_data.pop('supervisors', [])

        # Fall back to platform defaults for unspecified settings
        defaults = PlatformSetting.load()
        validated_data.setdefault('duration_minutes', defaults.default_exam_duration)
        validated_data.setdefault('max_attempts', defaults.default_max_attempts)
        validated_data.setdefault('max_tab_switches', defaults.default_max_tab_switches)

        with transaction.atomic():
            exam = Exam.objects.create(code=generate_exam_code(), **validated_data)
            self._save_sections(exam, sections)
            self._save_rules(exam, rules)
            self._save_supervisors(exam, supervisors)
        return exam

    def update(self, instance, validated_data):
        sections = validated_data.pop('sections', None)
        rules = validated_data.pop('eligibility_rules', None)
        supervisors = validated_data.pop('supervisors', None)

        with transaction.atomic():
            instance = super().update(instance, validated_data)
            if sections is not None:
                self._save_sections(instance, sections, replace=True)
            if rules is not None:
                instance.eligibility_rules.all().delete()
                self._save_rules(instance, rules)
            if supervisors is not None:
                instance.supervisors.all().delete()
                self._save_supervisors(instance, supervisors)
            recalculate_totals(instance)
        return instance

    def _save_sections(self, exam, sections, replace=False):
        keep = []
        for data in sections:
            section_id = data.pop('id', None)
            if replace and section_id and exam.sections.filter(id=section_id).exists():
                exam.sections.filter(id=section_id).update(**data)
                keep.append(section_id)
            else:
                keep.append(ExamSection.objects.create(exam=exam, **data).id)
        if replace:
            exam.sections.exclude(id__in=keep).delete()

    def _save_rules(self, exam, rules):
        ExamEligibility.objects.bulk_create([ExamEligibility(exam=exam, **rule) for rule in rules])

    def _save_supervisors(self, exam, supervisors):
        ExamSupervisor.objects.bulk_create([ExamSupervisor(exam=exam, **s) for s in supervisors])


class ExamDetailSerializer(ExamSerializer):
    """Full configuration including the ordered question list (staff only)."""
    exam_questions = ExamQuestionSerializer(many=True, read_only=True)

    class Meta(ExamSerializer.Meta):
        fields = ExamSerializer.Meta.fields + ['exam_questions']


class StudentExamSerializer(serializers.ModelSerializer):
    """What a candidate sees about an exam before starting it."""
    subject_name = serializers.CharField(source='subject.name', read_only=True)
    requires_access_code = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = [
            'id', 'code', 'title', 'description', 'instructions', 'duration_minutes',
            'start_datetime', 'end_datetime', 'max_attempts', 'allow_resume',
            'total_questions', 'total_marks', 'pass_marks', 'enable_negative_marking',
            'fullscreen_required', 'enable_tab_switch_detection', 'max_tab_switches', 'require_selfie',
            'subject_name', 'status', 'requires_access_code',
        ]

    def get_requires_access_code(self, obj):
        return bool(obj.access_code)


# --- Action payloads ---

class AddQuestionsSerializer(serializers.Serializer):
    question_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
    section_id = serializers.IntegerField(required=False, allow_null=True)
    marks = serializers.DecimalField(max_digits=6, decimal_places=2, required=False, allow_null=True)


class ReorderItemSerializer(serializers.Serializer):
    question_id = serializers.IntegerField()
    order = serializers.IntegerField(min_value=0)
    section_id = serializers.IntegerField(required=False, allow_null=True)


class ReorderSerializer(serializers.Serializer):
    questions = ReorderItemSerializer(many=True, allow_empty=False)


class BulkIdsSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class BulkTagsSerializer(BulkIdsSerializer):
    tags = serializers.ListField(child=serializers.CharField(max_length=50))
    mode = serializers.ChoiceField(choices=['add', 'remove', 'replace'], default='add')
