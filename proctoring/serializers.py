from rest_framework import serializers

from .models import ProctoringEvent, ProctoringSession


class ProctoringEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProctoringEvent
        fields = ['id', 'attempt', 'event_type', 'description', 'event_data', 'severity', 'question_index',
                  'seconds_into_exam', 'ip_address', 'is_flagged', 'requires_review', 'occurred_at']


class ProctoringSessionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProctoringSession
        fields = ['id', 'attempt', 'status', 'started_at', 'ended_at', 'browser', 'os', 'screen_info',
                  'connection_status', 'disconnection_count', 'disconnection_log', 'last_activity_at',
                  'current_question_index', 'total_violations', 'violation_summary', 'supervisor_notes']
        read_only_fields = ['attempt', 'status', 'started_at', 'ended_at', 'browser', 'os', 'screen_info',
                            'connection_status', 'disconnection_count', 'disconnection_log', 'last_activity_at',
                            'current_question_index', 'total_violations', 'violation_summary']


class LogEventSerializer(serializers.Serializer):
    attempt_id = serializers.IntegerField()
    event_type = serializers.CharField(max_length=50)
    severity = serializers.ChoiceField(choices=ProctoringEvent.Severity.choices, required=False)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    event_data = serializers.DictField(required=False, default=dict)
    question_index = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class HeartbeatSerializer(serializers.Serializer):
    current_question_index = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=1000)
